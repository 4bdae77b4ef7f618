"""
Placeholder substitution for action, control and condition values.

``%NAME%`` is replaced by, in order: a system variable (``SYS_*``), a value
already bound in the run, or the property ``NAME`` of the current test case.
``%property.NAME%`` always goes to the property resolver and fails when no
definition exists. Unknown bare placeholders are left untouched.
"""

from __future__ import annotations

import re
from typing import Any

from ..errors import ConfigurationError
from ..properties.resolver import PropertyResolver
from .context import ExecutionContext

__all__ = ["Substitutor", "PLACEHOLDER"]

PLACEHOLDER = re.compile(r"%([A-Za-z_][A-Za-z0-9_.\-]*)%")
_EXPLICIT_PREFIX = "property."


class Substitutor:
    def __init__(self, resolver: PropertyResolver) -> None:
        self.resolver = resolver

    async def substitute(self, text: Any, context: ExecutionContext) -> str:
        if text is None:
            return ""
        if not isinstance(text, str):
            return str(text)
        if "%" not in text:
            return text
        pieces: list[str] = []
        last = 0
        for match in PLACEHOLDER.finditer(text):
            pieces.append(text[last : match.start()])
            replacement = await self._lookup(match.group(1), context)
            pieces.append(match.group(0) if replacement is None else _text(replacement))
            last = match.end()
        pieces.append(text[last:])
        return "".join(pieces)

    async def _lookup(self, name: str, context: ExecutionContext) -> Any:
        if name.startswith(_EXPLICIT_PREFIX):
            return await self.calculate(name[len(_EXPLICIT_PREFIX) :], context, required=True)
        system = context.system_variables()
        if name in system:
            return system[name]
        if context.has_variable(name):
            return context.variables[name]
        return await self.calculate(name, context, required=False)

    async def calculate(
        self, name: str, context: ExecutionContext, *, required: bool = True, force: bool = False
    ) -> Any:
        """Resolve property ``name`` for the current frame and bind it into the run."""
        test, testcase = context.current_frame
        if not required and not self.resolver.has_definition(test, testcase, name):
            return None
        if name in context.resolving:
            chain = " -> ".join(context.resolving + [name])
            raise ConfigurationError(f"Property '{name}' depends on itself ({chain}).", test=test, testcase=testcase)
        context.resolving.append(name)
        try:
            value = await self.resolver.resolve(
                test,
                testcase,
                context.country,
                name,
                context.resolution_args(),
                substitute=lambda raw: self.substitute(raw, context),
                sleep=context.sleep,
                force=force,
            )
        finally:
            context.resolving.pop()
        context.bind(name, value)
        return value


def _text(value: Any) -> str:
    return value if isinstance(value, str) else str(value)
