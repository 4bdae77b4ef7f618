"""
Command-line interface for stepflow.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from dataclasses import asdict, replace

from .config import load_config
from .engine.models import ReturnCode
from .engine.orchestrator import ExecutionOrchestrator
from .errors import ConfigurationError
from .executors import DryRunActionExecutor, load_executor
from .models import PropertyNature, StopPolicy
from .properties.resolver import PropertyResolver
from .schemas import load_definitions, parse_document, validate_document
from .sinks import LoggingResultSink
from .version import __version__


def build_cli_parser() -> argparse.ArgumentParser:
    cli = argparse.ArgumentParser(prog="stepflow", description="stepflow test case runner")
    cli.add_argument(
        "--version",
        action="version",
        version=f"stepflow {__version__} (Python {sys.version.split()[0]})",
    )
    cli.add_argument("--log-level", default="WARNING", help="Logging level (DEBUG, INFO, WARNING, ...)")
    sub = cli.add_subparsers(dest="command", required=True)

    def register(name: str, **kwargs):
        return sub.add_parser(name, **kwargs)

    run_cmd = register("run", help="Run one test case from a definitions file")
    run_cmd.add_argument("file", type=str, help="Path to a JSON definitions file")
    run_cmd.add_argument("test", type=str, help="Test (folder) name")
    run_cmd.add_argument("testcase", type=str, help="Test case name")
    run_cmd.add_argument("--country", default="", help="Country the run targets")
    run_cmd.add_argument("--environment", default="", help="Environment the run targets")
    run_cmd.add_argument("--system", default="", help="System the run targets")
    run_cmd.add_argument(
        "--executor",
        default=None,
        help="Action executor as 'package.module:attribute' (default: dry run)",
    )
    run_cmd.add_argument(
        "--stop-policy",
        choices=[policy.value for policy in StopPolicy],
        default=None,
        help="Override STEPFLOW_STOP_POLICY",
    )

    validate_cmd = register("validate", help="Check a definitions file without running it")
    validate_cmd.add_argument("file", type=str, help="Path to a JSON definitions file")
    return cli


def _dump(payload: object) -> None:
    print(json.dumps(payload, indent=2, default=str))


def _run(args: argparse.Namespace) -> None:
    config = load_config()
    if args.stop_policy:
        config = replace(config, stop_policy=StopPolicy(args.stop_policy))
    try:
        store, libraries = load_definitions(args.file)
        executor = load_executor(args.executor) if args.executor else DryRunActionExecutor()
    except ConfigurationError as exc:
        _dump({"error": exc.message, "diagnostics": exc.diagnostics})
        raise SystemExit(2) from exc
    resolver = PropertyResolver(store, sources={PropertyNature.LIBRARY: libraries}, config=config)
    orchestrator = ExecutionOrchestrator(
        store, executor, resolver, config=config, sink=LoggingResultSink()
    )
    result = asyncio.run(
        orchestrator.run(args.test, args.testcase, args.country, args.environment, args.system)
    )
    _dump(asdict(result))
    if result.return_code.severity >= ReturnCode.KO.severity:
        raise SystemExit(1)


def _validate(args: argparse.Namespace) -> None:
    try:
        with open(args.file, encoding="utf-8") as handle:
            data = json.load(handle)
        doc = parse_document(data)
    except (OSError, json.JSONDecodeError) as exc:
        _dump({"valid": False, "diagnostics": [{"code": "SF-1001", "message": str(exc), "severity": "fatal"}]})
        raise SystemExit(1) from exc
    except ConfigurationError as exc:
        _dump({"valid": False, "diagnostics": exc.diagnostics})
        raise SystemExit(1) from exc
    problems = validate_document(doc)
    _dump(
        {
            "valid": not problems,
            "testcases": len(doc.testcases),
            "diagnostics": [{"code": "SF-1001", "message": problem, "severity": "fatal"} for problem in problems],
        }
    )
    if problems:
        raise SystemExit(1)


def main(argv: list[str] | None = None) -> None:
    cli = build_cli_parser()
    args = cli.parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, str(args.log_level).upper(), logging.WARNING),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )

    if args.command == "run":
        _run(args)
        return

    if args.command == "validate":
        _validate(args)
        return


if __name__ == "__main__":  # pragma: no cover
    main()
