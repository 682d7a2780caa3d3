"""CLI entrypoint for the coverage server."""

from __future__ import annotations

import argparse
import sys
from pathlib import Path
from typing import Any, Dict

from .config import config_from_options, load_options
from .errors import ConfigError
from .excludes import compile_configured_patterns
from .logging import configure_logging

_DEFAULT_CONFIG_NAME = "ui5-coverage.yaml"


def _add_verbose_option(
    parser: argparse.ArgumentParser, *, suppress_default: bool = False
) -> None:
    kwargs: dict[str, object] = {
        "action": "store_true",
        "help": "Log every instrumentation step.",
    }
    if suppress_default:
        kwargs["default"] = argparse.SUPPRESS
    else:
        kwargs["default"] = False
    parser.add_argument(
        "-v",
        "--verbose",
        **kwargs,
    )


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="ui5-coverage",
        description="Serve a UI5 project with on-the-fly code coverage instrumentation.",
    )
    _add_verbose_option(parser)
    subparsers = parser.add_subparsers(dest="command", required=True)

    serve_parser = subparsers.add_parser(
        "serve",
        help="Serve the project with the coverage middleware in front.",
    )
    _add_verbose_option(serve_parser, suppress_default=True)
    serve_parser.add_argument(
        "path",
        nargs="?",
        default=".",
        help="Path to the project root (defaults to current directory).",
    )
    serve_parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help=f"YAML file with the coverage configuration (defaults to <path>/{_DEFAULT_CONFIG_NAME}).",
    )
    serve_parser.add_argument("--host", default="127.0.0.1", help="Interface to bind.")
    serve_parser.add_argument("--port", type=int, default=8080, help="Port to listen on.")
    serve_parser.add_argument(
        "--log-file",
        type=Path,
        default=None,
        help="Also write log records to this file.",
    )

    return parser


def _resolve_options(root: Path, config_path: Path | None) -> Dict[str, Any]:
    options = load_options(config_path or root / _DEFAULT_CONFIG_NAME)
    configuration = dict(options.get("configuration") or {})
    configuration.setdefault("cwd", str(root))
    resolved = {"configuration": configuration}
    compile_configured_patterns(config_from_options(resolved).exclude_patterns or ())
    return resolved


def main(argv: list[str] | None = None) -> None:
    """CLI entrypoint for ui5-coverage commands."""
    parser = _build_parser()
    args = parser.parse_args(argv)

    configure_logging(verbose=bool(args.verbose), log_file=getattr(args, "log_file", None))

    if args.command == "serve":
        root = Path(args.path).expanduser().resolve()
        if not root.is_dir():
            parser.exit(1, f"Project root {root} is not a directory\n")
        try:
            options = _resolve_options(root, args.config)
        except ConfigError as exc:
            parser.exit(1, f"{exc}\n")

        from .service import run_service

        run_service(
            root,
            host=args.host,
            port=args.port,
            options=options,
            verbose=bool(args.verbose),
        )
    else:  # pragma: no cover - argparse enforces choices
        parser.exit(1, "Unknown command\n")


if __name__ == "__main__":
    main(sys.argv[1:])
