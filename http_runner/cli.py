"""CLI entry point for http-runner.

Handles argument parsing and dispatches to send or clear-cookies mode.
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

from pydantic import ValidationError as PydanticValidationError

from http_runner.config_loader import ConfigError, load_settings, validate_settings
from http_runner.errors import AuthenticationError, RequestCancelledError, TransportError
from http_runner.executor import RequestExecutor
from http_runner.log import setup_logging
from http_runner.models import EngineSettings, HttpResponseRecord, RequestDescriptor

if TYPE_CHECKING:
    import httpx

EXIT_OK = 0
EXIT_REQUEST_FAILED = 1
EXIT_CONFIG_ERROR = 2
EXIT_INTERRUPTED = 130

LOG_LEVELS = ["DEBUG", "INFO", "WARNING", "ERROR"]


def parse_header(value: str) -> tuple[str, str]:
    """Parse a 'Name: value' header argument."""
    name, sep, header_value = value.partition(":")
    name = name.strip()
    if not sep or not name:
        raise argparse.ArgumentTypeError(f"Invalid header '{value}', expected 'Name: value'")
    return name, header_value.strip()


@dataclass
class SendArgs:
    """Parsed arguments for send mode."""

    method: str
    url: str
    headers: list[tuple[str, str]]
    data: str | None
    data_file: Path | None
    config: Path | None
    name: str | None
    source_file: Path | None
    include_timings: bool
    log_level: str | None


@dataclass
class ClearCookiesArgs:
    """Parsed arguments for clear-cookies mode."""

    config: Path | None
    log_level: str | None


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser with send and clear-cookies subcommands."""
    parser = argparse.ArgumentParser(
        prog="http-runner",
        description="Send HTTP requests and show measured, decoded responses.",
    )

    subparsers = parser.add_subparsers(dest="command", required=True, help="Execution mode")

    # Send subcommand
    send_parser = subparsers.add_parser(
        "send",
        help="Send one request and print the response",
    )
    send_parser.add_argument("method", help="HTTP method (GET, POST, ...)")
    send_parser.add_argument("url", help="Absolute http(s) URL")
    send_parser.add_argument(
        "-H",
        "--header",
        type=parse_header,
        action="append",
        default=[],
        dest="headers",
        metavar="'NAME: VALUE'",
        help="Request header (can be repeated)",
    )
    body_group = send_parser.add_mutually_exclusive_group()
    body_group.add_argument(
        "--data",
        type=str,
        default=None,
        help="Request body text",
    )
    body_group.add_argument(
        "--data-file",
        type=Path,
        default=None,
        help="Read the request body from a file",
    )
    send_parser.add_argument(
        "--name",
        type=str,
        default=None,
        help="Display name for the request",
    )
    send_parser.add_argument(
        "--source-file",
        type=Path,
        default=None,
        help="File the request came from (base for relative certificate paths)",
    )
    send_parser.add_argument(
        "--include-timings",
        action="store_true",
        help="Print timing phases after the body",
    )
    _add_common_arguments(send_parser)

    # Clear-cookies subcommand
    clear_parser = subparsers.add_parser(
        "clear-cookies",
        help="Delete all persisted cookies",
    )
    _add_common_arguments(clear_parser)

    return parser


def _add_common_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Path to settings YAML file (defaults apply when omitted)",
    )
    parser.add_argument(
        "--log-level",
        type=str.upper,
        default=None,
        choices=LOG_LEVELS,
        help="Logging level (default: $HTTP_RUNNER_LOG_LEVEL or WARNING)",
    )


def parse_args(args: list[str] | None = None) -> SendArgs | ClearCookiesArgs:
    """Parse command-line arguments and return typed args dataclass.

    Raises:
        SystemExit: If arguments are invalid (argparse behavior).
    """
    parser = build_parser()
    namespace = parser.parse_args(args)

    if namespace.command == "send":
        return SendArgs(
            method=namespace.method,
            url=namespace.url,
            headers=namespace.headers or [],
            data=namespace.data,
            data_file=namespace.data_file,
            config=namespace.config,
            name=namespace.name,
            source_file=namespace.source_file,
            include_timings=namespace.include_timings,
            log_level=namespace.log_level,
        )
    return ClearCookiesArgs(config=namespace.config, log_level=namespace.log_level)


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    try:
        parsed = parse_args(argv)
        setup_logging(parsed.log_level)

        if isinstance(parsed, SendArgs):
            return run_send(parsed)
        return run_clear_cookies(parsed)

    except KeyboardInterrupt:
        print("\nInterrupted", file=sys.stderr)
        return EXIT_INTERRUPTED


# =============================================================================
# Settings
# =============================================================================


def _load_settings(config: Path | None) -> EngineSettings | None:
    """Load and validate settings, printing problems. None means a fatal error."""
    if config is None:
        return EngineSettings()

    try:
        settings = load_settings(config)
    except ConfigError as e:
        print(f"Error loading config: {e}", file=sys.stderr)
        return None

    result = validate_settings(settings)
    for warning in result.warnings:
        print(f"WARNING: {warning}", file=sys.stderr)
    for error in result.errors:
        print(f"ERROR: {error}", file=sys.stderr)
    if not result.is_valid:
        return None
    return settings


def _print_warning(message: str) -> None:
    print(f"Warning: {message}", file=sys.stderr)


# =============================================================================
# Send
# =============================================================================


def run_send(args: SendArgs, *, transport: httpx.AsyncBaseTransport | None = None) -> int:
    """Run send mode.

    Args:
        args: Parsed send arguments.
        transport: httpx transport replacing the network (used by tests).
    """
    settings = _load_settings(args.config)
    if settings is None:
        return EXIT_CONFIG_ERROR

    body: str | bytes | None = args.data
    if args.data_file is not None:
        try:
            body = args.data_file.read_bytes()
        except OSError as e:
            print(f"Error reading body file: {e}", file=sys.stderr)
            return EXIT_CONFIG_ERROR

    try:
        descriptor = RequestDescriptor(
            method=args.method,
            url=args.url,
            headers=dict(args.headers),
            body=body,
            name=args.name,
            source_file=str(args.source_file) if args.source_file else None,
        )
    except PydanticValidationError as e:
        print(f"Invalid request: {e}", file=sys.stderr)
        return EXIT_CONFIG_ERROR

    try:
        record = asyncio.run(_send(descriptor, settings, transport))
    except (TransportError, AuthenticationError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_REQUEST_FAILED
    except RequestCancelledError:
        print("\nInterrupted", file=sys.stderr)
        return EXIT_INTERRUPTED

    print(format_record(record, include_timings=args.include_timings))
    return EXIT_OK


async def _send(
    descriptor: RequestDescriptor,
    settings: EngineSettings,
    transport: httpx.AsyncBaseTransport | None,
) -> HttpResponseRecord:
    async with RequestExecutor(settings, notifier=_print_warning, transport=transport) as executor:
        return await executor.send(descriptor)


def format_record(record: HttpResponseRecord, *, include_timings: bool = False) -> str:
    """Render a response as status line, headers, blank line and body."""
    lines = [f"{record.http_version} {record.status_code} {record.status_text}".rstrip()]
    for name, value in record.headers.items():
        values = value if isinstance(value, list) else [value]
        lines.extend(f"{name}: {item}" for item in values)
    lines.append("")
    lines.append(record.body)

    if include_timings:
        lines.append("")
        lines.append(f"Body: {record.body_size} bytes, headers: {record.headers_size} bytes")
        for phase, duration in record.timings.model_dump().items():
            shown = "n/a" if duration is None else f"{duration:.1f} ms"
            lines.append(f"  {phase}: {shown}")

    return "\n".join(lines)


# =============================================================================
# Clear cookies
# =============================================================================


def run_clear_cookies(args: ClearCookiesArgs) -> int:
    """Run clear-cookies mode."""
    settings = _load_settings(args.config)
    if settings is None:
        return EXIT_CONFIG_ERROR

    asyncio.run(_clear_cookies(settings))
    print(f"Cleared cookies at {settings.cookie_path}")
    return EXIT_OK


async def _clear_cookies(settings: EngineSettings) -> None:
    executor = RequestExecutor(settings, notifier=_print_warning)
    await executor.clear_cookies()
