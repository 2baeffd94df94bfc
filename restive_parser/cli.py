"""CLI entry point for restive-parser.

Handles argument parsing and dispatches to parse or rules mode.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
import re
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Callable

from restive_parser.config_loader import load_settings
from restive_parser.errors import RestiveParserError
from restive_parser.models import HttpRequest, ParserSettings, StreamBody
from restive_parser.patch_rules import parse_patch_header
from restive_parser.request_parser import HttpRequestParser
from restive_parser.streams import stream_to_text

VARIABLE_PATTERN = re.compile(r"\{\{\s*([^{}\s]+)\s*\}\}")


def parse_variable(value: str) -> tuple[str, str]:
    """Parse NAME=VALUE format.

    Returns:
        Tuple of (name, value).

    Raises:
        argparse.ArgumentTypeError: If format is invalid.
    """
    name, sep, var_value = value.partition("=")
    if not sep:
        raise argparse.ArgumentTypeError(
            f"Invalid format '{value}'. Expected NAME=VALUE (e.g., 'userId=42')"
        )
    name = name.strip()
    if not name:
        raise argparse.ArgumentTypeError(
            f"Invalid format '{value}'. Variable name cannot be empty."
        )
    return (name, var_value)


def make_variable_resolver(variables: dict[str, str]) -> Callable[[str], str]:
    """Resolver replacing ``{{name}}`` with its value; unknown names are left as written."""

    def resolve(text: str) -> str:
        def replacer(match: re.Match) -> str:
            return variables.get(match.group(1), match.group(0))

        return VARIABLE_PATTERN.sub(replacer, text)

    return resolve


@dataclass
class ParseArgs:
    """Parsed arguments for parse mode."""

    file: Path
    config: Path | None
    base_path: Path | None
    variables: dict[str, str]
    debug: bool
    name: str | None
    verbose: bool


@dataclass
class RulesArgs:
    """Parsed arguments for rules mode."""

    values: list[str]
    verbose: bool


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser with parse and rules subcommands."""
    parser = argparse.ArgumentParser(
        prog="restive-parser",
        description="Parse REST client request text into materialized, patched HTTP requests.",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Log body pipeline stages to stderr",
    )

    subparsers = parser.add_subparsers(dest="command", required=True, help="Execution mode")

    # Parse subcommand
    parse_parser = subparsers.add_parser(
        "parse",
        help="Parse a request file and print the resulting request",
    )
    parse_parser.add_argument(
        "file",
        type=Path,
        help="Path to the request text file",
    )
    parse_parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Path to a YAML settings file",
    )
    parse_parser.add_argument(
        "--base-path",
        type=Path,
        default=None,
        help="Directory for relative '<' file paths (default: the request file's directory)",
    )
    parse_parser.add_argument(
        "--var",
        type=parse_variable,
        action="append",
        default=[],
        metavar="NAME=VALUE",
        help="Variable for {{NAME}} substitution (can be repeated)",
    )
    parse_parser.add_argument(
        "--debug",
        action="store_true",
        help="Add the patch debug trace header to the request",
    )
    parse_parser.add_argument(
        "--name",
        default=None,
        help="Name attached to the parsed request",
    )

    # Rules subcommand
    rules_parser = subparsers.add_parser(
        "rules",
        help="Tokenize patch header values and print the rules",
    )
    rules_parser.add_argument(
        "values",
        nargs="+",
        help="Patch header values, e.g. '$.name=Alice; $.age=30'",
    )

    return parser


def parse_parse_args(namespace: argparse.Namespace) -> ParseArgs:
    """Convert argparse namespace to ParseArgs dataclass."""
    return ParseArgs(
        file=namespace.file,
        config=namespace.config,
        base_path=namespace.base_path,
        variables=dict(namespace.var),
        debug=namespace.debug,
        name=namespace.name,
        verbose=namespace.verbose,
    )


def parse_rules_args(namespace: argparse.Namespace) -> RulesArgs:
    """Convert argparse namespace to RulesArgs dataclass."""
    return RulesArgs(values=namespace.values, verbose=namespace.verbose)


def parse_args(args: list[str] | None = None) -> ParseArgs | RulesArgs:
    """Parse command-line arguments and return typed args dataclass.

    Args:
        args: Command-line arguments to parse. If None, uses sys.argv[1:].

    Raises:
        SystemExit: If arguments are invalid (argparse behavior).
    """
    parser = build_parser()
    namespace = parser.parse_args(args)

    if namespace.command == "parse":
        return parse_parse_args(namespace)
    elif namespace.command == "rules":
        return parse_rules_args(namespace)
    else:
        parser.error(f"Unknown command: {namespace.command}")


def main(args: list[str] | None = None) -> int:
    """Main entry point."""
    try:
        parsed = parse_args(args)

        if parsed.verbose:
            logging.basicConfig(level=logging.DEBUG, format="%(levelname)s %(name)s: %(message)s")

        if isinstance(parsed, RulesArgs):
            return run_rules(parsed)
        return run_parse(parsed)

    except KeyboardInterrupt:
        print("\nInterrupted", file=sys.stderr)
        return 1


def run_rules(args: RulesArgs) -> int:
    """Run rules mode: print one ``path => value`` line per rule."""
    rules = parse_patch_header(args.values)
    if not rules:
        print("No patch rules found", file=sys.stderr)
        return 1
    for rule in rules:
        print(f"{rule.path} => {rule.raw_value}")
    return 0


def run_parse(args: ParseArgs) -> int:
    """Run parse mode: parse the request file and print the request."""
    if not args.file.is_file():
        print(f"Error: request file not found: {args.file}", file=sys.stderr)
        return 1

    try:
        settings = load_settings(args.config) if args.config else ParserSettings()
        if args.debug:
            settings = settings.model_copy(update={"body_patch_debug": True})

        # Universal newlines, rejoined with the separator the splitter expects.
        text = os.linesep.join(args.file.read_text(encoding="utf-8").splitlines())
        base_path = args.base_path or args.file.resolve().parent

        parser = HttpRequestParser(text, settings, make_variable_resolver(args.variables), base_path)
        output = asyncio.run(_parse_and_format(parser, args.name, settings.max_stream_buffer_size))
    except RestiveParserError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    print(output)
    return 0


async def _parse_and_format(parser: HttpRequestParser, name: str | None, max_size: int) -> str:
    request = await parser.parse(name)
    body = request.body_text
    if isinstance(request.body, StreamBody):
        body = await stream_to_text(request.body.stream, max_size)
    return format_request(request, body)


def format_request(request: HttpRequest, body: str | None) -> str:
    """Render a request as HTTP/1.1-style text."""
    lines = []
    if request.name:
        lines.append(f"# @name {request.name}")
    lines.append(f"{request.method} {request.url}")
    lines.extend(f"{name}: {value}" for name, value in request.headers.items())
    if body is not None:
        lines.append("")
        lines.append(body)
    return "\n".join(lines)


if __name__ == "__main__":
    sys.exit(main())
