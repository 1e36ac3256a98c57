"""Command-line interface for restfile."""

import argparse
import os
import sys

from restfile import __version__
from restfile.env import DEFAULT_ENV_FILENAME


def build_parser() -> argparse.ArgumentParser:
    """Build and return the argument parser for the restfile CLI."""
    parser = argparse.ArgumentParser(
        prog="restfile",
        description=(
            "restfile v{ver}: send the HTTP requests written in a "
            "plaintext .http document.\n\n"
            "Requests are separated by lines starting with '###'. "
            "{{{{placeholders}}}} are filled in from the selected "
            "environment before parsing."
        ).format(ver=__version__),
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=(
            "Examples:\n"
            "  restfile requests.http\n"
            "  restfile requests.http --env dev --save\n"
            "  restfile requests.http --env prod --env-file envs.json "
            "--verify --fail-fast\n"
        ),
    )

    parser.add_argument(
        "request_file",
        help="Path to the .http document containing the requests.",
    )
    parser.add_argument(
        "--env",
        default=None,
        dest="env_name",
        help="Name of the environment used to fill in placeholders.",
    )
    parser.add_argument(
        "--env-file",
        default=None,
        help=(
            "JSON file with the environments (default: "
            f"{DEFAULT_ENV_FILENAME} next to the request file)."
        ),
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Print debug logs, response headers and bodies.",
    )
    parser.add_argument(
        "-s",
        "--save",
        action="store_true",
        help="Save each response body under .idea/httpRequests.",
    )
    parser.add_argument(
        "--verify",
        action="store_true",
        default=False,
        help="Verify TLS certificates (default: off).",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=30.0,
        help="Request timeout in seconds (default: 30).",
    )
    parser.add_argument(
        "--fail-fast",
        action="store_true",
        help="Abort before sending anything if any request fails to parse.",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )

    return parser


def resolve_env_file(args: argparse.Namespace) -> str | None:
    """Return the env file to read, or None when no environment is used."""
    if args.env_file:
        return args.env_file
    if not args.env_name:
        return None
    directory = os.path.dirname(os.path.abspath(args.request_file))
    return os.path.join(directory, DEFAULT_ENV_FILENAME)


def _check_readable(path: str, what: str) -> None:
    if not os.path.isfile(path):
        print(f"Error: {what} not found: '{path}'", file=sys.stderr)
        sys.exit(1)

    if not os.access(path, os.R_OK):
        print(f"Error: {what} is not readable: '{path}'", file=sys.stderr)
        sys.exit(1)


def validate_args(args: argparse.Namespace) -> None:
    """Validate parsed CLI arguments.

    Raises:
        SystemExit: If an input file is missing or unreadable, or the
            timeout is not positive.
    """
    _check_readable(args.request_file, "Request file")

    if args.env_file and not args.env_name:
        print("Error: --env-file requires --env.", file=sys.stderr)
        sys.exit(1)

    env_file = resolve_env_file(args)
    if env_file:
        _check_readable(env_file, "Env file")

    if args.timeout <= 0:
        print("Error: Timeout must be positive.", file=sys.stderr)
        sys.exit(1)


def parse_cli(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse and validate command-line arguments.

    Args:
        argv: Optional list of arguments (defaults to sys.argv).

    Returns:
        Parsed and validated argument namespace.
    """
    parser = build_parser()
    args = parser.parse_args(argv)
    validate_args(args)
    return args
