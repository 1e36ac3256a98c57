"""restfile: main entry point.

Ties together the CLI, environment, parser and engine modules to send
every request of a document.
"""

import logging
import os
import sys

from restfile.cli import parse_cli, resolve_env_file
from restfile.engine import print_report, save_response, send_request
from restfile.env import load_environments, select_environment
from restfile.parser import (
    ParseError,
    ParseResult,
    create_requests,
    load_request_file,
    parse_document,
)


def configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )


def main(argv: list[str] | None = None) -> int:
    """Run restfile.

    Args:
        argv: Optional argument list (defaults to sys.argv).

    Returns:
        Exit code (0 = all requests sent, 1 = some requests failed,
        2 = error).
    """
    args = parse_cli(argv)
    configure_logging(args.verbose)

    print(f"[*] Loading requests from: {args.request_file}")
    try:
        content = load_request_file(args.request_file)
    except (OSError, UnicodeDecodeError) as exc:
        print(f"Error reading request file: {exc}", file=sys.stderr)
        return 2

    environment = None
    env_file = resolve_env_file(args)
    if env_file:
        try:
            environment = select_environment(
                load_environments(env_file), args.env_name
            )
        except (OSError, ValueError) as exc:
            print(f"Error loading environment: {exc}", file=sys.stderr)
            return 2
        print(f"[*] Using environment '{args.env_name}' from: {env_file}")

    base_dir = os.path.dirname(os.path.abspath(args.request_file))

    print("[*] Parsing requests...")
    if args.fail_fast:
        try:
            result = ParseResult(create_requests(content, base_dir, environment), {})
        except ParseError as exc:
            print(f"Error parsing request #{exc.block}: {exc}", file=sys.stderr)
            return 2
        except OSError as exc:
            print(
                f"Error reading attachment in request #{exc.block}: {exc}",
                file=sys.stderr,
            )
            return 2
    else:
        result = parse_document(content, base_dir, environment)

    for number, exc in sorted(result.failures.items()):
        print(f"Error parsing request #{number}: {exc}", file=sys.stderr)

    print(f"    Requests: {len(result.requests)}")
    print(f"    Failed  : {len(result.failures)}")

    failed = bool(result.failures)
    for request in result.requests:
        print(f"\n[*] {request.method} {request.url}")
        try:
            exchange = send_request(request, verify=args.verify, timeout=args.timeout)
        except Exception as exc:
            print(f"Error during request: {exc}", file=sys.stderr)
            failed = True
            continue

        print_report(exchange, verbose=args.verbose)

        if args.save:
            try:
                path = save_response(exchange)
            except OSError as exc:
                print(f"Error saving response: {exc}", file=sys.stderr)
                failed = True
            else:
                print(f"    Saved  : {path}")

    return 1 if failed else 0


if __name__ == "__main__":
    sys.exit(main())
