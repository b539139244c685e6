"""Command line tool for running the helm release provider outside its invoker."""

import argparse
import asyncio
import logging
import sys
import traceback

from helm_provider.exceptions import HelmProviderException
from . import identifier, operation

_LOGGER = logging.getLogger(__name__)


def _make_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Command line utility for polling helm release operations.",
    )
    parser.add_argument(
        "--log-level", choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
    )

    subparsers = parser.add_subparsers(dest="command", help="Command", required=True)

    operation.OperationAction.register(subparsers)
    identifier.EncodeIdAction.register(subparsers)
    identifier.DecodeIdAction.register(subparsers)
    return parser


def main(argv: list[str] | None = None) -> None:
    """Helm-provider command line tool main entry point."""
    parser = _make_parser()
    args = parser.parse_args(argv)

    if args.log_level:
        logging.basicConfig(level=args.log_level)

    action = args.cls()
    try:
        asyncio.run(action.run(**vars(args)))
    except HelmProviderException as err:
        if args.log_level == "DEBUG":
            traceback.print_exc(file=sys.stderr)
        print("helm-provider error: ", err, file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
