"""check_vpn command line, following the monitoring plugin conventions.

Exactly one line goes to stdout and the exit code carries the status.

    check_vpn -t ssh -H lns.example.com -u root -- -p 2222
"""

import argparse
import sys
from typing import List, Optional

from pydantic import ValidationError

from .config import load_settings
from .logging_utility import Logger, logger
from .vpn.exceptions import ConfigurationError, UsageError
from .vpn.manager import VPNCheckManager
from .vpn.models import CheckRequest, CheckResult, CheckStatus
from .vpn.plugins.registry import available_plugins


class ArgumentParser(argparse.ArgumentParser):
    def error(self, message):
        raise UsageError(message)


def build_parser() -> ArgumentParser:
    parser = ArgumentParser(
        prog="check_vpn",
        description="Bring up a VPN, test connectivity through it and tear it down.",
    )
    parser.add_argument("-t", "--type", dest="vpn_type", required=True,
                        help=f"VPN type ({', '.join(available_plugins())})")
    parser.add_argument("-H", "--host", required=True, help="LNS to connect to")
    parser.add_argument("-u", "--username", default="")
    parser.add_argument("-p", "--password", default="")
    parser.add_argument("-d", "--device", help="device to use instead of allocating one")
    parser.add_argument("-U", "--url", help="URL fetched through the tunnel")
    parser.add_argument("-l", "--lock", action="store_true",
                        help="serialize with other check_vpn runs on this host")
    parser.add_argument("-c", "--config", help="configuration file")
    parser.add_argument("-v", "--verbose", action="store_true", help="log to stderr as well")
    parser.add_argument("extra_args", nargs=argparse.REMAINDER,
                        help="backend specific arguments, after --")
    return parser


def parse_request(argv: Optional[List[str]] = None):
    args = build_parser().parse_args(argv)
    extra_args = list(args.extra_args)
    if extra_args and extra_args[0] == "--":
        extra_args = extra_args[1:]
    try:
        request = CheckRequest(
            vpn_type=args.vpn_type,
            host=args.host,
            username=args.username,
            password=args.password,
            device=args.device,
            url=args.url,
            lock=args.lock,
            extra_args=extra_args,
        )
    except ValidationError as e:
        raise UsageError(f"Invalid arguments: {e.errors()[0]['msg']}")
    return args, request


def main(argv: Optional[List[str]] = None) -> int:
    try:
        args, request = parse_request(argv)
        if args.verbose:
            Logger().enable_console()
        settings = load_settings(args.config)
        result = VPNCheckManager(settings).run(request)
    except (UsageError, ConfigurationError) as e:
        logger.error(f"Usage error: {e}")
        result = CheckResult(status=CheckStatus.UNKNOWN, message=str(e))
    except Exception as e:
        logger.exception(f"Unexpected error: {e}")
        result = CheckResult(status=CheckStatus.UNKNOWN, message=f"Unexpected error: {e}")

    print(result.line)
    return result.exit_code


if __name__ == "__main__":
    sys.exit(main())
