"""
ztoken Command Line Interface.

Provides commands for signing principal tokens, fetching role tokens and
sending an authorized request to a provider.

    ztoken request  -d media -s storage -p key.pem -k v0 -z https://zts/zts/v1 -P sports -r readers -u https://provider/api
    ztoken ntoken   -d media -s storage -p key.pem -k v0
    ztoken roletoken -d media -s storage -p key.pem -k v0 -z https://zts/zts/v1 -P sports -r readers
"""

import argparse
import json
import logging
import sys
from typing import List, Optional

import httpx

from ztoken.client import ZTSClient
from ztoken.config import HTTP_TIMEOUT
from ztoken.errors import ExchangeError, ZTokenError
from ztoken.headers import bind
from ztoken.keys import load_private_key
from ztoken.principal import ServiceIdentityProvider
from ztoken.retry import call_with_retry
from ztoken.role_token import RoleToken

logger = logging.getLogger("ztoken.cli")


def setup_logging(verbose: bool = False) -> None:
    """Configure logging based on verbosity."""
    level = logging.DEBUG if verbose else logging.WARNING
    logging.basicConfig(
        level=level,
        format='%(levelname)s: %(message)s'
    )


def _open_http_client(timeout: float) -> httpx.Client:
    return httpx.Client(timeout=timeout)


def _non_empty(value: str) -> str:
    if not value.strip():
        raise argparse.ArgumentTypeError("must not be empty")
    return value


def _non_negative_int(value: str) -> int:
    try:
        number = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid integer: {value!r}")
    if number < 0:
        raise argparse.ArgumentTypeError("must not be negative")
    return number


def _identity(args: argparse.Namespace) -> ServiceIdentityProvider:
    private_key = load_private_key(args.pkey)
    return ServiceIdentityProvider(args.domain, args.service, private_key, key_id=args.keyid)


def _report_exchange_error(args: argparse.Namespace, error: ExchangeError) -> None:
    if error.forbidden:
        print(
            f"Unable to retrieve role token for: {args.role} in domain: {args.provider} (access denied)",
            file=sys.stderr,
        )
    else:
        print(f"Unable to retrieve role token: {error}", file=sys.stderr)


def _fetch_role_token(args: argparse.Namespace, http: httpx.Client) -> RoleToken:
    identity = _identity(args)
    with ZTSClient(args.ztsurl, identity, http_client=http, timeout=args.timeout) as zts:
        return call_with_retry(
            lambda: zts.get_role_token(args.provider, args.role),
            attempts=args.retries + 1,
        )


def cmd_ntoken(args: argparse.Namespace) -> int:
    """Sign and print a principal token."""
    try:
        identity = _identity(args)
        print(identity.get_ntoken())
        return 0
    except ZTokenError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


def cmd_roletoken(args: argparse.Namespace) -> int:
    """Fetch and print a role token."""
    try:
        with _open_http_client(args.timeout) as http:
            role_token = _fetch_role_token(args, http)
    except ExchangeError as e:
        _report_exchange_error(args, e)
        return 1
    except ZTokenError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    if args.json:
        print(json.dumps({
            "token": role_token.token,
            "domain": role_token.domain,
            "roles": list(role_token.roles),
            "principal": role_token.principal,
            "issueTime": role_token.timestamp,
            "expiryTime": role_token.expiry_time,
        }, indent=2))
    else:
        print(role_token.token)
    return 0


def _send_request(http: httpx.Client, url: str, header: str, value: str) -> int:
    try:
        with http.stream("GET", url, headers={header: value}) as response:
            if response.status_code == 403:
                print("Request was forbidden - not authorized", file=sys.stderr)
                return 1
            if response.status_code != 200:
                print(f"Request failed - response status code: {response.status_code}", file=sys.stderr)
                return 1

            logger.info(f"Successful response from {url}")
            for chunk in response.iter_text():
                sys.stdout.write(chunk)
            sys.stdout.flush()
            return 0
    except (httpx.HTTPError, httpx.InvalidURL) as e:
        print(f"Request failed: {e}", file=sys.stderr)
        return 1


def cmd_request(args: argparse.Namespace) -> int:
    """Fetch a role token and send an authorized GET request to the provider."""
    try:
        with _open_http_client(args.timeout) as http:
            role_token = _fetch_role_token(args, http)
            header, value = bind(role_token)
            return _send_request(http, args.url, header, value)

    except ExchangeError as e:
        _report_exchange_error(args, e)
        return 1
    except ZTokenError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='ztoken',
        description='Sign principal tokens and obtain role tokens for service-to-service requests'
    )
    parser.add_argument('-v', '--verbose', action='store_true', help='Enable verbose output')

    identity = argparse.ArgumentParser(add_help=False)
    identity.add_argument('-d', '--domain', required=True, type=_non_empty, help='domain name')
    identity.add_argument('-s', '--service', required=True, type=_non_empty, help='service name')
    identity.add_argument('-p', '--pkey', required=True, type=_non_empty, help='private key path')
    identity.add_argument('-k', '--keyid', required=True, type=_non_empty, help='key identifier')

    exchange = argparse.ArgumentParser(add_help=False)
    exchange.add_argument('-z', '--ztsurl', required=True, type=_non_empty, help='ZTS Server url')
    exchange.add_argument('-P', '--provider', required=True, type=_non_empty, help='Provider domain name')
    exchange.add_argument('-r', '--role', required=True, type=_non_empty, help='Provider role name')
    exchange.add_argument('--timeout', type=float, default=HTTP_TIMEOUT, help='HTTP timeout in seconds')
    exchange.add_argument(
        '--retries', type=_non_negative_int, default=0,
        help='Extra exchange attempts when the authority is unavailable'
    )

    subparsers = parser.add_subparsers(dest='command', help='Available commands')

    # request command
    p_request = subparsers.add_parser(
        'request', parents=[identity, exchange], help='Send an authorized request to a provider'
    )
    p_request.add_argument('-u', '--url', required=True, type=_non_empty, help='request url')

    # ntoken command
    subparsers.add_parser('ntoken', parents=[identity], help='Print a signed principal token')

    # roletoken command
    p_roletoken = subparsers.add_parser(
        'roletoken', parents=[identity, exchange], help='Print a role token'
    )
    p_roletoken.add_argument('--json', action='store_true', help='Output as JSON')

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for the CLI."""
    parser = build_parser()
    args = parser.parse_args(argv)

    setup_logging(args.verbose)

    if args.command == 'request':
        return cmd_request(args)
    elif args.command == 'ntoken':
        return cmd_ntoken(args)
    elif args.command == 'roletoken':
        return cmd_roletoken(args)
    else:
        parser.print_help(sys.stderr)
        return 2


if __name__ == '__main__':
    sys.exit(main())
