from __future__ import annotations

import argparse
import json
import sys

from shiplock.client.http import HttpResponse, ShiplockHttpClient


def read_secret_text(path: str) -> str:
    """Read a hex secret from a file, or from stdin when path is "-".

    Security notes:
    - Secrets are never taken as command-line values (they would end up
      in shell history and process listings).

    """

    if path == "-":
        text = sys.stdin.readline()
    else:
        with open(path, "r", encoding="utf-8") as f:
            text = f.readline()
    return text.strip()


def _client(args: argparse.Namespace) -> ShiplockHttpClient:
    return ShiplockHttpClient(args.url, api_key=args.api_key, timeout_sec=args.timeout)


def _emit(r: HttpResponse) -> int:
    """Print a response body; errors go to stderr with exit code 2.

    Security notes:
    - Treat server response as untrusted.

    """

    if r.status >= 400:
        print(r.body_bytes.decode("utf-8", errors="replace"), file=sys.stderr)
        return 2
    if not r.body_bytes:
        print(json.dumps({"status": r.status}, indent=2, sort_keys=True))
        return 0
    print(json.dumps(r.json(), indent=2, sort_keys=True, default=str))
    return 0


def cmd_client_health(args: argparse.Namespace) -> int:
    """Call GET /health."""
    return _emit(_client(args).get("/health"))


def cmd_client_destinations(args: argparse.Namespace) -> int:
    return _emit(_client(args).destinations(args.origin))


def cmd_client_route(args: argparse.Namespace) -> int:
    return _emit(_client(args).route(args.origin, args.destination))


def cmd_client_store_secret(args: argparse.Namespace) -> int:
    """Call POST /secrets.

    Security notes:
    - The secret travels in the request body; use https outside localhost.

    """
    try:
        secret = read_secret_text(args.secret_file)
    except OSError as e:
        print(f"error: cannot read secret: {e}", file=sys.stderr)
        return 2
    return _emit(_client(args).store_secret(args.token_id, secret, replace=bool(args.replace)))


def cmd_client_reveal_secret(args: argparse.Namespace) -> int:
    return _emit(_client(args).reveal_secret(args.token_id))


def cmd_client_purge_secret(args: argparse.Namespace) -> int:
    return _emit(_client(args).purge_secret(args.token_id))


def register_client_commands(sub: argparse._SubParsersAction) -> None:
    """Register the `client` command and its subcommands."""

    client = sub.add_parser("client", help="shiplock API client (talk to a running server)")
    client.add_argument("--url", default="http://127.0.0.1:8080", help="Base API URL")
    client.add_argument("--api-key", default=None, help="API key (X-Shiplock-API-Key)")
    client.add_argument("--timeout", type=float, default=30.0, help="Request timeout in seconds")
    csub = client.add_subparsers(dest="client_cmd", required=True)

    h = csub.add_parser("health", help="Check server health")
    h.set_defaults(func=cmd_client_health)

    d = csub.add_parser("destinations", help="Destinations reachable from an origin")
    d.add_argument("origin", help="Origin node id")
    d.set_defaults(func=cmd_client_destinations)

    r = csub.add_parser("route", help="Resolve a route to ledger addresses")
    r.add_argument("origin", help="Origin node id")
    r.add_argument("destination", help="Destination node id")
    r.set_defaults(func=cmd_client_route)

    s = csub.add_parser("store-secret", help="Store the secret for a token id")
    s.add_argument("token_id", type=int, help="Token id")
    s.add_argument("--secret-file", default="-", help="File holding the hex secret (default: stdin)")
    s.add_argument("--replace", action="store_true", help="Overwrite an existing secret")
    s.set_defaults(func=cmd_client_store_secret)

    rv = csub.add_parser("reveal-secret", help="Reveal the stored secret for a token id")
    rv.add_argument("token_id", type=int, help="Token id")
    rv.set_defaults(func=cmd_client_reveal_secret)

    p = csub.add_parser("purge-secret", help="Delete the stored secret for a token id")
    p.add_argument("token_id", type=int, help="Token id")
    p.set_defaults(func=cmd_client_purge_secret)
