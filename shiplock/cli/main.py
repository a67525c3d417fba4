from __future__ import annotations

import argparse
import json
import logging
import os
import secrets as _random
import sys
from pathlib import Path
from typing import List, Optional

from shiplock.cli.client_cmds import read_secret_text, register_client_commands
from shiplock.core.config import ENV_DB, MASTER_KEY_BYTES, MasterKey, ServiceConfig
from shiplock.core.errors import NotFound, ShiplockError
from shiplock.core.routing import RouteResolver
from shiplock.core.secrets import (
    EncryptedSecretStore,
    SecretLifecycleManager,
    commitment_hash,
    generate_secret,
    parse_hex,
    to_hex,
)
from shiplock.core.storage import SQLiteStore
from shiplock.utils.json_safe import to_jsonable


def _print_json(obj: object) -> None:
    print(json.dumps(to_jsonable(obj), indent=2, sort_keys=True, default=str))


def _db_path(args: argparse.Namespace) -> Path:
    raw = getattr(args, "db", None) or os.environ.get(ENV_DB)
    if not raw:
        raise ShiplockError(f"no database given; pass --db or set {ENV_DB}")
    return Path(raw)


def _load_master_key(args: argparse.Namespace) -> MasterKey:
    """Master key from --master-key-file, falling back to SHIPLOCK_MASTER_KEY.

    Security notes:
    - The key is never accepted as a command-line value (it would end up
      in shell history and process listings).

    """

    path = getattr(args, "master_key_file", None)
    if path:
        return MasterKey.from_file(path)
    return MasterKey.from_env()


def _lifecycle(args: argparse.Namespace) -> SecretLifecycleManager:
    store = SQLiteStore(_db_path(args))
    store.init_schema()
    return SecretLifecycleManager(EncryptedSecretStore(store, _load_master_key(args)))


def _resolver(args: argparse.Namespace) -> RouteResolver:
    return RouteResolver(SQLiteStore(_db_path(args)))


def cmd_db_init(args: argparse.Namespace) -> int:
    """Initialize a SQLite store (nodes, routes, encrypted_secrets)."""

    store = SQLiteStore(_db_path(args))
    store.init_schema()
    _print_json({"ok": True, "db": str(store.db_path)})
    return 0


def cmd_import_catalog(args: argparse.Namespace) -> int:
    """Load nodes and routes from a JSON reference file."""

    store = SQLiteStore(_db_path(args))
    counts = store.import_catalog_file(args.path, overwrite=bool(args.overwrite))
    _print_json({"ok": True, "imported": counts})
    return 0


def cmd_keygen(args: argparse.Namespace) -> int:
    """Generate a random AES-256 master key.

    Security notes:
    - With --out the key file is created with mode 0600 and never overwritten.
    - Without --out the hex key is printed; redirect it somewhere safe.

    """

    material = _random.token_bytes(MASTER_KEY_BYTES)
    key = MasterKey(material)
    if args.out:
        out = os.path.abspath(args.out)
        fd = os.open(out, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o600)
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(material.hex() + "\n")
        _print_json({"key_file": out, "fingerprint": key.fingerprint()})
    else:
        print(material.hex())
    return 0


def cmd_generate_secret(args: argparse.Namespace) -> int:
    """Generate a shipment secret and its commitment. Nothing is stored."""

    gen = generate_secret()
    _print_json({"secret": gen.secret_hex, "commitment_hash": gen.commitment_hex})
    return 0


def cmd_store_secret(args: argparse.Namespace) -> int:
    """Encrypt and store the secret for a ledger-assigned token id."""

    try:
        secret = parse_hex(read_secret_text(args.secret_file))
    except (OSError, ValueError) as e:
        print(f"error: {e}", file=sys.stderr)
        return 2
    tid = _lifecycle(args).persist(args.token_id, secret, replace=bool(args.replace))
    _print_json({"ok": True, "token_id": tid, "commitment_hash": to_hex(commitment_hash(secret))})
    return 0


def cmd_reveal_secret(args: argparse.Namespace) -> int:
    """Decrypt and print the stored secret for a token.

    Security notes:
    - Prints plaintext. Intended for the pending custodian at handover.

    """

    secret = _lifecycle(args).reveal(args.token_id)
    _print_json(
        {
            "token_id": int(args.token_id),
            "secret": to_hex(secret),
            "commitment_hash": to_hex(commitment_hash(secret)),
        }
    )
    return 0


def cmd_purge_secret(args: argparse.Namespace) -> int:
    """Delete the stored secret for a token (idempotent)."""

    _lifecycle(args).destroy(args.token_id)
    _print_json({"ok": True, "token_id": int(args.token_id)})
    return 0


def cmd_list_secrets(args: argparse.Namespace) -> int:
    """List token ids that currently have a stored secret (no secret material)."""

    store = SQLiteStore(_db_path(args))
    store.init_schema()
    ids = store.list_token_ids(limit=int(args.limit), offset=int(args.offset))
    _print_json({"token_ids": ids})
    return 0


def cmd_nodes(args: argparse.Namespace) -> int:
    """List catalog nodes, optionally filtered by role."""

    resolver = _resolver(args)
    if args.role == "origin":
        nodes = resolver.origin_nodes()
    elif args.role == "destination":
        nodes = resolver.destination_nodes()
    else:
        nodes = resolver.all_nodes()
    _print_json({"nodes": list(nodes)})
    return 0


def cmd_destinations(args: argparse.Namespace) -> int:
    """List destinations reachable from an origin node."""

    found = _resolver(args).reachable_destinations(args.origin)
    _print_json({"destinations": sorted(found, key=lambda n: n.node_id)})
    return 0


def cmd_resolve_route(args: argparse.Namespace) -> int:
    """Resolve the preferred route between two nodes to ledger addresses."""

    resolved = _resolver(args).resolve(args.origin, args.destination)
    _print_json(
        {
            "route_id": resolved.route.route_id,
            "rank": resolved.route.rank,
            "node_ids": list(resolved.route.path),
            "route": list(resolved.addresses),
        }
    )
    return 0


def cmd_serve(args: argparse.Namespace) -> int:
    """Run the shiplock API server.

    Security notes:
    - If SHIPLOCK_API_KEYS is set, requests must provide X-Shiplock-API-Key.
    - Binds to 127.0.0.1 by default.

    """

    try:
        import uvicorn
    except ImportError as e:
        print(f"error: uvicorn is required to serve the API: {e}", file=sys.stderr)
        return 2

    from shiplock.api.server import create_app

    config = ServiceConfig.from_env(db_path=args.db)
    app = create_app(config=config)
    uvicorn.run(app, host=args.host, port=int(args.port), log_level=args.log_level)
    return 0


def _add_db(p: argparse.ArgumentParser) -> None:
    p.add_argument("--db", default=None, help=f"Path to SQLite DB file (default: ${ENV_DB})")


def _add_key(p: argparse.ArgumentParser) -> None:
    p.add_argument(
        "--master-key-file",
        default=None,
        help="File holding the hex master key (default: $SHIPLOCK_MASTER_KEY)",
    )


def build_parser() -> argparse.ArgumentParser:
    """Build the CLI parser."""
    p = argparse.ArgumentParser(prog="shiplock", description="shiplock CLI")
    p.add_argument("--log-level", default="WARNING", help="Logging level for stderr output")
    sub = p.add_subparsers(dest="cmd", required=True)

    # --- storage ---
    dbi = sub.add_parser("db-init", help="Create the SQLite schema")
    _add_db(dbi)
    dbi.set_defaults(func=cmd_db_init)

    ic = sub.add_parser("import-catalog", help="Import nodes and routes from JSON")
    ic.add_argument("path", help="Path to catalog JSON")
    ic.add_argument("--overwrite", action="store_true", help="Replace existing ids")
    _add_db(ic)
    ic.set_defaults(func=cmd_import_catalog)

    # --- secrets ---
    kg = sub.add_parser("keygen", help="Generate a master key")
    kg.add_argument("--out", default=None, help="Write the key to this file (0600)")
    kg.set_defaults(func=cmd_keygen)

    gs = sub.add_parser("generate-secret", help="Generate a secret and its commitment")
    gs.set_defaults(func=cmd_generate_secret)

    ss = sub.add_parser("store-secret", help="Store the secret for a token id")
    ss.add_argument("token_id", type=int, help="Ledger-assigned token id")
    ss.add_argument("--secret-file", default="-", help="File holding the hex secret (default: stdin)")
    ss.add_argument("--replace", action="store_true", help="Overwrite an existing secret")
    _add_db(ss)
    _add_key(ss)
    ss.set_defaults(func=cmd_store_secret)

    rs = sub.add_parser("reveal-secret", help="Decrypt the stored secret for a token id")
    rs.add_argument("token_id", type=int, help="Token id")
    _add_db(rs)
    _add_key(rs)
    rs.set_defaults(func=cmd_reveal_secret)

    ps = sub.add_parser("purge-secret", help="Delete the stored secret for a token id")
    ps.add_argument("token_id", type=int, help="Token id")
    _add_db(ps)
    _add_key(ps)
    ps.set_defaults(func=cmd_purge_secret)

    ls = sub.add_parser("list-secrets", help="List token ids with stored secrets")
    ls.add_argument("--limit", type=int, default=100, help="Max ids to list")
    ls.add_argument("--offset", type=int, default=0, help="Pagination offset")
    _add_db(ls)
    ls.set_defaults(func=cmd_list_secrets)

    # --- routing ---
    nd = sub.add_parser("nodes", help="List catalog nodes")
    nd.add_argument("--role", choices=["all", "origin", "destination"], default="all")
    _add_db(nd)
    nd.set_defaults(func=cmd_nodes)

    ds = sub.add_parser("destinations", help="List destinations reachable from an origin")
    ds.add_argument("origin", help="Origin node id")
    _add_db(ds)
    ds.set_defaults(func=cmd_destinations)

    rr = sub.add_parser("resolve-route", help="Resolve the preferred route to ledger addresses")
    rr.add_argument("origin", help="Origin node id")
    rr.add_argument("destination", help="Destination node id")
    _add_db(rr)
    rr.set_defaults(func=cmd_resolve_route)

    # --- API server ---
    sv = sub.add_parser("serve", help="Run the shiplock FastAPI server")
    sv.add_argument("--host", default="127.0.0.1", help="Bind host (default: 127.0.0.1)")
    sv.add_argument("--port", type=int, default=8080, help="Bind port (default: 8080)")
    sv.add_argument("--db", default=None, help="SQLite DB path (default: $SHIPLOCK_DB)")
    sv.add_argument("--log-level", default="info", help="Uvicorn log level")
    sv.set_defaults(func=cmd_serve)

    # --- API client ---
    register_client_commands(sub)

    return p


def main(argv: Optional[List[str]] = None) -> int:
    """CLI entry.

    Exit codes: 0 ok, 1 not found, 2 any other shiplock or input error.
    """
    parser = build_parser()
    args = parser.parse_args(argv)
    if args.cmd != "serve":
        logging.basicConfig(level=str(args.log_level).upper(), stream=sys.stderr)
    try:
        return int(args.func(args))
    except NotFound as e:
        print(f"error: {e}", file=sys.stderr)
        return 1
    except ShiplockError as e:
        print(f"error: {e}", file=sys.stderr)
        return 2
    except FileExistsError as e:
        print(f"error: refusing to overwrite {e.filename}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    raise SystemExit(main())
