from __future__ import annotations

import json
import logging
import sqlite3
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional

from ..errors import Conflict, Inconsistent, IntegrityError, StorageError
from ..models import Node, Route, SecretRecord

log = logging.getLogger("shiplock.storage")


def _json_dumps(obj: Any) -> str:
    """Deterministic JSON serialization.

    Security notes:
    - Do not serialize arbitrary objects; this function expects JSON-safe values.
    """

    return json.dumps(obj, sort_keys=True, separators=(",", ":"))


def _dt_to_iso(dt: datetime) -> str:
    return dt.isoformat()


def _dt_from_iso(text: str) -> datetime:
    return datetime.fromisoformat(text)


def _path_from_json(route_id: str, text: str) -> List[str]:
    """Parse a stored route path.

    Security: DB content is untrusted; anything but a list of strings is rejected.
    """

    try:
        value = json.loads(text)
    except ValueError:
        raise Inconsistent(f"route {route_id} has a malformed path") from None
    if not isinstance(value, list) or not value or not all(isinstance(x, str) and x for x in value):
        raise Inconsistent(f"route {route_id} has a malformed path")
    return value


def _route_from_row(row: Any) -> Route:
    path = tuple(_path_from_json(row[0], row[3]))
    try:
        return Route(route_id=row[0], origin_id=row[1], destination_id=row[2], path=path, rank=int(row[4]))
    except (TypeError, ValueError) as e:
        raise Inconsistent(f"route {row[0]} is malformed: {e}") from None


def _node_from_row(row: Any) -> Node:
    """Build a Node from a catalog row; a bad address or category is a catalog fault."""

    try:
        return Node.from_row(row[0], row[1], row[2], row[3], row[4])
    except (TypeError, ValueError) as e:
        raise Inconsistent(f"node {row[0]} is malformed: {e}") from None


@dataclass(slots=True)
class SQLiteStore:
    """SQLite persistence for the node catalog, routes and encrypted secrets.

    Implements both SecretRepository and CatalogRepository.

    Security notes:
    - Treat all values read from the database as untrusted.
    - Secrets are stored as ciphertext only; IV and ciphertext are hex text.
    - token_id is the primary key of encrypted_secrets, so two concurrent
      inserts for one token cannot both succeed.

    """

    db_path: Path
    timeout_sec: float = 5.0

    def __post_init__(self) -> None:
        self.db_path = Path(self.db_path)

    def connect(self) -> sqlite3.Connection:
        """Open a SQLite connection."""

        con = sqlite3.connect(str(self.db_path), timeout=float(self.timeout_sec))
        con.execute("PRAGMA foreign_keys = ON")
        return con

    @contextmanager
    def _session(self) -> Iterator[sqlite3.Connection]:
        """Connection scoped to one transaction; sqlite3 errors become StorageError."""

        try:
            con = self.connect()
        except sqlite3.Error as e:
            raise StorageError(f"cannot open database: {e.__class__.__name__}") from e
        try:
            with con:
                yield con
        except sqlite3.IntegrityError:
            raise
        except OverflowError as e:
            raise StorageError("integer value out of SQLite INTEGER range") from e
        except sqlite3.Error as e:
            log.error("sqlite_error", extra={"db": str(self.db_path), "error": repr(e)})
            raise StorageError(f"database operation failed: {e.__class__.__name__}") from e
        finally:
            con.close()

    def init_schema(self) -> None:
        """Create tables if missing."""

        with self._session() as con:
            con.executescript(
                """
                CREATE TABLE IF NOT EXISTS nodes (
                    node_id TEXT PRIMARY KEY,
                    name TEXT NOT NULL,
                    ledger_address TEXT NOT NULL,
                    category TEXT,
                    node_type TEXT
                );

                CREATE TABLE IF NOT EXISTS routes (
                    route_id TEXT PRIMARY KEY,
                    origin_node_id TEXT NOT NULL,
                    destination_node_id TEXT NOT NULL,
                    route_path_json TEXT NOT NULL,
                    rank INTEGER NOT NULL DEFAULT 1
                );

                CREATE INDEX IF NOT EXISTS routes_by_pair
                    ON routes(origin_node_id, destination_node_id, rank);

                CREATE TABLE IF NOT EXISTS encrypted_secrets (
                    token_id INTEGER PRIMARY KEY,
                    iv TEXT NOT NULL,
                    ciphertext TEXT NOT NULL,
                    created_at TEXT NOT NULL
                );
                """
            )

    # --- secrets ---

    def insert(self, record: SecretRecord) -> None:
        """Insert a secret record; duplicate token ids fail with Conflict."""

        try:
            with self._session() as con:
                con.execute(
                    "INSERT INTO encrypted_secrets(token_id, iv, ciphertext, created_at) VALUES(?,?,?,?)",
                    (
                        int(record.token_id),
                        record.iv.hex(),
                        record.ciphertext.hex(),
                        _dt_to_iso(record.created_at),
                    ),
                )
        except sqlite3.IntegrityError:
            raise Conflict(f"secret already stored for token {record.token_id}") from None

    def replace(self, record: SecretRecord) -> None:
        """Delete any existing record and insert a new one in a single transaction."""

        with self._session() as con:
            con.execute("DELETE FROM encrypted_secrets WHERE token_id = ?", (int(record.token_id),))
            con.execute(
                "INSERT INTO encrypted_secrets(token_id, iv, ciphertext, created_at) VALUES(?,?,?,?)",
                (
                    int(record.token_id),
                    record.iv.hex(),
                    record.ciphertext.hex(),
                    _dt_to_iso(record.created_at),
                ),
            )

    def fetch(self, token_id: int) -> Optional[SecretRecord]:
        with self._session() as con:
            row = con.execute(
                "SELECT token_id, iv, ciphertext, created_at FROM encrypted_secrets WHERE token_id = ?",
                (int(token_id),),
            ).fetchone()
        if row is None:
            return None
        try:
            return SecretRecord(
                token_id=int(row[0]),
                iv=bytes.fromhex(row[1]),
                ciphertext=bytes.fromhex(row[2]),
                created_at=_dt_from_iso(row[3]),
            )
        except ValueError as e:
            # Malformed hex or IV length: indistinguishable from tampering.
            raise IntegrityError(f"stored secret for token {token_id} is malformed") from e

    def delete(self, token_id: int) -> bool:
        with self._session() as con:
            cur = con.execute("DELETE FROM encrypted_secrets WHERE token_id = ?", (int(token_id),))
            return cur.rowcount > 0

    def list_token_ids(self, *, limit: int = 100, offset: int = 0) -> List[int]:
        limit_i = max(1, min(1000, int(limit)))
        offset_i = max(0, int(offset))
        with self._session() as con:
            rows = con.execute(
                "SELECT token_id FROM encrypted_secrets ORDER BY token_id LIMIT ? OFFSET ?",
                (limit_i, offset_i),
            ).fetchall()
        return [int(r[0]) for r in rows]

    # --- catalog ---

    def find_routes(self, origin_id: str, destination_id: Optional[str] = None) -> List[Route]:
        where = ["origin_node_id = ?"]
        params: List[Any] = [str(origin_id)]
        if destination_id is not None:
            where.append("destination_node_id = ?")
            params.append(str(destination_id))

        query = f"""
            SELECT route_id, origin_node_id, destination_node_id, route_path_json, rank
            FROM routes
            WHERE {" AND ".join(where)}
            ORDER BY rank ASC, route_id ASC
        """
        with self._session() as con:
            rows = con.execute(query, tuple(params)).fetchall()

        return [_route_from_row(r) for r in rows]

    def find_nodes(self, node_ids: Optional[Iterable[str]] = None) -> List[Node]:
        query = "SELECT node_id, name, ledger_address, category, node_type FROM nodes"
        params: List[Any] = []
        if node_ids is not None:
            ids = sorted({str(x) for x in node_ids})
            if not ids:
                return []
            query += f" WHERE node_id IN ({','.join('?' for _ in ids)})"
            params.extend(ids)
        query += " ORDER BY node_id"

        with self._session() as con:
            rows = con.execute(query, tuple(params)).fetchall()

        return [_node_from_row(r) for r in rows]

    def import_catalog(self, data: Mapping[str, Any], *, overwrite: bool = False) -> Dict[str, int]:
        """Load reference nodes and routes.

        Input shape:
          {"nodes": [{"id", "name", "ledger_address", "category"?, "node_type"?}],
           "routes": [{"id"?, "origin_node_id", "destination_node_id", "route_path", "rank"?}]}

        Administrative helper; the resolver never writes the catalog.
        """

        nodes = [
            Node.from_row(
                str(n["id"]),
                str(n.get("name") or n["id"]),
                str(n["ledger_address"]),
                n.get("category"),
                n.get("node_type"),
            )
            for n in (data.get("nodes") or [])
        ]
        routes = []
        for i, r in enumerate(data.get("routes") or []):
            origin = str(r["origin_node_id"])
            dest = str(r["destination_node_id"])
            rank = int(r.get("rank", 1))
            route_id = str(r.get("id") or f"{origin}->{dest}#{rank}.{i}")
            routes.append(
                Route(
                    route_id=route_id,
                    origin_id=origin,
                    destination_id=dest,
                    path=tuple(str(x) for x in r["route_path"]),
                    rank=rank,
                )
            )

        self.init_schema()
        verb = "INSERT OR REPLACE" if overwrite else "INSERT"
        try:
            with self._session() as con:
                for n in nodes:
                    con.execute(
                        f"{verb} INTO nodes(node_id, name, ledger_address, category, node_type) VALUES(?,?,?,?,?)",
                        (n.node_id, n.name, n.ledger_address, n.category.value, n.node_type),
                    )
                for r in routes:
                    con.execute(
                        f"""{verb} INTO routes(
                            route_id, origin_node_id, destination_node_id, route_path_json, rank
                        ) VALUES(?,?,?,?,?)""",
                        (r.route_id, r.origin_id, r.destination_id, _json_dumps(list(r.path)), r.rank),
                    )
        except sqlite3.IntegrityError as e:
            raise Conflict(f"catalog entry already exists: {e}") from None

        return {"nodes": len(nodes), "routes": len(routes)}

    def import_catalog_file(self, path: str, *, overwrite: bool = False) -> Dict[str, int]:
        with open(path, "r", encoding="utf-8") as f:
            return self.import_catalog(json.load(f), overwrite=overwrite)
