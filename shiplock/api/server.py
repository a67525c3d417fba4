from __future__ import annotations

import logging
import os
from typing import Any, Dict, List, Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Query, Response
from fastapi.responses import JSONResponse
from starlette.requests import Request

from shiplock.api.auth import (
    ANONYMOUS,
    CAP_CATALOG_READ,
    CAP_LEDGER_READ,
    CAP_SECRETS_PURGE,
    CAP_SECRETS_REVEAL,
    CAP_SECRETS_WRITE,
    Actor,
    authenticate,
    load_auth_config,
    requires_auth,
)
from shiplock.api.middleware import AccessLogMiddleware, RequestIdMiddleware
from shiplock.api.models import (
    DestinationsOut,
    GeneratedSecretOut,
    NodeOut,
    RevealSecretOut,
    RouteOut,
    RouteStopOut,
    ShipmentOut,
    StoreSecretIn,
    StoreSecretOut,
)
from shiplock.api.rate_limit import TokenBucketRateLimiter
from shiplock.core.config import ServiceConfig
from shiplock.core.errors import (
    Conflict,
    Inconsistent,
    IntegrityError,
    NotFound,
    PreconditionError,
    ShiplockError,
    StorageError,
    TransactionFailed,
)
from shiplock.core.models import Node
from shiplock.core.routing.resolver import RouteResolver
from shiplock.core.secrets.commitment import commitment_hash, parse_hex, to_hex
from shiplock.core.secrets.lifecycle import SecretLifecycleManager
from shiplock.core.secrets.store import EncryptedSecretStore
from shiplock.core.storage.sqlite_store import SQLiteStore
from shiplock.ledger.contracts import ShipmentContract
from shiplock.ledger.reader import CustodyStateReader, available_actions

log = logging.getLogger("shiplock.api")

# (status_code, error code). First match wins, so subclasses come first.
_ERROR_STATUS = (
    (NotFound, 404, "not_found"),
    (Conflict, 409, "conflict"),
    (IntegrityError, 422, "integrity_failure"),
    (Inconsistent, 500, "route_inconsistent"),
    (PreconditionError, 400, "precondition_failed"),
    (TransactionFailed, 502, "transaction_failed"),
    (StorageError, 503, "storage_unavailable"),
)

# Secret endpoints cost more rate-limit tokens than catalog reads.
_SECRET_COST = 5.0


def error_status(exc: ShiplockError) -> tuple[int, str]:
    for cls, status, code in _ERROR_STATUS:
        if isinstance(exc, cls):
            return status, code
    return 500, "internal_error"


def _node_out(n: Node) -> NodeOut:
    return NodeOut(
        id=n.node_id,
        name=n.name,
        ledger_address=n.ledger_address,
        category=n.category.value,
        node_type=n.node_type,
    )


def create_app(
    *,
    db_path: Optional[str] = None,
    config: Optional[ServiceConfig] = None,
    contract: Optional[ShipmentContract] = None,
) -> FastAPI:
    """Create the FastAPI app.

    Security notes:
    - Without a database, catalog and secret endpoints answer 404.
    - Without a master key, secret endpoints answer 404.
    - Without a contract client, /shipments answers 404.

    """

    cfg = config or ServiceConfig.from_env(db_path=db_path)
    mapping = load_auth_config()
    must_auth = requires_auth(mapping)

    log.setLevel(os.environ.get("SHIPLOCK_LOG_LEVEL", "INFO").upper())

    app = FastAPI(title="shiplock API", version="0.1")

    app.state.cfg = cfg
    app.state.must_auth = must_auth

    app.add_middleware(RequestIdMiddleware)
    app.add_middleware(AccessLogMiddleware)

    app.state.rate_limiter = TokenBucketRateLimiter.from_env()

    store: Optional[SQLiteStore] = None
    resolver: Optional[RouteResolver] = None
    lifecycle: Optional[SecretLifecycleManager] = None
    if cfg.db_path is not None:
        store = SQLiteStore(cfg.db_path)
        store.init_schema()
        resolver = RouteResolver(store, cache_ttl_sec=cfg.route_cache_ttl_sec)
        if cfg.master_key is not None:
            lifecycle = SecretLifecycleManager(EncryptedSecretStore(store, cfg.master_key))
    app.state.store = store
    app.state.resolver = resolver
    app.state.lifecycle = lifecycle
    app.state.reader = (
        CustodyStateReader(contract, store) if contract is not None and store is not None else None
    )

    @app.exception_handler(ShiplockError)
    async def _shiplock_error(request: Request, exc: ShiplockError) -> JSONResponse:
        status, code = error_status(exc)
        if status >= 500 or isinstance(exc, IntegrityError):
            log.error(
                "request_failed",
                extra={
                    "request_id": getattr(request.state, "request_id", None),
                    "error_code": code,
                    "error": str(exc),
                },
            )
        # Integrity failures do not echo details to the caller.
        detail = None if isinstance(exc, IntegrityError) else str(exc)
        return JSONResponse(status_code=status, content={"error": code, "detail": detail})

    def get_actor(
        request: Request,
        x_shiplock_api_key: Optional[str] = Header(default=None),
    ) -> Actor:
        """Authenticate and rate-limit a request. Fail closed (401/429)."""

        if not must_auth:
            actor = ANONYMOUS
        else:
            actor = authenticate(x_shiplock_api_key, mapping)
            if actor is None:
                raise HTTPException(status_code=401, detail="unauthorized")

        request.state.actor_id = actor.actor_id

        ident = actor.actor_id
        if actor is ANONYMOUS:
            client = getattr(request, "client", None)
            if client and getattr(client, "host", None):
                ident = f"ip:{client.host}"

        cost = _SECRET_COST if request.url.path.startswith("/secrets") else 1.0
        limiter: TokenBucketRateLimiter = app.state.rate_limiter
        decision = limiter.check(ident, cost=cost)
        if not decision.allowed:
            raise HTTPException(
                status_code=429,
                detail="rate_limited",
                headers={"Retry-After": str(int(decision.retry_after_seconds))},
            )
        return actor

    def _require_cap(actor: Actor, cap: str) -> None:
        if not actor.can(cap):
            raise HTTPException(status_code=403, detail="forbidden")

    def _require_resolver() -> RouteResolver:
        if app.state.resolver is None:
            raise HTTPException(status_code=404, detail="persistence_disabled")
        return app.state.resolver

    def _require_lifecycle() -> SecretLifecycleManager:
        if app.state.lifecycle is None:
            raise HTTPException(status_code=404, detail="secrets_disabled")
        return app.state.lifecycle

    @app.get("/health")
    def health() -> Dict[str, Any]:
        return {
            "ok": True,
            "auth_required": must_auth,
            "db": str(cfg.db_path) if cfg.db_path else None,
            "secrets_enabled": app.state.lifecycle is not None,
            "ledger_enabled": app.state.reader is not None,
            "retention": cfg.retention.value,
        }

    @app.get("/nodes", response_model=List[NodeOut])
    def list_nodes(
        actor: Actor = Depends(get_actor),
        role: Optional[str] = Query(default=None, pattern="^(origin|destination)$"),
    ) -> List[NodeOut]:
        """List catalog nodes, optionally only those valid as origin or destination."""

        _require_cap(actor, CAP_CATALOG_READ)
        resolver = _require_resolver()
        if role == "origin":
            nodes = resolver.origin_nodes()
        elif role == "destination":
            nodes = resolver.destination_nodes()
        else:
            nodes = resolver.all_nodes()
        return [_node_out(n) for n in nodes]

    @app.get("/destinations", response_model=DestinationsOut)
    def destinations(
        actor: Actor = Depends(get_actor),
        origin_node_id: Optional[str] = Query(default=None, alias="originNodeId"),
    ) -> DestinationsOut:
        _require_cap(actor, CAP_CATALOG_READ)
        if not origin_node_id:
            raise HTTPException(status_code=400, detail="originNodeId is required")
        resolver = _require_resolver()
        nodes = sorted(resolver.reachable_destinations(origin_node_id), key=lambda n: n.node_id)
        return DestinationsOut(destinations=[_node_out(n) for n in nodes])

    @app.get("/routes", response_model=RouteOut)
    def routes(
        actor: Actor = Depends(get_actor),
        origin_node_id: Optional[str] = Query(default=None, alias="originNodeId"),
        dest_node_id: Optional[str] = Query(default=None, alias="destNodeId"),
    ) -> RouteOut:
        """Resolve the preferred route into ordered ledger addresses."""

        _require_cap(actor, CAP_CATALOG_READ)
        if not origin_node_id or not dest_node_id:
            raise HTTPException(status_code=400, detail="originNodeId and destNodeId are required")
        resolved = _require_resolver().resolve(origin_node_id, dest_node_id)
        return RouteOut(
            route=list(resolved.addresses),
            route_id=resolved.route.route_id,
            rank=resolved.route.rank,
            node_ids=list(resolved.route.path),
        )

    @app.post("/secrets/generate", response_model=GeneratedSecretOut)
    def generate_secret_endpoint(actor: Actor = Depends(get_actor)) -> GeneratedSecretOut:
        """Generate a secret and its commitment. Nothing is stored."""

        _require_cap(actor, CAP_SECRETS_WRITE)
        g = _require_lifecycle().generate()
        return GeneratedSecretOut(secret=g.secret_hex, commitment_hash=g.commitment_hex)

    @app.post("/secrets", response_model=StoreSecretOut, status_code=201)
    def store_secret_endpoint(
        body: StoreSecretIn,
        actor: Actor = Depends(get_actor),
    ) -> StoreSecretOut:
        """Encrypt and store the secret for a confirmed shipment.

        Requires capability: secrets:write (secrets:purge as well when replace=true)
        """

        _require_cap(actor, CAP_SECRETS_WRITE)
        if body.replace:
            _require_cap(actor, CAP_SECRETS_PURGE)
        lifecycle = _require_lifecycle()
        try:
            secret = parse_hex(body.secret)
        except ValueError as e:
            raise HTTPException(status_code=400, detail=f"secret: {e}")
        tid = lifecycle.persist(body.token_id, secret, replace=body.replace)
        return StoreSecretOut(message=f"Secret for token {tid} stored successfully.", token_id=tid)

    @app.get("/secrets/{token_id}", response_model=RevealSecretOut)
    def reveal_secret_endpoint(token_id: int, actor: Actor = Depends(get_actor)) -> RevealSecretOut:
        """Decrypt a stored secret.

        Requires capability: secrets:reveal

        404 means nothing to verify against; 422 means the record failed
        authentication and must be treated as tampering.
        """

        _require_cap(actor, CAP_SECRETS_REVEAL)
        secret = _require_lifecycle().reveal(token_id)
        return RevealSecretOut(
            token_id=token_id,
            secret=to_hex(secret),
            commitment_hash=to_hex(commitment_hash(secret)),
        )

    @app.delete("/secrets/{token_id}", status_code=204)
    def purge_secret_endpoint(token_id: int, actor: Actor = Depends(get_actor)) -> Response:
        """Operator purge. Idempotent. Requires capability: secrets:purge"""

        _require_cap(actor, CAP_SECRETS_PURGE)
        _require_lifecycle().destroy(token_id)
        return Response(status_code=204)

    @app.get("/shipments/{token_id}", response_model=ShipmentOut)
    def shipment_endpoint(
        token_id: int,
        actor: Actor = Depends(get_actor),
        account: Optional[str] = None,
    ) -> ShipmentOut:
        """Display view of a shipment; actions are computed for ?account=."""

        _require_cap(actor, CAP_LEDGER_READ)
        reader: Optional[CustodyStateReader] = app.state.reader
        if reader is None:
            raise HTTPException(status_code=404, detail="ledger_disabled")
        view = reader.read(token_id)
        return ShipmentOut(
            token_id=view.token_id,
            owner=view.owner,
            owner_display=view.owner_display,
            shipper=view.shipper,
            shipper_display=view.shipper_display,
            recipient=view.recipient,
            recipient_display=view.recipient_display,
            status=view.status,
            status_label=view.status_label,
            cargo_details=view.cargo_details,
            payment_amount=view.payment_amount,
            current_route_index=view.current_route_index,
            pending_custodian=view.pending_custodian,
            pending_custodian_display=view.pending_custodian_display,
            commitment_hash=view.commitment_hash,
            route=[
                RouteStopOut(
                    index=s.index,
                    address=s.address,
                    display=s.display,
                    state=s.state.value,
                    node_id=s.node_id,
                )
                for s in view.route
            ],
            actions=[a.value for a in available_actions(view, account)],
        )

    return app


def app_from_env() -> FastAPI:
    """ASGI factory: `uvicorn --factory shiplock.api.server:app_from_env`."""

    return create_app(db_path=os.environ.get("SHIPLOCK_DB") or None)
