from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from shiplock.core.models import MAX_TOKEN_ID


class ApiError(BaseModel):
    """Standard API error payload."""

    error: str
    detail: Optional[str] = None


class NodeOut(BaseModel):
    id: str
    name: str
    ledger_address: str
    category: str
    node_type: Optional[str] = None


class DestinationsOut(BaseModel):
    destinations: List[NodeOut] = Field(default_factory=list)


class RouteOut(BaseModel):
    """Ordered ledger addresses of the preferred route, endpoints included."""

    route: List[str]
    route_id: str
    rank: int
    node_ids: List[str]


class StoreSecretIn(BaseModel):
    """Body of POST /secrets. secret is hex, with or without 0x."""

    model_config = ConfigDict(populate_by_name=True)

    token_id: int = Field(alias="tokenId", ge=0, le=MAX_TOKEN_ID)
    secret: str = Field(min_length=2, max_length=1024)
    replace: bool = False


class StoreSecretOut(BaseModel):
    message: str
    token_id: int


class GeneratedSecretOut(BaseModel):
    """A fresh secret for the label and its commitment for createShipment."""

    secret: str
    commitment_hash: str


class RevealSecretOut(BaseModel):
    token_id: int
    secret: str
    commitment_hash: str


class RouteStopOut(BaseModel):
    index: int
    address: str
    display: str
    state: str
    node_id: Optional[str] = None


class ShipmentOut(BaseModel):
    token_id: int
    owner: str
    owner_display: str
    shipper: str
    shipper_display: str
    recipient: str
    recipient_display: str
    status: int
    status_label: str
    cargo_details: str
    payment_amount: int
    current_route_index: int
    pending_custodian: Optional[str] = None
    pending_custodian_display: Optional[str] = None
    commitment_hash: str
    route: List[RouteStopOut] = Field(default_factory=list)
    actions: List[str] = Field(default_factory=list)
