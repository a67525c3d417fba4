"""shiplock: custody secrets and route resolution for ledger-tracked shipments."""

__version__ = "0.1.0"
