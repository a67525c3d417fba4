"""shiplock HTTP API.

FastAPI service exposing route resolution, secret storage and shipment views.
"""

from .server import create_app  # noqa: F401
