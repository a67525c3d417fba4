"""HTTP client utilities for talking to the shiplock API.

Security notes:
- Treat server responses as untrusted input.
- Revealed secrets are returned to the caller, never logged.
"""

from .http import HttpResponse, ShiplockHttpClient  # noqa: F401
