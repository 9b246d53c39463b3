# Middleware package init
"""
HD Notes Backend: Middleware Package
======================================

Middleware Chain (outermost first):
    Request → [Request ID] → [Rate Limit] → [Logging] → [GZip] → [CORS] → Router

    Every response, a 429 from the limiter included, carries X-Request-ID.
    Rate-limited requests never reach the access log.

Authentication is not a middleware: protected routes declare the
require_session dependency (app/dependencies.py).
"""
