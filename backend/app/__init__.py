"""
HD Notes Backend: Application Package
=======================================

What: Passwordless (email OTP) authentication and per-user notes API.
Who:  Imported by uvicorn (`app.main:app`), Alembic and pytest.

Layering:

    ┌─────────────────────────────────────┐
    │  Routes + Dependencies (API layer)  │  ← HTTP, cookies, session guard
    ├─────────────────────────────────────┤
    │  Services (OTP, sessions, notes)    │  ← business rules
    ├─────────────────────────────────────┤
    │  Credential Store / Models          │  ← atomic store operations
    ├─────────────────────────────────────┤
    │  Database (async SQLAlchemy)        │  ← engine, session per request
    └─────────────────────────────────────┘
"""

__version__ = "1.0.0"
