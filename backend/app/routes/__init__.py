# Routes package init
"""
HD Notes Backend: API Routes Package
======================================

Route Inventory:
    - auth.py:    POST /api/auth/signup/send-otp, /signup/verify-otp
                  POST /api/auth/signin/send-otp, /signin/verify-otp
                  POST /api/auth/logout
                  GET  /api/auth/profile
    - notes.py:   GET/POST /api/notes, GET/PUT/DELETE /api/notes/{id}
    - health.py:  GET  /api/health

Routes stay thin: extract input, call a service, shape the response.
Authentication is a dependency (app.dependencies.require_session), not a
middleware, so unprotected routes never touch the session table.
"""
