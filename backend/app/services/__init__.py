# Services package init
"""
HD Notes Backend: Services Layer
==================================

What:  Business logic between routes (HTTP) and the database.
How:   Services take an AsyncSession per call and raise application
       exceptions; they are injected into routes via FastAPI dependencies.

Service Inventory:
    - CredentialStore: users, OTP challenges and sessions (atomic statements)
    - SessionService: issue / authenticate / revoke session credentials
    - OtpService: issue and verify one-time codes for signup and signin
    - Notifier (abstract): out-of-band code delivery
    - SmtpMailer, ConsoleMailer: Notifier implementations
    - NoteService: owner-scoped note CRUD
    - sweeper: periodic removal of expired challenges and sessions
"""
