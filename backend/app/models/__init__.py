"""
ORM models. Importing this package registers every table on Base.metadata
(Alembic autogenerate and the test suite's create_all rely on that).
"""

from app.models.note import Note
from app.models.otp_challenge import OtpChallenge
from app.models.session import UserSession
from app.models.user import User

__all__ = ["Note", "OtpChallenge", "User", "UserSession"]
