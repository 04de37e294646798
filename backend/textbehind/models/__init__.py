"""SQLAlchemy ORM models for the TextBehind backend.

All models are exported from this module for convenient imports:
    from textbehind.models import UserAccount
"""

from textbehind.models.base import Base
from textbehind.models.user import UserAccount

__all__ = [
    "Base",
    "UserAccount",
]
