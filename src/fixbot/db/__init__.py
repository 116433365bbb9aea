"""Database module for fixbot.

Exports:
- Base: SQLAlchemy declarative base
- models: All ORM models
- session: Async session management
"""

from fixbot.db.models import Base
from fixbot.db.session import db_session, get_session_factory, make_session_factory

__all__ = ["Base", "db_session", "get_session_factory", "make_session_factory"]
