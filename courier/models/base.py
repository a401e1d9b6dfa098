"""
Base model classes for Courier.

Provides the SQLAlchemy declarative base.
"""
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """Base class for all database models."""
    pass
