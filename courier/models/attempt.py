"""
Delivery attempt ledger model.

One row per delivery sequence that has failed at least once and has not
yet succeeded. Rows are deleted on success and flagged on abandonment.
"""
from datetime import datetime
from typing import Any

from sqlalchemy import JSON, Boolean, DateTime, Integer, String, false
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func

from courier.models.base import Base


class HttpAttempt(Base):
    """Persisted state of an in-flight or abandoned delivery sequence."""
    __tablename__ = "http_attempts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    request_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    attempt_number: Mapped[int] = mapped_column(Integer, nullable=False)
    error: Mapped[str | None] = mapped_column(String(255), nullable=True)
    payload: Mapped[Any] = mapped_column(JSON, nullable=True)
    abandoned: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        server_default=false()
    )
    hostname: Mapped[str | None] = mapped_column(String(255), nullable=True)
    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False
    )

    def to_dict(self) -> dict:
        return {
            "request_id": self.request_id,
            "attempt_number": self.attempt_number,
            "error": self.error,
            "payload": self.payload,
            "abandoned": self.abandoned,
            "hostname": self.hostname,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
        }

    def __repr__(self):
        return (
            f"<HttpAttempt(request_id={self.request_id}, "
            f"attempt_number={self.attempt_number}, abandoned={self.abandoned})>"
        )
