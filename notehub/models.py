"""
SQLAlchemy models for Note Hub.

Tables:
- requests: Agent requests and their durable lifecycle status
- request_logs: Per-iteration audit records of tool calls
"""

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    func,
)
from sqlalchemy.orm import DeclarativeBase, relationship


class Base(DeclarativeBase):
    """Base class for all models."""

    pass


class Request(Base):
    """An accepted agent request (input organization, search, or refactor)."""

    __tablename__ = "requests"

    id = Column(String(36), primary_key=True)  # UUID
    space_id = Column(String(100), nullable=False)
    user_id = Column(String(100), nullable=False)
    type = Column(
        Enum("INPUT", "SEARCH", "REFACTOR", name="request_type_enum"),
        nullable=False,
    )
    status = Column(
        Enum(
            "PENDING",
            "PROCESSING",
            "COMPLETED",
            "FAILED",
            "CANCELLED",
            name="request_status_enum",
        ),
        nullable=False,
        default="PENDING",
    )
    input = Column(Text, nullable=False)
    result = Column(JSON, nullable=True)  # Serialized AgentResult
    error = Column(Text, nullable=True)
    iterations = Column(Integer, nullable=False, default=0)
    tokens_used = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    started_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)

    # Relationships
    logs = relationship("RequestLog", back_populates="request", cascade="all, delete-orphan")

    __table_args__ = (
        Index("ix_requests_space_id", "space_id"),
        Index("ix_requests_status", "status"),
        Index("ix_requests_user_created", "user_id", "created_at"),
    )


class RequestLog(Base):
    """Audit record for one loop iteration's tool call."""

    __tablename__ = "request_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    request_id = Column(
        String(36), ForeignKey("requests.id", ondelete="CASCADE"), nullable=False
    )
    iteration = Column(Integer, nullable=False)
    tool = Column(String(50), nullable=False)
    params = Column(Text, nullable=True)  # JSON-serialized tool arguments
    result = Column(Text, nullable=True)  # JSON-serialized ToolResult
    success = Column(Boolean, nullable=False, default=True)
    duration_ms = Column(Integer, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    # Relationships
    request = relationship("Request", back_populates="logs")

    __table_args__ = (
        Index("ix_request_logs_request_id", "request_id"),
        Index("ix_request_logs_request_iteration", "request_id", "iteration"),
    )
