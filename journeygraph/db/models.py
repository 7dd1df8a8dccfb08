"""SQLModel tables for journeys, their step graph and user progression."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import (
    JSON,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    TypeDecorator,
    UniqueConstraint,
)
from sqlmodel import Field, SQLModel

ENTRANCE_TYPE = "entrance"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Convert to an aware UTC datetime; naive values are taken as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class TZDateTime(TypeDecorator):
    """Timestamp stored in UTC and always read back timezone aware.

    SQLite keeps no offset, so values are shifted to UTC before binding to
    keep stored strings in chronological order.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        return as_utc(value)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return as_utc(value)


def _timestamp(nullable: bool = False, index: bool = False) -> Column:
    return Column(TZDateTime(), nullable=nullable, index=index)


class Journey(SQLModel, table=True):
    """A named, project-scoped graph of steps."""

    __table_args__ = {"sqlite_autoincrement": True}

    id: Optional[int] = Field(default=None, primary_key=True)
    project_id: int = Field(index=True)
    name: str
    description: Optional[str] = None
    published: bool = False
    created_at: datetime = Field(default_factory=utcnow, sa_column=_timestamp())
    updated_at: datetime = Field(default_factory=utcnow, sa_column=_timestamp())
    deleted_at: Optional[datetime] = Field(
        default=None, sa_column=_timestamp(nullable=True)
    )


class JourneyStep(SQLModel, table=True):
    """A node of the journey graph.

    ``external_id`` is the client-assigned key used to match nodes across
    edits; ``type`` is an open tag whose ``data`` is interpreted elsewhere.
    """

    __table_args__ = (
        UniqueConstraint("journey_id", "external_id"),
        {"sqlite_autoincrement": True},
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    journey_id: int = Field(foreign_key="journey.id", index=True)
    type: str
    external_id: str
    data: dict = Field(default_factory=dict, sa_column=Column(JSON, nullable=False))
    x: float = 0
    y: float = 0
    created_at: datetime = Field(default_factory=utcnow, sa_column=_timestamp())
    updated_at: datetime = Field(default_factory=utcnow, sa_column=_timestamp())


class JourneyStepChild(SQLModel, table=True):
    """A directed, payload-bearing edge between two steps of one journey."""

    __table_args__ = (
        UniqueConstraint("step_id", "child_id"),
        {"sqlite_autoincrement": True},
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    step_id: int = Field(
        sa_column=Column(
            Integer,
            ForeignKey("journeystep.id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        )
    )
    child_id: int = Field(
        sa_column=Column(
            Integer,
            ForeignKey("journeystep.id", ondelete="CASCADE"),
            nullable=False,
        )
    )
    data: dict = Field(default_factory=dict, sa_column=Column(JSON, nullable=False))
    created_at: datetime = Field(default_factory=utcnow, sa_column=_timestamp())
    updated_at: datetime = Field(default_factory=utcnow, sa_column=_timestamp())


class JourneyUserStep(SQLModel, table=True):
    """Append-only record of a user reaching a step.

    ``step_id`` carries no foreign key: history outlives steps removed from
    the graph later on.
    """

    __table_args__ = {"sqlite_autoincrement": True}

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(index=True)
    journey_id: int = Field(index=True)
    step_id: int = Field(index=True)
    type: str = "completed"
    created_at: datetime = Field(
        default_factory=utcnow, sa_column=_timestamp(index=True)
    )
