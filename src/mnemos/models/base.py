from datetime import datetime, timezone
from typing import Optional
from sqlmodel import Field, SQLModel


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TimestampMixin(SQLModel):
    created_at: datetime = Field(
        default_factory=utcnow,
        nullable=False,
        index=True,
    )
    updated_at: datetime = Field(
        default_factory=utcnow,
        sa_column_kwargs={"onupdate": utcnow},
        nullable=False,
    )


class ProvenanceMixin(SQLModel):
    # Session and message tables belong to the chat runner, so these carry ids only.
    source_session_id: Optional[str] = Field(default=None)
    source_message_id: Optional[str] = Field(default=None)
