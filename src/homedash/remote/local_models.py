"""Tables backing the local store and identity service."""

from datetime import UTC, datetime

from sqlmodel import Field, SQLModel


class StoreRoot(SQLModel, table=True):
    """One top-level key of the keyspace with its whole subtree as JSON."""

    key: str = Field(primary_key=True)
    value: str  # JSON document
    updated_at: datetime = Field(default_factory=lambda: datetime.now(UTC))


class Account(SQLModel, table=True):
    """An email/password identity."""

    uid: str = Field(primary_key=True)
    email: str = Field(index=True, unique=True)
    password_hash: str
    salt: str
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
