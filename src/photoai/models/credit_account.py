"""CreditAccount entity - per-owner credit balance."""

from datetime import datetime
from uuid import UUID, uuid4

from sqlalchemy import CheckConstraint, DateTime
from sqlmodel import Field, SQLModel

from photoai.core.timezone import utc_now


class CreditAccount(SQLModel, table=True):
    """One credit account per owner. Balance is mutated only through the Ledger."""

    __tablename__ = "credit_accounts"  # type: ignore[assignment]
    __table_args__ = (CheckConstraint("balance >= 0", name="ck_credit_accounts_balance"),)

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    owner_id: str = Field(max_length=255, unique=True, index=True)
    balance: int = Field(default=0, ge=0)
    created_at: datetime = Field(default_factory=utc_now, sa_type=DateTime(timezone=True))
    updated_at: datetime = Field(default_factory=utc_now, sa_type=DateTime(timezone=True))
