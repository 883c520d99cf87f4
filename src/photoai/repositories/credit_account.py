"""CreditAccount repository for photoai backend.

Balance changes are single conditional UPDATE statements so concurrent
requests for the same owner serialize on the account row.
"""

from uuid import uuid4

from sqlalchemy import select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from photoai.core.timezone import utc_now
from photoai.models.credit_account import CreditAccount


class CreditAccountRepository:
    """Repository for CreditAccount entities.

    Methods:
    - get_by_owner: Retrieve the owner's account
    - debit_if_sufficient: Atomic check-then-subtract
    - increment: Atomic add, creating the account if absent
    """

    def __init__(self, session: AsyncSession):
        """Initialize repository with database session.

        Args:
            session: SQLAlchemy async session for database operations
        """
        self.session = session

    async def get_by_owner(self, owner_id: str) -> CreditAccount | None:
        """Retrieve credit account by owner identity.

        Args:
            owner_id: Owner identity from the identity provider

        Returns:
            CreditAccount if found, None otherwise
        """
        result = await self.session.execute(
            select(CreditAccount).where(CreditAccount.owner_id == owner_id)  # type: ignore[arg-type]
        )
        return result.scalar_one_or_none()

    async def debit_if_sufficient(self, owner_id: str, amount: int) -> bool:
        """Subtract amount only if the balance covers it.

        Query explanation:
        - UPDATE ... SET balance = balance - :amount
        - WHERE owner_id = :owner AND balance >= :amount

        The check and the write are one statement, so two concurrent debits
        can never both observe the same pre-debit balance.

        Args:
            owner_id: Owner identity
            amount: Positive number of credits

        Returns:
            True if the debit was applied, False if balance was insufficient
            (or the account does not exist)
        """
        result = await self.session.execute(
            update(CreditAccount)
            .where(CreditAccount.owner_id == owner_id)  # type: ignore[arg-type]
            .where(CreditAccount.balance >= amount)  # type: ignore[arg-type]
            .values(balance=CreditAccount.balance - amount, updated_at=utc_now())
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def increment(self, owner_id: str, amount: int) -> None:
        """Add amount to the owner's balance, creating the account if absent (UPSERT).

        Query explanation:
        - INSERT: Try to insert a new account holding amount
        - ON CONFLICT (owner_id): If the owner already has an account
        - DO UPDATE: balance = balance + amount

        Args:
            owner_id: Owner identity
            amount: Positive number of credits
        """
        dialect = self.session.get_bind().dialect.name
        insert = sqlite_insert if dialect == "sqlite" else pg_insert

        now = utc_now()
        stmt = insert(CreditAccount).values(
            id=uuid4(),
            owner_id=owner_id,
            balance=amount,
            created_at=now,
            updated_at=now,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["owner_id"],
            set_={
                "balance": CreditAccount.balance + amount,
                "updated_at": now,
            },
        )
        await self.session.execute(stmt)
        await self.session.flush()
