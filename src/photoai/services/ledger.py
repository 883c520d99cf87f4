"""Credit ledger - the only writer of CreditAccount balances.

Every method takes the caller's UnitOfWork so that a debit can commit in the
same transaction as a job state change. Callers that want a debit to stand
on its own (a reservation) open a dedicated UnitOfWork for it.
"""

import structlog

from photoai.services.exceptions import InsufficientCreditsError, ValidationError
from photoai.uow import UnitOfWork

logger = structlog.get_logger()


class Ledger:
    """Per-owner credit accounts with atomic debit and credit."""

    async def get_balance(self, uow: UnitOfWork, owner_id: str) -> int:
        """Return the owner's balance (0 when no account exists yet)."""
        account = await uow.credit_accounts.get_by_owner(owner_id)
        return account.balance if account else 0

    async def try_debit(self, uow: UnitOfWork, owner_id: str, amount: int) -> None:
        """Atomically check and subtract amount from the owner's balance.

        Args:
            uow: Unit of work the debit participates in
            owner_id: Owner identity
            amount: Positive number of credits

        Raises:
            ValidationError: If amount is not positive
            InsufficientCreditsError: If balance < amount at the time of the write
        """
        if amount <= 0:
            raise ValidationError(f"Debit amount must be positive, got {amount}")

        applied = await uow.credit_accounts.debit_if_sufficient(owner_id, amount)
        if not applied:
            available = await self.get_balance(uow, owner_id)
            logger.info(
                "ledger.debit_rejected",
                owner_id=owner_id,
                amount=amount,
                available=available,
            )
            raise InsufficientCreditsError(owner_id, required=amount, available=available)

        logger.info("ledger.debited", owner_id=owner_id, amount=amount)

    async def credit(self, uow: UnitOfWork, owner_id: str, amount: int) -> None:
        """Add credits (grants, refunds and compensating rollbacks).

        Raises:
            ValidationError: If amount is not positive
        """
        if amount <= 0:
            raise ValidationError(f"Credit amount must be positive, got {amount}")

        await uow.credit_accounts.increment(owner_id, amount)
        logger.info("ledger.credited", owner_id=owner_id, amount=amount)
