"""FastAPI dependency injection functions."""

from typing import AsyncGenerator

from fastapi import Request

from photoai.uow import UnitOfWork


async def get_uow(request: Request) -> AsyncGenerator[UnitOfWork, None]:
    """FastAPI dependency for Unit of Work injection.

    Retrieves the UoW factory from app.state and yields a UoW instance.
    The UoW is automatically committed on successful request completion
    or rolled back if an exception occurs.

    Used by read-only endpoints. Submission and reconciliation manage their own
    units of work because they span external calls.

    Example:
        @router.get("/credits")
        async def get_credits(uow: UnitOfWork = Depends(get_uow)):
            return await ledger.get_balance(uow, owner_id)
    """
    uow_factory = request.app.state.uow_factory
    async with await uow_factory() as uow:
        yield uow
