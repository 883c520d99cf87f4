"""Credit balance endpoint."""

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from photoai.api.dependencies import get_ledger, get_owner_id
from photoai.core.dependencies import get_uow
from photoai.services.ledger import Ledger
from photoai.uow import UnitOfWork

router = APIRouter(prefix="/api/credits", tags=["credits"])


class CreditsResponse(BaseModel):
    owner_id: str
    balance: int


@router.get("", response_model=CreditsResponse)
async def get_credits(
    owner_id: str = Depends(get_owner_id),
    uow: UnitOfWork = Depends(get_uow),
    ledger: Ledger = Depends(get_ledger),
) -> CreditsResponse:
    """Return the caller's credit balance (0 before the first grant)."""
    balance = await ledger.get_balance(uow, owner_id)
    return CreditsResponse(owner_id=owner_id, balance=balance)
