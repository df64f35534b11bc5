from __future__ import annotations
from fastapi import APIRouter, Depends
from lotto.auth_deps import get_context
from lotto.context import LottoContext
from lotto.schemas.balance import BalancePublic
from lotto.services.wallet_link import parse_address

router = APIRouter(prefix="/balance", tags=["balance"])

@router.get("/{address}", response_model=BalancePublic)
async def balance(address: str, ctx: LottoContext = Depends(get_context)):
    parse_address(address)  # InvalidAddress -> 422
    q = await ctx.balances.get_balance(address)
    return BalancePublic(
        address=q.address, amount=q.amount, decimals=q.decimals, ui_amount=q.ui_amount,
        tier=q.tier, status=q.status, fetched_at=q.fetched_at,
    )
