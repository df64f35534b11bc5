from __future__ import annotations
import asyncio
import structlog
from lotto.context import LottoContext
from lotto.services.rounds import close_due_rounds
from lotto.services.wallet_link import purge_expired_challenges

log = structlog.get_logger()


async def sweep_once(ctx: LottoContext) -> dict:
    """Deadline-close OPEN rounds and evict expired link challenges."""
    closed = await close_due_rounds(ctx)
    purged = await purge_expired_challenges(ctx)
    if closed:
        log.info("sweep_closed_rounds", rounds=[str(r) for r in closed])
    return {"closed_rounds": closed, "purged_challenges": purged}


async def run_sweeper(ctx: LottoContext, interval: float) -> None:
    """Loop until cancelled. One failed pass is logged and the next one runs on schedule."""
    log.info("sweeper_started", interval=interval)
    try:
        while True:
            try:
                await sweep_once(ctx)
            except Exception as e:
                log.error("sweep_failed", error=str(e), error_type=type(e).__name__)
            await asyncio.sleep(interval)
    finally:
        log.info("sweeper_stopped")
