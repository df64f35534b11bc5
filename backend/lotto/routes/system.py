from __future__ import annotations
from fastapi import APIRouter, Depends, Request
from sqlalchemy import text
from lotto.auth_deps import get_context
from lotto.config import settings
from lotto.context import LottoContext

router = APIRouter(tags=["system"])

@router.get("/health")
async def health(request: Request, ctx: LottoContext = Depends(get_context)):
    db_ok = True
    try:
        async with ctx.sessions() as session:
            await session.execute(text("SELECT 1"))
    except Exception:
        db_ok = False
    return {
        "status": "ok" if db_ok else "degraded",
        "env": ctx.settings.environment,
        "db": db_ok,
        "time": ctx.now().isoformat(),
        "request_id": request.headers.get("x-request-id") or request.state.request_id,
    }

@router.get("/version")
async def version():
    return {
        "name": settings.app_name,
        "version": settings.app_version,
        "git_sha": settings.git_sha,
        "authority": settings.lotto_authority,
    }
