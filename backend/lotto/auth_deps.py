from __future__ import annotations
from fastapi import Depends, HTTPException, Header, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from lotto.context import LottoContext
from lotto.models.identity import Identity
from lotto.security import decode_token

security = HTTPBearer()
optional_security = HTTPBearer(auto_error=False)

def get_context(request: Request) -> LottoContext:
    return request.app.state.ctx

def authority_key(x_authority_key: str | None = Header(None)) -> str | None:
    # checked by the service call itself (AuthorityRequired -> 401)
    return x_authority_key

async def _identity_from_token(token: str, ctx: LottoContext) -> Identity:
    try:
        data = decode_token(token, ctx.settings)
    except Exception:
        raise HTTPException(status_code=401, detail="Invalid token")
    if data.get("type") != "access":
        raise HTTPException(status_code=401, detail="Wrong token type")
    async with ctx.sessions() as session:
        ident = await session.get(Identity, data.get("sub"))
    if not ident:
        raise HTTPException(status_code=401, detail="Identity not found")
    return ident

async def get_current_identity(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    ctx: LottoContext = Depends(get_context),
) -> Identity:
    return await _identity_from_token(credentials.credentials, ctx)

async def get_optional_identity(
    credentials: HTTPAuthorizationCredentials | None = Depends(optional_security),
    ctx: LottoContext = Depends(get_context),
) -> Identity | None:
    """Bearer identity when a token is sent; a bad token is still a 401."""
    if credentials is None:
        return None
    return await _identity_from_token(credentials.credentials, ctx)
