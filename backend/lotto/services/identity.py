from __future__ import annotations
import uuid
import structlog
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from lotto.context import LottoContext
from lotto.errors import IdentityNotFound, ValidationError
from lotto.models.identity import Identity

log = structlog.get_logger()

TELEGRAM_PREFIX = "tg_"


def telegram_identity_id(telegram_id: str | int) -> str:
    tid = str(telegram_id).strip()
    if not tid:
        raise ValidationError("telegram id required")
    return f"{TELEGRAM_PREFIX}{tid}"


def telegram_id_of(identity_id: str) -> str | None:
    if identity_id.startswith(TELEGRAM_PREFIX):
        return identity_id[len(TELEGRAM_PREFIX):] or None
    return None


async def require_identity(session: AsyncSession, identity_id: str) -> Identity:
    ident = await session.get(Identity, identity_id)
    if not ident:
        raise IdentityNotFound(identity_id=identity_id)
    return ident


async def get_or_create_telegram_identity(ctx: LottoContext, telegram_id: str | int, username: str | None = None) -> Identity:
    identity_id = telegram_identity_id(telegram_id)
    # retry once: a concurrent first contact may insert the same row
    for _ in range(2):
        async with ctx.sessions() as session:
            ident = await session.get(Identity, identity_id)
            if ident:
                if username and ident.username != username:
                    ident.username = username
                    await session.commit()
                return ident
            ident = Identity(id=identity_id, telegram_id=str(telegram_id), username=username)
            session.add(ident)
            try:
                await session.commit()
            except IntegrityError:
                await session.rollback()
                continue
            log.info("identity_created", identity_id=identity_id, kind="telegram")
            return ident
    raise IdentityNotFound("identity creation raced, retry", identity_id=identity_id)


async def create_web_identity(ctx: LottoContext, username: str | None = None) -> Identity:
    async with ctx.sessions() as session:
        ident = Identity(id=uuid.uuid4().hex, username=username)
        session.add(ident)
        await session.commit()
    log.info("identity_created", identity_id=ident.id, kind="web")
    return ident
