from __future__ import annotations
import base64
import binascii
import re
from datetime import timedelta
import base58
import structlog
from nacl.bindings import crypto_core_ed25519_is_valid_point
from nacl.exceptions import BadSignatureError
from nacl.signing import VerifyKey
from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from lotto.clock import as_utc
from lotto.context import LottoContext
from lotto.errors import (
    ChallengeExpired, InvalidAddress, NoPendingChallenge, RelinkForbidden, SignatureInvalid,
    ValidationError, WalletAlreadyLinked, WalletMismatch,
)
from lotto.models.identity import Identity
from lotto.models.link import PendingLinkChallenge
from lotto.services.codes import generate_code
from lotto.services.identity import telegram_id_of

log = structlog.get_logger()

CHALLENGE_HEADER = "Wealth Wars wallet link"
BASE58_ADDRESS = re.compile(r"^[1-9A-HJ-NP-Za-km-z]{32,44}$")
SIGNATURE_LEN = 64


def build_message(code: str, identity_id: str, wallet: str | None) -> str:
    return f"{CHALLENGE_HEADER}\nCode: {code}\nIdentity: {identity_id}\nWallet: {wallet or 'any'}"


def parse_address(address: str) -> bytes:
    """base58 wallet address -> 32-byte ed25519 public key, or InvalidAddress."""
    if not isinstance(address, str) or not BASE58_ADDRESS.match(address):
        raise InvalidAddress(address=str(address)[:64])
    try:
        raw = base58.b58decode(address)
    except ValueError:
        raise InvalidAddress(address=address)
    if len(raw) != 32 or not crypto_core_ed25519_is_valid_point(raw):
        raise InvalidAddress("address is not an ed25519 public key", address=address)
    return raw


def is_valid_address(address: str) -> bool:
    try:
        parse_address(address)
    except InvalidAddress:
        return False
    return True


def decode_signature(signature: bytes | str) -> bytes:
    """Wallets hand back raw bytes, base58 (Phantom) or base64 (most web signers)."""
    if isinstance(signature, (bytes, bytearray)):
        raw = bytes(signature)
    else:
        text = signature.strip()
        raw = b""
        try:
            raw = base58.b58decode(text)
        except ValueError:
            pass
        if len(raw) != SIGNATURE_LEN:
            try:
                raw = base64.b64decode(text, validate=True)
            except (binascii.Error, ValueError):
                raw = b""
    if len(raw) != SIGNATURE_LEN:
        raise SignatureInvalid("malformed signature")
    return raw


async def _check_owner(session: AsyncSession, identity_id: str, caller_id: str | None) -> None:
    """Once an identity has a wallet, only that identity may replace it."""
    ident = await session.get(Identity, identity_id)
    if ident is not None and ident.wallet and caller_id != identity_id:
        log.warning("relink_forbidden", identity_id=identity_id, caller_id=caller_id)
        raise RelinkForbidden(identity_id=identity_id)


async def start_link(
    ctx: LottoContext,
    identity_id: str,
    wallet: str | None = None,
    *,
    caller_id: str | None = None,
    verify_owner: bool = False,
) -> str:
    """
    Issue (or replace) the identity's challenge and return the exact text its wallet must sign.

    With `verify_owner` (the HTTP surface), an identity that already has a
    wallet can only be relinked by a caller authenticated as that identity.
    """
    if not identity_id:
        raise ValidationError("identity id required")
    if wallet is not None:
        parse_address(wallet)

    async with ctx.locks.hold(f"link:{identity_id}"):
        async with ctx.sessions() as session:
            if verify_owner:
                await _check_owner(session, identity_id, caller_id)
            prior = await session.get(PendingLinkChallenge, identity_id)
            code = generate_code(exclude=prior.code if prior else None)
            message = build_message(code, identity_id, wallet)
            if prior:
                prior.code = code
                prior.message = message
                prior.wallet = wallet
                prior.created_at = ctx.now()
            else:
                session.add(PendingLinkChallenge(
                    identity_id=identity_id, code=code, message=message, wallet=wallet, created_at=ctx.now(),
                ))
            await session.commit()

    log.info("link_challenge_started", identity_id=identity_id, replaced=prior is not None)
    return message


async def finish_link(
    ctx: LottoContext,
    identity_id: str,
    claimed_address: str,
    signature: bytes | str,
    *,
    caller_id: str | None = None,
    verify_owner: bool = False,
) -> str:
    """
    Verify `signature` over the pending challenge message with the key behind
    `claimed_address`, then bind the address to the identity and consume the
    challenge in one commit.

    Failures leave the challenge in place so the caller can retry, except
    expiry which always discards it. The owner check repeats here because the
    identity may have been linked after the challenge was issued.
    """
    ttl = timedelta(seconds=ctx.settings.link_challenge_ttl_seconds)

    async with ctx.locks.hold(f"link:{identity_id}"):
        async with ctx.sessions() as session:
            if verify_owner:
                await _check_owner(session, identity_id, caller_id)
            ch = await session.get(PendingLinkChallenge, identity_id)
            if ch is None:
                raise NoPendingChallenge(identity_id=identity_id)

            if ctx.now() - as_utc(ch.created_at) > ttl:
                await session.execute(
                    delete(PendingLinkChallenge).where(
                        PendingLinkChallenge.identity_id == identity_id,
                        PendingLinkChallenge.code == ch.code,
                    )
                )
                await session.commit()
                log.info("link_challenge_expired", identity_id=identity_id)
                raise ChallengeExpired(identity_id=identity_id)

            pubkey = parse_address(claimed_address)
            if ch.wallet and ch.wallet != claimed_address:
                raise WalletMismatch("address differs from the one the challenge was issued for")

            sig = decode_signature(signature)
            try:
                VerifyKey(pubkey).verify(ch.message.encode("utf-8"), sig)
            except BadSignatureError:
                log.info("link_signature_invalid", identity_id=identity_id)
                raise SignatureInvalid()

            # consume: only the holder of this exact code may delete it
            res = await session.execute(
                delete(PendingLinkChallenge).where(
                    PendingLinkChallenge.identity_id == identity_id,
                    PendingLinkChallenge.code == ch.code,
                )
            )
            if res.rowcount != 1:
                await session.rollback()
                raise NoPendingChallenge(identity_id=identity_id)

            holder = await session.scalar(
                select(Identity).where(Identity.wallet == claimed_address, Identity.id != identity_id)
            )
            if holder:
                await session.rollback()
                raise WalletAlreadyLinked(address=claimed_address)

            ident = await session.get(Identity, identity_id)
            if ident is None:
                ident = Identity(id=identity_id, telegram_id=telegram_id_of(identity_id))
                session.add(ident)
            previous = ident.wallet
            ident.wallet = claimed_address
            try:
                await session.commit()
            except IntegrityError:
                await session.rollback()
                raise WalletAlreadyLinked(address=claimed_address)

    log.info("wallet_linked", identity_id=identity_id, wallet=claimed_address, replaced=previous)
    return claimed_address


async def purge_expired_challenges(ctx: LottoContext) -> int:
    cutoff = ctx.now() - timedelta(seconds=ctx.settings.link_challenge_ttl_seconds)
    async with ctx.sessions() as session:
        res = await session.execute(delete(PendingLinkChallenge).where(PendingLinkChallenge.created_at < cutoff))
        await session.commit()
    n = int(res.rowcount or 0)
    if n:
        log.info("link_challenges_purged", count=n)
    return n


async def pending_challenge(ctx: LottoContext, identity_id: str) -> PendingLinkChallenge | None:
    async with ctx.sessions() as session:
        return await session.get(PendingLinkChallenge, identity_id)
