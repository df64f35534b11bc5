from __future__ import annotations
import base64
import base58
import pytest
from lotto.errors import (
    ChallengeExpired, InvalidAddress, NoPendingChallenge, RelinkForbidden, SignatureInvalid, WalletAlreadyLinked,
    WalletMismatch,
)
from lotto.models.identity import Identity
from lotto.services.identity import create_web_identity
from lotto.services.wallet_link import (
    build_message, decode_signature, finish_link, is_valid_address, pending_challenge, purge_expired_challenges,
    start_link,
)
from conftest import Wallet


def test_message_format():
    msg = build_message("ABC123", "tg_42", None)
    assert msg == "Wealth Wars wallet link\nCode: ABC123\nIdentity: tg_42\nWallet: any"


def test_address_validation():
    assert is_valid_address(Wallet().address)
    assert not is_valid_address("not-an-address")
    assert not is_valid_address("")
    # System Program id: 32 zero bytes, a small-order point, never a wallet key
    assert not is_valid_address("11111111111111111111111111111111")


def test_signature_encodings():
    raw = bytes(range(64))
    assert decode_signature(raw) == raw
    assert decode_signature(base58.b58encode(raw).decode()) == raw
    assert decode_signature(base64.b64encode(raw).decode()) == raw
    with pytest.raises(SignatureInvalid):
        decode_signature("too-short")


@pytest.mark.asyncio
async def test_link_roundtrip(ctx):
    w = Wallet()
    ident = await create_web_identity(ctx, "alice")
    message = await start_link(ctx, ident.id)
    assert f"Identity: {ident.id}" in message

    addr = await finish_link(ctx, ident.id, w.address, w.sign(message))
    assert addr == w.address
    async with ctx.sessions() as session:
        assert (await session.get(Identity, ident.id)).wallet == w.address
    # consumed
    assert await pending_challenge(ctx, ident.id) is None
    with pytest.raises(NoPendingChallenge):
        await finish_link(ctx, ident.id, w.address, w.sign(message))


@pytest.mark.asyncio
async def test_wrong_message_rejected_and_challenge_kept(ctx):
    w = Wallet()
    ident = await create_web_identity(ctx)
    message = await start_link(ctx, ident.id)

    with pytest.raises(SignatureInvalid):
        await finish_link(ctx, ident.id, w.address, w.sign(message + " "))
    # a signature from a different key over the right text fails too
    with pytest.raises(SignatureInvalid):
        await finish_link(ctx, ident.id, w.address, Wallet().sign(message))

    # retry with a correct signature still works
    assert await pending_challenge(ctx, ident.id) is not None
    assert await finish_link(ctx, ident.id, w.address, w.sign(message)) == w.address


@pytest.mark.asyncio
async def test_base64_signature_accepted(ctx):
    w = Wallet()
    ident = await create_web_identity(ctx)
    message = await start_link(ctx, ident.id)
    sig = base64.b64encode(w.key.sign(message.encode()).signature).decode()
    assert await finish_link(ctx, ident.id, w.address, sig) == w.address


@pytest.mark.asyncio
async def test_expired_challenge_is_dropped(ctx, clock):
    w = Wallet()
    ident = await create_web_identity(ctx)
    message = await start_link(ctx, ident.id)
    clock.advance(seconds=ctx.settings.link_challenge_ttl_seconds + 1)

    with pytest.raises(ChallengeExpired):
        await finish_link(ctx, ident.id, w.address, w.sign(message))
    assert await pending_challenge(ctx, ident.id) is None

    fresh = await start_link(ctx, ident.id)
    assert fresh != message
    # the stale signature does not verify against the new challenge
    with pytest.raises(SignatureInvalid):
        await finish_link(ctx, ident.id, w.address, w.sign(message))
    assert await finish_link(ctx, ident.id, w.address, w.sign(fresh)) == w.address


@pytest.mark.asyncio
async def test_restart_replaces_challenge(ctx):
    w = Wallet()
    ident = await create_web_identity(ctx)
    first = await start_link(ctx, ident.id)
    second = await start_link(ctx, ident.id)
    assert first != second
    with pytest.raises(SignatureInvalid):
        await finish_link(ctx, ident.id, w.address, w.sign(first))


@pytest.mark.asyncio
async def test_invalid_address_and_missing_challenge(ctx):
    ident = await create_web_identity(ctx)
    with pytest.raises(NoPendingChallenge):
        await finish_link(ctx, ident.id, Wallet().address, "x")
    message = await start_link(ctx, ident.id)
    with pytest.raises(InvalidAddress):
        await finish_link(ctx, ident.id, "0OIl-not-base58", Wallet().sign(message))
    with pytest.raises(InvalidAddress):
        await start_link(ctx, ident.id, wallet="nope")


@pytest.mark.asyncio
async def test_challenge_bound_to_wallet(ctx):
    w, other = Wallet(), Wallet()
    ident = await create_web_identity(ctx)
    message = await start_link(ctx, ident.id, wallet=w.address)
    assert f"Wallet: {w.address}" in message
    with pytest.raises(WalletMismatch):
        await finish_link(ctx, ident.id, other.address, other.sign(message))
    assert await finish_link(ctx, ident.id, w.address, w.sign(message)) == w.address


@pytest.mark.asyncio
async def test_wallet_cannot_back_two_identities(ctx):
    w = Wallet()
    a = await create_web_identity(ctx)
    b = await create_web_identity(ctx)
    await finish_link(ctx, a.id, w.address, w.sign(await start_link(ctx, a.id)))

    with pytest.raises(WalletAlreadyLinked):
        await finish_link(ctx, b.id, w.address, w.sign(await start_link(ctx, b.id)))
    async with ctx.sessions() as session:
        assert (await session.get(Identity, b.id)).wallet is None


@pytest.mark.asyncio
async def test_relink_replaces_wallet(ctx):
    old, new = Wallet(), Wallet()
    ident = await create_web_identity(ctx)
    await finish_link(ctx, ident.id, old.address, old.sign(await start_link(ctx, ident.id)))
    await finish_link(ctx, ident.id, new.address, new.sign(await start_link(ctx, ident.id)))
    async with ctx.sessions() as session:
        assert (await session.get(Identity, ident.id)).wallet == new.address


@pytest.mark.asyncio
async def test_relink_needs_owner_when_verified(ctx):
    owner, other = Wallet(), Wallet()
    ident = await create_web_identity(ctx)
    await finish_link(ctx, ident.id, owner.address, owner.sign(await start_link(ctx, ident.id)))

    with pytest.raises(RelinkForbidden):
        await start_link(ctx, ident.id, verify_owner=True)
    with pytest.raises(RelinkForbidden):
        await start_link(ctx, ident.id, caller_id="someone_else", verify_owner=True)

    # challenge issued out of band, finish still checks the caller
    message = await start_link(ctx, ident.id)
    with pytest.raises(RelinkForbidden):
        await finish_link(ctx, ident.id, other.address, other.sign(message), verify_owner=True)
    assert await pending_challenge(ctx, ident.id) is not None

    await finish_link(ctx, ident.id, other.address, other.sign(message), caller_id=ident.id, verify_owner=True)
    async with ctx.sessions() as session:
        assert (await session.get(Identity, ident.id)).wallet == other.address


@pytest.mark.asyncio
async def test_telegram_identity_created_on_link(ctx):
    w = Wallet()
    message = await start_link(ctx, "tg_777")
    await finish_link(ctx, "tg_777", w.address, w.sign(message))
    async with ctx.sessions() as session:
        ident = await session.get(Identity, "tg_777")
    assert ident.telegram_id == "777"
    assert ident.wallet == w.address


@pytest.mark.asyncio
async def test_purge_expired(ctx, clock):
    a = await create_web_identity(ctx)
    await start_link(ctx, a.id)
    clock.advance(seconds=ctx.settings.link_challenge_ttl_seconds + 5)
    b = await create_web_identity(ctx)
    await start_link(ctx, b.id)

    assert await purge_expired_challenges(ctx) == 1
    assert await pending_challenge(ctx, a.id) is None
    assert await pending_challenge(ctx, b.id) is not None
