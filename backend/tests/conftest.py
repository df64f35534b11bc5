from __future__ import annotations
from datetime import datetime, timedelta, timezone
import pytest
import pytest_asyncio
from nacl.signing import SigningKey
import base58
from lotto.config import settings
from lotto.context import LottoContext
from lotto.db import make_engine, make_sessionmaker, create_all
from lotto.errors import BalanceUnavailable
from lotto.services.balance import BalanceCache, TokenAmount
from lotto.services.identity import create_web_identity
from lotto.services.rounds import create_round
from lotto.services.transfers import RecordingTransferSink
from lotto.services.wallet_link import start_link, finish_link

AUTHORITY_KEY = "test-authority-key"


class ManualClock:
    """Wall clock the tests move by hand."""

    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2026, 1, 5, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kw) -> datetime:
        self.now = self.now + timedelta(**kw)
        return self.now


class StubBalanceSource:
    def __init__(self, decimals: int = 6):
        self.decimals = decimals
        self.amounts: dict[str, int] = {}
        self.failures = 0  # next N queries raise
        self.calls = 0

    async def query(self, address: str, asset_id: str) -> TokenAmount:
        self.calls += 1
        if self.failures > 0:
            self.failures -= 1
            raise BalanceUnavailable("rpc down")
        return TokenAmount(raw=self.amounts.get(address, 0), decimals=self.decimals)


class Wallet:
    """Ed25519 keypair standing in for a user's Solana wallet."""

    def __init__(self):
        self.key = SigningKey.generate()
        self.address = base58.b58encode(bytes(self.key.verify_key)).decode()

    def sign(self, message: str) -> str:
        return base58.b58encode(self.key.sign(message.encode("utf-8")).signature).decode()


def make_settings(**overrides):
    base = {
        "lotto_authority_secret": AUTHORITY_KEY,
        "jwt_secret": "test-jwt-secret",
        "sweep_interval_seconds": 0,
        "balance_lookup_retries": 0,
        "external_timeout_seconds": 2,
    }
    base.update(overrides)
    return settings.model_copy(update=base)


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def balance_source():
    return StubBalanceSource()


@pytest.fixture
def transfers():
    return RecordingTransferSink()


@pytest_asyncio.fixture
async def ctx(tmp_path, clock, balance_source, transfers):
    engine = make_engine(f"sqlite+aiosqlite:///{tmp_path / 'lotto.db'}")
    await create_all(engine)
    cfg = make_settings()
    balances = BalanceCache(balance_source, cfg.wealth_mint, ttl=30, retries=0, timeout=2)
    yield LottoContext(
        sessions=make_sessionmaker(engine),
        balances=balances,
        transfers=transfers,
        settings=cfg,
        clock=clock,
    )
    await engine.dispose()


async def linked_identity(ctx: LottoContext, wallet: Wallet | None = None, username: str | None = None):
    """Web identity with a verified wallet link. Returns (identity id, wallet)."""
    wallet = wallet or Wallet()
    ident = await create_web_identity(ctx, username)
    message = await start_link(ctx, ident.id)
    await finish_link(ctx, ident.id, wallet.address, wallet.sign(message))
    return ident.id, wallet


async def open_round(ctx: LottoContext, ticket_price: int = 1_000_000, max_entries: int = 10, minutes: int = 10, **kw):
    return await create_round(
        ctx, AUTHORITY_KEY, ticket_price=ticket_price, max_entries=max_entries,
        duration=timedelta(minutes=minutes), **kw,
    )


@pytest_asyncio.fixture
async def api(ctx):
    """HTTP client against the app, wired to the per-test context."""
    import httpx
    from lotto.main import app
    app.state.ctx = ctx
    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.state.ctx = None
