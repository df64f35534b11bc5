from __future__ import annotations
import asyncio
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Protocol
import httpx
import structlog
from pydantic import BaseModel, ValidationError as PayloadError
from lotto.clock import utcnow
from lotto.errors import BalanceUnavailable, TransientError

log = structlog.get_logger()

# whole-token thresholds, highest first
TIERS: tuple[tuple[int, str], ...] = (
    (1_000_000, "Tycoon"),
    (250_000, "Magnate"),
    (50_000, "Industrialist"),
)
BASE_TIER = "Citizen"
DEFAULT_DECIMALS = 6

CONFIRMED = "confirmed"
UNAVAILABLE = "unavailable"


def wealth_tier(raw_amount: int, decimals: int = 0) -> str:
    unit = 10 ** max(0, decimals)
    for threshold, name in TIERS:
        if raw_amount >= threshold * unit:
            return name
    return BASE_TIER


@dataclass(frozen=True)
class TokenAmount:
    raw: int
    decimals: int


@dataclass(frozen=True)
class BalanceQuote:
    address: str
    amount: int  # raw minor units
    decimals: int
    tier: str
    status: str  # confirmed | unavailable
    fetched_at: datetime

    @property
    def confirmed(self) -> bool:
        return self.status == CONFIRMED

    @property
    def ui_amount(self) -> float:
        return self.amount / (10 ** self.decimals)


class BalanceSource(Protocol):
    async def query(self, address: str, asset_id: str) -> TokenAmount: ...


# ---------- Solana JSON-RPC source ----------

class _TokenAmountInfo(BaseModel):
    amount: int  # u64 sent as a decimal string; "12.5" fails validation
    decimals: int

class _ParsedInfo(BaseModel):
    tokenAmount: _TokenAmountInfo

class _Parsed(BaseModel):
    info: _ParsedInfo

class _AccountData(BaseModel):
    parsed: _Parsed

class _Account(BaseModel):
    data: _AccountData

class _KeyedAccount(BaseModel):
    account: _Account

class _AccountsValue(BaseModel):
    value: list[_KeyedAccount]

class _RpcResponse(BaseModel):
    result: _AccountsValue | None = None
    error: dict | None = None


class SolanaRpcBalanceSource:
    """Sums SPL token accounts of `address` for mint `asset_id` (getTokenAccountsByOwner, jsonParsed)."""

    def __init__(self, rpc_url: str, timeout: float = 10.0, client: httpx.AsyncClient | None = None):
        self.rpc_url = rpc_url
        self.timeout = timeout
        self._client = client

    async def _post(self, body: dict) -> httpx.Response:
        if self._client is not None:
            return await self._client.post(self.rpc_url, json=body, timeout=self.timeout)
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            return await client.post(self.rpc_url, json=body)

    async def query(self, address: str, asset_id: str) -> TokenAmount:
        body = {
            "jsonrpc": "2.0",
            "id": 1,
            "method": "getTokenAccountsByOwner",
            "params": [address, {"mint": asset_id}, {"encoding": "jsonParsed"}],
        }
        try:
            r = await self._post(body)
            r.raise_for_status()
            resp = _RpcResponse.model_validate(r.json())
        except httpx.HTTPError as e:
            raise BalanceUnavailable(f"rpc request failed: {e}")
        except (PayloadError, ValueError) as e:
            raise BalanceUnavailable(f"unexpected rpc payload: {e}")
        if resp.error or resp.result is None:
            raise BalanceUnavailable(f"rpc error: {resp.error}")

        raw = 0
        decimals = DEFAULT_DECIMALS
        for acc in resp.result.value:
            info = acc.account.data.parsed.info.tokenAmount
            raw += info.amount
            decimals = info.decimals
        return TokenAmount(raw=raw, decimals=decimals)


# ---------- TTL cache ----------

@dataclass(frozen=True)
class _CacheEntry:
    quote: BalanceQuote
    expires_at: float


class BalanceCache:
    """
    Memoizes balance lookups for `ttl` seconds. Entries are replaced whole, never
    patched. A cold key fetched twice concurrently is last-write-wins.

    Source failures degrade to an `unavailable` quote (amount 0, base tier) which
    is logged and not cached, so it can never be mistaken for a confirmed zero.
    """

    def __init__(
        self,
        source: BalanceSource,
        asset_id: str,
        ttl: float = 30.0,
        max_entries: int = 1000,
        retries: int = 2,
        timeout: float = 10.0,
        monotonic: Callable[[], float] = time.monotonic,
    ):
        self.source = source
        self.asset_id = asset_id
        self.ttl = ttl
        self.max_entries = max_entries
        self.retries = retries
        self.timeout = timeout
        self._monotonic = monotonic
        self._entries: dict[str, _CacheEntry] = {}

    def peek(self, address: str) -> BalanceQuote | None:
        hit = self._entries.get(address)
        if hit and hit.expires_at > self._monotonic():
            return hit.quote
        return None

    def invalidate(self, address: str) -> None:
        self._entries.pop(address, None)

    def __len__(self) -> int:
        return len(self._entries)

    async def _fetch(self, address: str) -> TokenAmount:
        attempts = 1 + max(0, self.retries)
        last: Exception | None = None
        for attempt in range(1, attempts + 1):
            try:
                return await asyncio.wait_for(self.source.query(address, self.asset_id), self.timeout)
            except asyncio.TimeoutError:
                last = BalanceUnavailable("balance lookup timed out")
            except TransientError as e:
                last = e
            log.info("balance_lookup_retry", address=address, attempt=attempt, error=str(last))
        raise last  # type: ignore[misc]

    def _trim(self, now: float) -> None:
        if len(self._entries) < self.max_entries:
            return
        stale = [k for k, e in self._entries.items() if e.expires_at <= now]
        for k in stale:
            self._entries.pop(k, None)
        # still full: drop the entries closest to expiry
        overflow = len(self._entries) - self.max_entries + 1
        if overflow > 0:
            for k, _e in sorted(self._entries.items(), key=lambda kv: kv[1].expires_at)[:overflow]:
                self._entries.pop(k, None)

    async def get_balance(self, address: str) -> BalanceQuote:
        cached = self.peek(address)
        if cached is not None:
            return cached

        try:
            amount = await self._fetch(address)
        except TransientError as e:
            log.warning("balance_lookup_failed", address=address, asset_id=self.asset_id, error=str(e))
            return BalanceQuote(
                address=address, amount=0, decimals=DEFAULT_DECIMALS, tier=BASE_TIER,
                status=UNAVAILABLE, fetched_at=utcnow(),
            )

        quote = BalanceQuote(
            address=address,
            amount=amount.raw,
            decimals=amount.decimals,
            tier=wealth_tier(amount.raw, amount.decimals),
            status=CONFIRMED,
            fetched_at=utcnow(),
        )
        now = self._monotonic()
        self._trim(now)
        self._entries[address] = _CacheEntry(quote=quote, expires_at=now + self.ttl)
        return quote
