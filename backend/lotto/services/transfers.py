from __future__ import annotations
import asyncio
import uuid
from typing import Protocol
import httpx
import structlog
from lotto.errors import TransferFailed

log = structlog.get_logger()


class TransferSink(Protocol):
    """Moves `amount` lamports out of the pot. Same idempotency_key => same transfer, never a second one."""

    async def transfer(self, destination: str, amount: int, idempotency_key: str) -> str: ...


class RecordingTransferSink:
    """
    In-process sink for dev and tests: records every transfer, dedups on the
    idempotency key. `fail_next` makes the next N calls raise TransferFailed.
    """

    def __init__(self, delay: float = 0.0):
        self.delay = delay
        self.fail_next = 0
        self.transfers: dict[str, tuple[str, int, str]] = {}  # key -> (destination, amount, tx_id)
        self.calls = 0

    async def transfer(self, destination: str, amount: int, idempotency_key: str) -> str:
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail_next > 0:
            self.fail_next -= 1
            raise TransferFailed("simulated transfer failure", idempotency_key=idempotency_key)
        existing = self.transfers.get(idempotency_key)
        if existing:
            return existing[2]
        tx_id = f"sim_{uuid.uuid4().hex}"
        self.transfers[idempotency_key] = (destination, int(amount), tx_id)
        return tx_id

    def total_paid(self, destination: str | None = None) -> int:
        return sum(a for (d, a, _tx) in self.transfers.values() if destination is None or d == destination)


class HttpTransferSink:
    """
    Delegates to the payout service that holds the treasury key.
    POST {base_url}/transfers  {"destination", "amount"}  + Idempotency-Key header
    -> {"tx_id": "..."}
    """

    def __init__(self, base_url: str, token: str = "", timeout: float = 10.0, client: httpx.AsyncClient | None = None):
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.timeout = timeout
        self._client = client

    async def transfer(self, destination: str, amount: int, idempotency_key: str) -> str:
        headers = {"Idempotency-Key": idempotency_key}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        payload = {"destination": destination, "amount": int(amount)}
        try:
            if self._client is not None:
                r = await self._client.post(f"{self.base_url}/transfers", json=payload, headers=headers, timeout=self.timeout)
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    r = await client.post(f"{self.base_url}/transfers", json=payload, headers=headers)
        except httpx.HTTPError as e:
            log.warning("transfer_failed", idempotency_key=idempotency_key, error=str(e))
            raise TransferFailed(f"payout service unreachable: {e}", idempotency_key=idempotency_key)

        if r.status_code >= 300:
            log.warning("transfer_failed", idempotency_key=idempotency_key, status=r.status_code)
            raise TransferFailed(f"payout service returned {r.status_code}", idempotency_key=idempotency_key)
        try:
            tx_id = r.json()["tx_id"]
        except (ValueError, KeyError, TypeError):
            raise TransferFailed("payout service returned no tx_id", idempotency_key=idempotency_key)
        if not isinstance(tx_id, str) or not tx_id:
            raise TransferFailed("payout service returned no tx_id", idempotency_key=idempotency_key)
        return tx_id
