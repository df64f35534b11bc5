from __future__ import annotations
import pytest
from conftest import AUTHORITY_KEY, Wallet

ADMIN = {"X-Authority-Key": AUTHORITY_KEY}


async def _linked(api, wallet: Wallet | None = None):
    wallet = wallet or Wallet()
    r = await api.post("/identities/web", json={"username": "player"})
    assert r.status_code == 201, r.text
    ident = r.json()["id"]
    r = await api.post("/link/start", json={"identity_id": ident})
    assert r.status_code == 200, r.text
    message = r.json()["message"]
    r = await api.post("/link/finish", json={
        "identity_id": ident, "address": wallet.address, "signature": wallet.sign(message),
    })
    assert r.status_code == 200, r.text
    assert r.json()["wallet"] == wallet.address
    return ident, wallet, {"Authorization": f"Bearer {r.json()['access']}"}


@pytest.mark.asyncio
async def test_full_round_over_http(api, transfers):
    r = await api.post("/rounds", headers=ADMIN, json={"ticket_price": 1_000_000, "max_entries": 5, "duration_seconds": 600})
    assert r.status_code == 201, r.text
    rid = r.json()["id"]
    assert r.json()["fee_bps"] == 2000
    assert (await api.get("/rounds/current")).json()["id"] == rid

    players = []
    for _ in range(3):
        ident, wallet, hdrs = await _linked(api)
        r = await api.post(f"/rounds/{rid}/join", headers=hdrs, json={"stake": 1_000_000})
        assert r.status_code == 201, r.text
        players.append((ident, wallet, hdrs, r.json()["id"]))

    r = await api.post(f"/rounds/{rid}/join", headers=players[0][2], json={"stake": 1_000_000})
    assert r.status_code == 409 and r.json()["error"] == "already_entered"

    r = await api.post(f"/rounds/{rid}/close", headers=ADMIN)
    assert r.status_code == 200 and r.json()["status"] == "CLOSED"

    r = await api.post(f"/rounds/{rid}/settle", headers=ADMIN)
    assert r.status_code == 200, r.text
    s = r.json()
    assert (s["pot_total"], s["payout"], s["house_fee"]) == (3_000_000, 2_400_000, 600_000)
    r = await api.post(f"/rounds/{rid}/settle", headers=ADMIN)
    assert r.status_code == 409 and r.json()["error"] == "already_settled"

    winner = next(p for p in players if p[3] == s["winning_entry_id"])
    loser = next(p for p in players if p[3] != s["winning_entry_id"])
    r = await api.post(f"/entries/{loser[3]}/claim", headers=loser[2])
    assert r.status_code == 409 and r.json()["error"] == "not_winner"
    # someone else's entry: caller wallet does not match
    r = await api.post(f"/entries/{winner[3]}/claim/payout", headers=loser[2])
    assert r.status_code == 403 and r.json()["error"] == "wallet_mismatch"

    r = await api.post(f"/entries/{winner[3]}/claim", headers=winner[2])
    assert r.status_code == 200, r.text
    assert r.json()["amount"] == 2_400_000 and r.json()["kind"] == "PAYOUT"
    assert transfers.total_paid(winner[1].address) == 2_400_000

    r = await api.get(f"/entries/{winner[3]}/claims")
    assert [c["status"] for c in r.json()] == ["CONFIRMED"]

    ledger = (await api.get(f"/rounds/{rid}/ledger")).json()
    assert ledger["consistent"] and ledger["paid_out"] == 2_400_000
    assert ledger["pot_total"] == ledger["entry_sum"] == 3_000_000

    detail = (await api.get(f"/rounds/{rid}")).json()
    assert detail["status"] == "SETTLED" and len(detail["entries"]) == 3


@pytest.mark.asyncio
async def test_admin_routes_need_key(api):
    body = {"ticket_price": 10, "max_entries": 2, "duration_seconds": 60}
    r = await api.post("/rounds", json=body)
    assert r.status_code == 401 and r.json()["error"] == "authority_required"
    r = await api.post("/rounds", headers={"X-Authority-Key": "wrong"}, json=body)
    assert r.status_code == 401

    r = await api.post("/rounds", headers=ADMIN, json={"ticket_price": 10, "max_entries": 2})
    assert r.status_code == 422


@pytest.mark.asyncio
async def test_void_and_refund_over_http(api):
    rid = (await api.post("/rounds", headers=ADMIN, json={"ticket_price": 5, "max_entries": 4, "duration_seconds": 60})).json()["id"]
    _ident, _w, hdrs = await _linked(api)
    entry = (await api.post(f"/rounds/{rid}/join", headers=hdrs, json={"stake": 15})).json()
    assert entry["tickets"] == 3

    r = await api.post(f"/rounds/{rid}/void", headers=ADMIN)
    assert r.json()["status"] == "VOID"
    r = await api.post(f"/entries/{entry['id']}/claim/refund", headers=hdrs)
    assert r.status_code == 200 and r.json()["amount"] == 15
    r = await api.post(f"/entries/{entry['id']}/claim/refund", headers=hdrs)
    assert r.status_code == 409 and r.json()["error"] == "already_claimed"


@pytest.mark.asyncio
async def test_join_needs_token(api):
    rid = (await api.post("/rounds", headers=ADMIN, json={"ticket_price": 5, "max_entries": 4, "duration_seconds": 60})).json()["id"]
    r = await api.post(f"/rounds/{rid}/join", json={"stake": 5})
    assert r.status_code in (401, 403)
    r = await api.post(f"/rounds/{rid}/join", headers={"Authorization": "Bearer junk"}, json={"stake": 5})
    assert r.status_code == 401


@pytest.mark.asyncio
async def test_link_errors(api):
    ident = (await api.post("/identities/web", json={})).json()["id"]
    w = Wallet()
    r = await api.post("/link/finish", json={"identity_id": ident, "address": w.address, "signature": "x"})
    assert r.status_code == 404 and r.json()["error"] == "no_pending_challenge"

    message = (await api.post("/link/start", json={"identity_id": ident})).json()["message"]
    r = await api.post("/link/finish", json={"identity_id": ident, "address": w.address, "signature": w.sign(message + "!")})
    assert r.status_code == 401 and r.json()["error"] == "signature_invalid"
    r = await api.post("/link/finish", json={"identity_id": ident, "address": "bad", "signature": w.sign(message)})
    assert r.status_code == 422 and r.json()["error"] == "invalid_address"


@pytest.mark.asyncio
async def test_linked_telegram_identity_cannot_be_taken_over(api):
    first, second = Wallet(), Wallet()
    await api.post("/identities/telegram", json={"telegram_id": 42})
    message = (await api.post("/link/start", json={"identity_id": "tg_42"})).json()["message"]
    r = await api.post("/link/finish", json={"identity_id": "tg_42", "address": first.address, "signature": first.sign(message)})
    assert r.status_code == 200, r.text
    owner = {"Authorization": f"Bearer {r.json()['access']}"}

    r = await api.post("/link/start", json={"identity_id": "tg_42"})
    assert r.status_code == 403 and r.json()["error"] == "relink_forbidden"
    _other, _w, stranger = await _linked(api)
    r = await api.post("/link/start", headers=stranger, json={"identity_id": "tg_42"})
    assert r.status_code == 403
    r = await api.post("/link/start", headers={"Authorization": "Bearer junk"}, json={"identity_id": "tg_42"})
    assert r.status_code == 401

    me = (await api.get("/identities/me", headers=owner)).json()
    assert me["wallet"] == first.address

    # the owner can still move to a new wallet
    message = (await api.post("/link/start", headers=owner, json={"identity_id": "tg_42"})).json()["message"]
    r = await api.post("/link/finish", json={"identity_id": "tg_42", "address": second.address, "signature": second.sign(message)})
    assert r.status_code == 403
    r = await api.post("/link/finish", headers=owner, json={
        "identity_id": "tg_42", "address": second.address, "signature": second.sign(message),
    })
    assert r.status_code == 200 and r.json()["wallet"] == second.address


@pytest.mark.asyncio
async def test_telegram_identity_is_idempotent(api):
    a = (await api.post("/identities/telegram", json={"telegram_id": 4242, "username": "bob"})).json()
    b = (await api.post("/identities/telegram", json={"telegram_id": 4242})).json()
    assert a["id"] == b["id"] == "tg_4242"
    assert b["telegram_id"] == "4242" and b["username"] == "bob"


@pytest.mark.asyncio
async def test_balance_endpoint(api, balance_source):
    w = Wallet()
    balance_source.amounts[w.address] = 300_000 * 10**6
    r = await api.get(f"/balance/{w.address}")
    assert r.status_code == 200
    data = r.json()
    assert data["tier"] == "Magnate" and data["status"] == "confirmed" and data["ui_amount"] == 300_000

    r = await api.get("/balance/not-a-wallet")
    assert r.status_code == 422 and r.json()["error"] == "invalid_address"


@pytest.mark.asyncio
async def test_not_found(api):
    r = await api.get("/rounds/00000000-0000-0000-0000-000000000000")
    assert r.status_code == 404 and r.json()["error"] == "round_not_found"
    assert (await api.get("/rounds/current")).status_code == 404
