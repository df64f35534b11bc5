"""
Error taxonomy for the lotto core.

Every failure is a distinct exception class with a stable ``code`` so callers
(HTTP routes, the bot layer, tests) can discriminate causes. Classes are
grouped by category, which decides how a caller should react:

  - ValidationError     caller-fixable input problem, never retried
  - StateConflictError  wrong state for the operation, re-fetch before retrying
  - AuthError           missing/incorrect credential or signature
  - TransientError      external timeout/outage, safe to retry with the same idempotency key
  - NotFoundError       unknown round / entry / identity / challenge
"""
from __future__ import annotations
import re


def _snake(name: str) -> str:
    return re.sub(r"(?<!^)(?=[A-Z])", "_", name).lower()


class LottoError(Exception):
    code = "lotto_error"
    category = "error"
    status_code = 500
    default_message = "lotto error"

    def __init_subclass__(cls, **kwargs):
        super().__init_subclass__(**kwargs)
        cls.code = _snake(cls.__name__)

    def __init__(self, message: str | None = None, **context):
        self.message = message or self.default_message
        self.context = context
        super().__init__(self.message)

    def to_dict(self) -> dict:
        return {"error": self.code, "category": self.category, "detail": self.message, **self.context}



# ---------- categories ----------

class ValidationError(LottoError):
    category = "validation"
    status_code = 422
    default_message = "invalid request"

class StateConflictError(LottoError):
    category = "state_conflict"
    status_code = 409
    default_message = "operation conflicts with current state"

class AuthError(LottoError):
    category = "auth"
    status_code = 403
    default_message = "not authorized"

class TransientError(LottoError):
    category = "transient"
    status_code = 503
    default_message = "temporarily unavailable"

class NotFoundError(LottoError):
    category = "not_found"
    status_code = 404
    default_message = "not found"


# ---------- wallet linking ----------

class NoPendingChallenge(NotFoundError):
    default_message = "no pending wallet link challenge"

class ChallengeExpired(StateConflictError):
    default_message = "wallet link challenge expired, start again"

class InvalidAddress(ValidationError):
    default_message = "not a valid wallet address"

class SignatureInvalid(AuthError):
    status_code = 401
    default_message = "signature verification failed"

class WalletMismatch(AuthError):
    default_message = "wallet does not match"

class WalletAlreadyLinked(StateConflictError):
    default_message = "wallet is linked to another identity"

class WalletNotLinked(StateConflictError):
    default_message = "link a wallet first"

class RelinkForbidden(AuthError):
    default_message = "identity already has a wallet, authenticate as it to relink"


# ---------- round lifecycle / ledger ----------

class AuthorityRequired(AuthError):
    status_code = 401
    default_message = "authority credential required"

class InvalidFee(ValidationError):
    default_message = "fee_bps must be in [0, 10000)"

class InvalidTicketPrice(ValidationError):
    default_message = "ticket price must be > 0"

class InvalidRoundConfig(ValidationError):
    default_message = "invalid round configuration"

class InvalidStake(ValidationError):
    default_message = "stake must equal ticket price x tickets"

class StakeTooLow(ValidationError):
    default_message = "stake below ticket price"

class InsufficientBalance(ValidationError):
    default_message = "insufficient balance"

class RoundAlreadyOpen(StateConflictError):
    default_message = "authority already has an open round"

class RoundNotOpen(StateConflictError):
    default_message = "round is not open"

class AlreadyEntered(StateConflictError):
    default_message = "identity already entered this round"

class RoundFull(StateConflictError):
    default_message = "round is full"

class RoundNotClosed(StateConflictError):
    default_message = "round is not closed or deadline has not elapsed"

class RoundNotVoidable(StateConflictError):
    default_message = "round can no longer be voided"

class RoundVoided(StateConflictError):
    default_message = "round had too few entries and was voided"

class LedgerCorrupted(StateConflictError):
    status_code = 500
    default_message = "pot total does not match entries"


# ---------- settlement / claims ----------

class NoEntries(StateConflictError):
    default_message = "round has no entries"

class AlreadySettled(StateConflictError):
    default_message = "round already settled"

class NotWinner(StateConflictError):
    default_message = "entry is not the winning entry"

class AlreadyClaimed(StateConflictError):
    default_message = "entry already claimed"

class RefundUnavailable(StateConflictError):
    default_message = "refunds are only available for void rounds"


# ---------- lookups ----------

class RoundNotFound(NotFoundError):
    default_message = "round not found"

class EntryNotFound(NotFoundError):
    default_message = "entry not found"

class IdentityNotFound(NotFoundError):
    default_message = "identity not found"


# ---------- external collaborators ----------

class BalanceUnavailable(TransientError):
    default_message = "balance lookup failed"

class TransferFailed(TransientError):
    default_message = "payout transfer failed, retry the claim"
