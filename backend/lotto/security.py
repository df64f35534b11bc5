from __future__ import annotations
import hmac
from datetime import datetime, timedelta, timezone
from typing import Any
import jwt
from lotto.config import Settings, settings
from lotto.errors import AuthorityRequired

JWT_ALG = "HS256"

def check_authority(credential: str | None, cfg: Settings | None = None) -> None:
    """Gate for round creation / close / void / settle. Constant-time compare against the shared secret."""
    secret = (cfg or settings).lotto_authority_secret
    if not credential or not secret:
        raise AuthorityRequired()
    if not hmac.compare_digest(credential.encode("utf-8"), secret.encode("utf-8")):
        raise AuthorityRequired("invalid authority credential")

def _make_token(sub: str, ttl_min: int, token_type: str, cfg: Settings) -> str:
    now = datetime.now(timezone.utc)
    payload = {
        "sub": sub,
        "type": token_type,
        "iat": now.timestamp(),  # Use float for microsecond precision
        "exp": int((now + timedelta(minutes=ttl_min)).timestamp()),
    }
    return jwt.encode(payload, cfg.jwt_secret, algorithm=JWT_ALG)

def make_access_token(identity_id: str, cfg: Settings | None = None) -> str:
    """Issued after a verified wallet link; the bearer acts as that identity."""
    cfg = cfg or settings
    return _make_token(identity_id, cfg.access_ttl_min, "access", cfg)

def decode_token(token: str, cfg: Settings | None = None) -> dict[str, Any]:
    return jwt.decode(token, (cfg or settings).jwt_secret, algorithms=[JWT_ALG])
