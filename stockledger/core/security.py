from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from uuid import uuid4

from jose import JWTError, jwt

from stockledger.core.config import settings

ALGORITHM = "HS256"
KNOWN_ROLES = {"admin", "manager", "technician"}


class TokenValidationError(ValueError):
    pass


@dataclass(frozen=True)
class TokenMetadata:
    subject: str
    role: str
    jti: str
    expires_at: datetime


def create_token(
    subject: str,
    role: str,
    expires_delta: timedelta,
    jti: str | None = None,
) -> str:
    now = datetime.now(timezone.utc)
    payload = {
        "sub": subject,
        "role": role,
        "type": "access",
        "jti": jti or str(uuid4()),
        "iat": int(now.timestamp()),
        "exp": int((now + expires_delta).timestamp()),
    }
    return jwt.encode(payload, settings.secret_key, algorithm=ALGORITHM)


def decode_token(token: str) -> dict:
    try:
        payload = jwt.decode(token, settings.secret_key, algorithms=[ALGORITHM])
    except JWTError as exc:
        raise TokenValidationError("Invalid token") from exc

    subject = payload.get("sub")
    if not subject:
        raise TokenValidationError("Invalid token subject")

    if payload.get("type") != "access":
        raise TokenValidationError("Invalid token type")

    role = str(payload.get("role") or "").strip().lower()
    if role not in KNOWN_ROLES:
        raise TokenValidationError("Invalid token role")

    if not payload.get("jti"):
        raise TokenValidationError("Invalid token id")

    return payload


def get_token_metadata(token: str) -> TokenMetadata:
    payload = decode_token(token)
    exp = payload.get("exp")
    if not exp:
        raise TokenValidationError("Invalid token expiration")
    return TokenMetadata(
        subject=str(payload["sub"]),
        role=str(payload["role"]).lower(),
        jti=str(payload["jti"]),
        expires_at=datetime.fromtimestamp(int(exp), tz=timezone.utc),
    )


def create_access_token(subject: str, role: str = "technician") -> str:
    return create_token(
        subject=subject,
        role=role,
        expires_delta=timedelta(minutes=settings.access_token_expire_minutes),
    )
