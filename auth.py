import hmac
from typing import Optional

from fastapi import Header, HTTPException
from itsdangerous import BadSignature, URLSafeTimedSerializer

from config import get_settings


def _serializer() -> URLSafeTimedSerializer:
    settings = get_settings()
    return URLSafeTimedSerializer(settings.identity_secret, salt="identity-token")


def issue_identity_token(user_id: str) -> str:
    return _serializer().dumps({"sub": user_id})


def verify_identity_token(token: str, max_age: Optional[int] = None) -> Optional[str]:
    settings = get_settings()
    try:
        data = _serializer().loads(
            token, max_age=max_age or settings.identity_max_age_secs
        )
    except BadSignature:
        return None

    subject = data.get("sub") if isinstance(data, dict) else None
    if not isinstance(subject, str) or not subject:
        return None
    return subject


def current_user_id(
    x_identity_token: Optional[str] = Header(default=None),
) -> str:
    # resolved per request; no user state is kept between requests
    if not x_identity_token:
        raise HTTPException(status_code=401, detail="Unauthorized")
    user_id = verify_identity_token(x_identity_token)
    if user_id is None:
        raise HTTPException(status_code=401, detail="Unauthorized")
    return user_id


def require_cron_secret(authorization: Optional[str] = Header(default=None)) -> None:
    secret = get_settings().cron_secret
    if not secret:
        return
    expected = f"Bearer {secret}"
    if not authorization or not hmac.compare_digest(
        authorization.encode("utf-8"), expected.encode("utf-8")
    ):
        raise HTTPException(status_code=401, detail="Unauthorized")
