import time
from typing import Optional

import bcrypt
from itsdangerous import BadData, URLSafeSerializer

from config import get_settings


class AuthError(ValueError):
    pass


def _serializer() -> URLSafeSerializer:
    settings = get_settings()
    return URLSafeSerializer(settings.token_secret, salt="auth-token")


def hash_password(password: str) -> str:
    rounds = get_settings().bcrypt_rounds
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(rounds)).decode(
        "utf-8"
    )


def verify_password(password: str, password_hash: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        # Malformed stored hash or over-long password.
        return False


def issue_token(user_id: int, *, now: Optional[int] = None) -> str:
    settings = get_settings()
    timestamp = int(time.time()) if now is None else now
    expiry = timestamp + settings.token_max_age_days * 86400

    token_data = {"u": user_id, "ts": timestamp, "exp": expiry}

    return _serializer().dumps(token_data)


def verify_token(token: str, *, now: Optional[int] = None) -> int:
    """Return the user id carried by ``token`` or raise AuthError."""
    try:
        data = _serializer().loads(token)
    except BadData as exc:
        raise AuthError("Invalid token") from exc

    if not isinstance(data, dict):
        raise AuthError("Invalid token")
    user_id = data.get("u")
    if not isinstance(user_id, int):
        raise AuthError("Invalid token")

    current_time = int(time.time()) if now is None else now
    if current_time > data.get("exp", 0):
        raise AuthError("Token expired")

    return user_id
