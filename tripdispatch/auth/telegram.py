# tripdispatch/auth/telegram.py
from __future__ import annotations
import hmac
import hashlib
import time
from typing import Any, Dict, Optional

# данные виджета считаем устаревшими через сутки
MAX_AUTH_AGE_SEC = 86400


def _data_check_string(params: Dict[str, Any]) -> str:
    # сортируем по ключу и склеиваем "key=value" через \n, исключая hash и пустые
    parts = []
    for k in sorted(params.keys()):
        if k == "hash" or params[k] is None:
            continue
        parts.append(f"{k}={params[k]}")
    return "\n".join(parts)


def verify_login_widget(data: Dict[str, Any], bot_token: str, max_age: int = MAX_AUTH_AGE_SEC,
                        now: Optional[float] = None) -> Optional[Dict[str, Any]]:
    """
    ВАЛИДАЦИЯ ДЛЯ TELEGRAM LOGIN WIDGET:
    secret_key = SHA256(bot_token)          <-- не HMAC, в отличие от WebApp
    hash = HMAC_SHA256(key=secret_key, msg=data_check_string)
    """
    if not data or not bot_token:
        return None

    recv_hash = data.get("hash")
    if not recv_hash or not data.get("id"):
        return None

    secret_key = hashlib.sha256(bot_token.encode("utf-8")).digest()
    check_string = _data_check_string(data).encode("utf-8")
    calc_hash = hmac.new(secret_key, check_string, hashlib.sha256).hexdigest()

    if not hmac.compare_digest(calc_hash, str(recv_hash)):
        return None

    try:
        auth_date = int(data.get("auth_date") or 0)
    except (TypeError, ValueError):
        return None
    if max_age and (now if now is not None else time.time()) - auth_date > max_age:
        return None

    return {k: v for k, v in data.items() if k != "hash"}


def sign_login_widget(data: Dict[str, Any], bot_token: str) -> str:
    """Подпись в формате виджета (для тестов и локальной отладки)."""
    secret_key = hashlib.sha256(bot_token.encode("utf-8")).digest()
    return hmac.new(secret_key, _data_check_string(data).encode("utf-8"), hashlib.sha256).hexdigest()
