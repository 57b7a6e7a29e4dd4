from __future__ import annotations

import json
import os
from dataclasses import replace
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple

from .models import (
    ApiRoutes,
    AppConfig,
    FilterSettings,
    ReconnectSettings,
    RuntimeSettings,
    TelegramSettings,
)


API_BASE_DEFAULT = "https://csgoempire.com"
WEBSOCKET_URL_DEFAULT = "wss://trade.csgoempire.com/trade"
SOCKET_PATH_DEFAULT = "/s/"
API_KEY_FILE_DEFAULT = "api_key.txt"
CONFIG_FILE_DEFAULT = "configs/empire.json"
PRICES_DB_DEFAULT = "data/prices.db"
JOURNAL_DB_DEFAULT = "data/empire_bidder.db"


def _to_bool(value: Any, default: bool = False) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return bool(value)
    text = str(value).strip().lower()
    if text in {"1", "true", "yes", "y", "on"}:
        return True
    if text in {"0", "false", "no", "n", "off"}:
        return False
    return default


def _to_int(value: Any, field_name: str) -> int:
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise RuntimeError(f"Bad integer for {field_name}: {value}") from exc


def _to_float(value: Any, field_name: str) -> float:
    try:
        return float(value)
    except (TypeError, ValueError) as exc:
        raise RuntimeError(f"Bad number for {field_name}: {value}") from exc


def _normalize_reasons(value: Any) -> Tuple[str, ...]:
    if isinstance(value, str):
        return tuple(x.strip() for x in value.split(",") if x.strip())
    if isinstance(value, Sequence) and not isinstance(value, (bytes, bytearray)):
        return tuple(str(x).strip() for x in value if str(x).strip())
    return ()


def _section(raw: Dict[str, Any], key: str) -> Dict[str, Any]:
    sec = raw.get(key)
    return sec if isinstance(sec, dict) else {}


def _read_json(path: str) -> Dict[str, Any]:
    p = Path(path)
    if not p.exists():
        return {}
    with p.open("r", encoding="utf-8") as f:
        payload = json.load(f)
    if not isinstance(payload, dict):
        raise RuntimeError(f"JSON root must be object: {path}")
    return payload


def _resolve_api_key(api_key_file: str) -> str:
    env = os.getenv("CSGOEMPIRE_API_KEY", "").strip()
    if env:
        return env
    p = Path(api_key_file)
    if api_key_file and p.is_file():
        val = p.read_text(encoding="utf-8").strip()
        if val:
            return val
    raise RuntimeError("API key not found: set CSGOEMPIRE_API_KEY or fill api_key.txt")


def _parse_routes(raw: Dict[str, Any]) -> ApiRoutes:
    base = ApiRoutes()
    routes_raw = _section(_section(raw, "api"), "routes")
    return ApiRoutes(
        place_bid=str(routes_raw.get("place_bid", base.place_bid)),
        active_auctions=str(routes_raw.get("active_auctions", base.active_auctions)),
        socket_metadata=str(routes_raw.get("socket_metadata", base.socket_metadata)),
    )


def _parse_runtime(raw: Dict[str, Any]) -> RuntimeSettings:
    base = RuntimeSettings()
    runtime_raw = _section(raw, "runtime")
    return replace(
        base,
        dry_run=_to_bool(runtime_raw.get("dry_run"), base.dry_run),
        request_timeout=max(
            1.0,
            _to_float(runtime_raw.get("request_timeout", base.request_timeout), "runtime.request_timeout"),
        ),
        contention_cooldown=max(
            0.0,
            _to_float(
                runtime_raw.get("contention_cooldown", base.contention_cooldown),
                "runtime.contention_cooldown",
            ),
        ),
        max_contention_retries=max(
            0,
            _to_int(
                runtime_raw.get("max_contention_retries", base.max_contention_retries),
                "runtime.max_contention_retries",
            ),
        ),
        max_escalations=max(
            0,
            _to_int(runtime_raw.get("max_escalations", base.max_escalations), "runtime.max_escalations"),
        ),
    )


def _parse_filters(raw: Dict[str, Any]) -> FilterSettings:
    base = FilterSettings()
    filters_raw = _section(raw, "filters")
    return replace(
        base,
        min_balance=max(0, _to_int(filters_raw.get("min_balance", base.min_balance), "filters.min_balance")),
        per_page=max(1, _to_int(filters_raw.get("per_page", base.per_page), "filters.per_page")),
        auction=str(filters_raw.get("auction", base.auction)).strip() or base.auction,
        price_max_above=max(
            0,
            _to_int(filters_raw.get("price_max_above", base.price_max_above), "filters.price_max_above"),
        ),
    )


def _parse_reconnect(raw: Dict[str, Any]) -> ReconnectSettings:
    base = ReconnectSettings()
    rec_raw = _section(raw, "reconnect")
    attempts_raw = rec_raw.get("max_init_attempts")
    max_init_attempts: Optional[int] = None
    if attempts_raw not in (None, "", 0):
        max_init_attempts = max(1, _to_int(attempts_raw, "reconnect.max_init_attempts"))
    reasons = _normalize_reasons(rec_raw.get("recoverable_reasons"))
    return replace(
        base,
        reconnect_delay=max(
            0.0,
            _to_float(rec_raw.get("reconnect_delay", base.reconnect_delay), "reconnect.reconnect_delay"),
        ),
        init_retry_delay=max(
            0.0,
            _to_float(rec_raw.get("init_retry_delay", base.init_retry_delay), "reconnect.init_retry_delay"),
        ),
        max_init_attempts=max_init_attempts,
        recoverable_reasons=reasons or base.recoverable_reasons,
    )


def _parse_telegram(raw: Dict[str, Any]) -> TelegramSettings:
    tg_raw = _section(raw, "telegram")

    token = str(tg_raw.get("token") or os.getenv("TELEGRAM_BOT_TOKEN", "")).strip()
    chat_ids_raw = tg_raw.get("chat_ids")
    if chat_ids_raw is None:
        chat_ids_raw = os.getenv("TELEGRAM_CHAT_IDS", "")
    chat_ids: List[int] = []
    if isinstance(chat_ids_raw, str):
        for part in chat_ids_raw.split(","):
            part = part.strip()
            if part:
                try:
                    chat_ids.append(int(part))
                except ValueError:
                    continue
    elif isinstance(chat_ids_raw, list):
        for item in chat_ids_raw:
            try:
                chat_ids.append(int(item))
            except (TypeError, ValueError):
                continue

    enabled_raw = tg_raw.get("enabled")
    if enabled_raw is None:
        enabled_raw = os.getenv("TELEGRAM_ENABLED")
    enabled = _to_bool(enabled_raw, False) and bool(token)
    return TelegramSettings(enabled=enabled, token=token, chat_ids=tuple(sorted(set(chat_ids))))


def load_app_config(
    *,
    config_file: str,
    api_key_file: str,
    prices_db_path: str = "",
    live_mode: bool = False,
) -> AppConfig:
    raw = _read_json(config_file)
    runtime = _parse_runtime(raw)
    if live_mode:
        runtime = replace(runtime, dry_run=False)

    api_section = _section(raw, "api")
    api_base = (
        os.getenv("CSGOEMPIRE_URL", "").strip()
        or str(api_section.get("base", "")).strip()
        or API_BASE_DEFAULT
    )
    websocket_url = (
        os.getenv("CSGOEMPIRE_WEBSOCKET_URL", "").strip()
        or str(api_section.get("websocket_url", "")).strip()
        or WEBSOCKET_URL_DEFAULT
    )
    socket_path = str(api_section.get("socket_path", "")).strip() or SOCKET_PATH_DEFAULT

    storage_section = _section(raw, "storage")
    return AppConfig(
        api_base=api_base,
        websocket_url=websocket_url,
        socket_path=socket_path,
        api_key=_resolve_api_key(api_key_file),
        routes=_parse_routes(raw),
        runtime=runtime,
        filters=_parse_filters(raw),
        reconnect=_parse_reconnect(raw),
        telegram=_parse_telegram(raw),
        prices_db_path=(
            prices_db_path
            or str(storage_section.get("prices_db", "")).strip()
            or PRICES_DB_DEFAULT
        ),
        journal_db_path=str(storage_section.get("journal_db", "")).strip() or JOURNAL_DB_DEFAULT,
    )
