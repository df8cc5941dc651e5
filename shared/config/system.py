from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from shared.logging.logger import get_logger

log = get_logger("shared.config.system")


@dataclass
class ApiConfig:
    enabled: bool = True
    host: str = "0.0.0.0"
    port: int = 4100
    allow_origins: List[str] = field(default_factory=lambda: ["*"])


@dataclass
class BufferConfig:
    # Regular (non-special) messages kept in memory
    max_regular_messages: int = 200


@dataclass
class QueryConfig:
    default_page_size: int = 100
    max_page_size: int = 500
    max_regex_length: int = 256


@dataclass
class IngestionConfig:
    live_id: Optional[str] = None
    poll_interval: float = 1.5
    mock_enabled: bool = True
    mock_interval: float = 2.0


@dataclass
class OverlayConfig:
    heartbeat_seconds: float = 15.0


@dataclass
class ChatDirectorConfig:
    api: ApiConfig = field(default_factory=ApiConfig)
    buffer: BufferConfig = field(default_factory=BufferConfig)
    query: QueryConfig = field(default_factory=QueryConfig)
    ingestion: IngestionConfig = field(default_factory=IngestionConfig)
    overlay: OverlayConfig = field(default_factory=OverlayConfig)


# ------------------------------------------------------------
# Section loaders (best-effort, per-key fallback to defaults)
# ------------------------------------------------------------

def _coerce_int(raw: Any, default: int, name: str, *, minimum: int = 1) -> int:
    if raw is None:
        return default
    try:
        value = int(raw)
    except (TypeError, ValueError):
        log.warning(f"{name} must be an integer; defaulting to {default}")
        return default
    if value < minimum:
        log.warning(f"{name} must be >= {minimum}; defaulting to {default}")
        return default
    return value


def _coerce_float(raw: Any, default: float, name: str) -> float:
    if raw is None:
        return default
    try:
        value = float(raw)
    except (TypeError, ValueError):
        log.warning(f"{name} must be a number; defaulting to {default}")
        return default
    if value <= 0:
        log.warning(f"{name} must be positive; defaulting to {default}")
        return default
    return value


def _coerce_bool(raw: Any, default: bool, name: str) -> bool:
    if raw is None:
        return default
    if isinstance(raw, bool):
        return raw
    log.warning(f"{name} must be boolean; defaulting to {default}")
    return default


def _load_api(raw: Any) -> ApiConfig:
    if not isinstance(raw, dict):
        return ApiConfig()

    origins = raw.get("allow_origins")
    if isinstance(origins, list):
        allow_origins = [str(origin) for origin in origins if origin]
    else:
        allow_origins = ApiConfig().allow_origins

    return ApiConfig(
        enabled=_coerce_bool(raw.get("enabled"), ApiConfig.enabled, "api.enabled"),
        host=str(raw.get("host") or ApiConfig.host),
        port=_coerce_int(raw.get("port"), ApiConfig.port, "api.port"),
        allow_origins=allow_origins,
    )


def _load_buffer(raw: Any) -> BufferConfig:
    if not isinstance(raw, dict):
        return BufferConfig()
    return BufferConfig(
        max_regular_messages=_coerce_int(
            raw.get("max_regular_messages"),
            BufferConfig.max_regular_messages,
            "buffer.max_regular_messages",
        )
    )


def _load_query(raw: Any) -> QueryConfig:
    if not isinstance(raw, dict):
        return QueryConfig()

    default_page = _coerce_int(
        raw.get("default_page_size"), QueryConfig.default_page_size, "query.default_page_size"
    )
    max_page = _coerce_int(
        raw.get("max_page_size"), QueryConfig.max_page_size, "query.max_page_size"
    )
    if default_page > max_page:
        log.warning("query.default_page_size exceeds max_page_size; clamping")
        default_page = max_page

    return QueryConfig(
        default_page_size=default_page,
        max_page_size=max_page,
        max_regex_length=_coerce_int(
            raw.get("max_regex_length"), QueryConfig.max_regex_length, "query.max_regex_length"
        ),
    )


def _load_ingestion(raw: Any) -> IngestionConfig:
    if not isinstance(raw, dict):
        return IngestionConfig()

    live_id = raw.get("live_id")
    return IngestionConfig(
        live_id=str(live_id).strip() if live_id else None,
        poll_interval=_coerce_float(
            raw.get("poll_interval"), IngestionConfig.poll_interval, "ingestion.poll_interval"
        ),
        mock_enabled=_coerce_bool(
            raw.get("mock_enabled"), IngestionConfig.mock_enabled, "ingestion.mock_enabled"
        ),
        mock_interval=_coerce_float(
            raw.get("mock_interval"), IngestionConfig.mock_interval, "ingestion.mock_interval"
        ),
    )


def _load_overlay(raw: Any) -> OverlayConfig:
    if not isinstance(raw, dict):
        return OverlayConfig()
    return OverlayConfig(
        heartbeat_seconds=_coerce_float(
            raw.get("heartbeat_seconds"),
            OverlayConfig.heartbeat_seconds,
            "overlay.heartbeat_seconds",
        )
    )


def load_system_config(raw: Optional[Dict[str, Any]] = None) -> ChatDirectorConfig:
    """
    Build a ChatDirectorConfig from a raw JSON document.

    Invalid sections or keys fall back to defaults with a warning; nothing in
    here raises for bad input.
    """
    raw = raw if isinstance(raw, dict) else {}

    return ChatDirectorConfig(
        api=_load_api(raw.get("api")),
        buffer=_load_buffer(raw.get("buffer")),
        query=_load_query(raw.get("query")),
        ingestion=_load_ingestion(raw.get("ingestion")),
        overlay=_load_overlay(raw.get("overlay")),
    )


__all__ = [
    "ApiConfig",
    "BufferConfig",
    "QueryConfig",
    "IngestionConfig",
    "OverlayConfig",
    "ChatDirectorConfig",
    "load_system_config",
]
