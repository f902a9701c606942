from __future__ import annotations

import os
from typing import Any, Dict, List


def load_config() -> Dict[str, Any]:
    """Build the runtime config from environment variables with defaults.

    Invalid integers fall back to their default rather than failing startup.
    """
    cfg: Dict[str, Any] = {
        "db_path": os.getenv("XARB_DB_PATH", os.path.join("data", "xarb.db")),
        "lighter_host": os.getenv("LIGHTER_HOST", "https://mainnet.zklighter.elliot.ai"),
        "aster_host": os.getenv("ASTER_HOST", "https://fapi.asterdex.com"),
        # window_ms * windows_per_minute must equal 60000
        "window_ms": _int_env("WINDOW_MS", 15000),
        "windows_per_minute": _int_env("WINDOWS_PER_MINUTE", 4),
        "flush_check_ms": _int_env("FLUSH_CHECK_MS", 5000),
        "prune_interval_ms": _int_env("PRUNE_INTERVAL_MS", 60000),
        "minute_retention_ms": _int_env("MINUTE_RETENTION_MS", 3600000),
        "poll_ms": _int_env("POLL_MS", 1000),
        "depth_levels": _int_env("DEPTH_LEVELS", 20),
        "alert_interval_minutes": _int_env("ALERT_INTERVAL_MINUTES", 1),
        # Venues to track. Lighter is polled as full book snapshots (keyed by
        # the exact `symbol` string from /api/v1/orderBooks); Aster as ticks.
        "venues": [
            {"name": "lighter", "mode": "book", "symbols": _list_env("LIGHTER_SYMBOLS", ["BTC", "ETH"])},
            {"name": "aster", "mode": "ticker", "symbols": _list_env("ASTER_SYMBOLS", ["BTCUSDT", "ETHUSDT"])},
        ],
        # venue symbol -> canonical symbol, so both venues join in the arbitrage scan
        "symbol_map": {
            "aster": {"BTCUSDT": "BTC", "ETHUSDT": "ETH"},
        },
    }
    return cfg


def _int_env(name: str, default: int) -> int:
    val = _to_int(os.getenv(name))
    return default if val is None else val


def _list_env(name: str, default: List[str]) -> List[str]:
    raw = os.getenv(name)
    if not raw:
        return list(default)
    return [s.strip() for s in raw.split(",") if s.strip()]


def _to_int(val: str | None) -> int | None:
    try:
        return int(val) if val is not None and val != "" else None
    except ValueError:
        return None
