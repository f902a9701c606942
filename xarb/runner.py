from __future__ import annotations

import asyncio
import os
from typing import Any, Dict, List

import uvicorn

from .aggregator.actor import VenueActor
from .alerts.cooldown import AlertCooldownTracker
from .alerts.manager import AlertManager
from .arbitrage.engine import ArbitrageEngine
from .config import load_config
from .connectors.aster import AsterConnector
from .connectors.base import Connector, poll_books, poll_ticks
from .connectors.lighter import LighterConnector
from .logger import get_logger
from .storage.sqlite import SqliteStore

logger = get_logger("xarb.runner")


def build_connectors(cfg: Dict[str, Any]) -> Dict[str, Connector]:
    maps = cfg.get("symbol_map", {})
    return {
        "lighter": LighterConnector(host=cfg["lighter_host"], symbol_map=maps.get("lighter")),
        "aster": AsterConnector(host=cfg["aster_host"], symbol_map=maps.get("aster")),
    }


def build_actors(cfg: Dict[str, Any], store: SqliteStore) -> Dict[str, VenueActor]:
    actors: Dict[str, VenueActor] = {}
    for venue in cfg.get("venues", []):
        name = venue["name"]
        actors[name] = VenueActor(
            name,
            store,
            window_ms=cfg["window_ms"],
            windows_per_minute=cfg["windows_per_minute"],
            flush_check_ms=cfg["flush_check_ms"],
            prune_interval_ms=cfg["prune_interval_ms"],
            minute_retention_ms=cfg["minute_retention_ms"],
        )
    return actors


async def main() -> None:
    cfg = load_config()
    store = await SqliteStore.open(cfg["db_path"])
    conns = build_connectors(cfg)
    actors = build_actors(cfg, store)
    engine = ArbitrageEngine(store)
    alerts = AlertManager(engine, AlertCooldownTracker())

    tasks: List[asyncio.Task] = []
    for venue in cfg.get("venues", []):
        name = venue["name"]
        actor = actors[name]
        await actor.start()
        conn = conns[name]
        if venue.get("mode") == "book":
            coro = poll_books(conn, actor, venue["symbols"], cfg["poll_ms"], cfg["depth_levels"])
        else:
            coro = poll_ticks(conn, actor, venue["symbols"], cfg["poll_ms"])
        tasks.append(asyncio.create_task(coro, name=f"poll-{name}"))
    alerts.start_monitoring(cfg["alert_interval_minutes"])

    from .panel.server import app

    app.state.cfg = cfg
    app.state.store = store
    app.state.engine = engine
    app.state.alerts = alerts
    app.state.actors = actors
    server = uvicorn.Server(
        uvicorn.Config(app, host=os.getenv("PANEL_HOST", "127.0.0.1"), port=int(os.getenv("PANEL_PORT", "8000")))
    )
    try:
        await server.serve()
    finally:
        for t in tasks:
            t.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        for actor in actors.values():
            await actor.stop()
        await alerts.close()
        for conn in conns.values():
            await conn.close()
        await store.close()
        logger.info("shutdown complete")


if __name__ == "__main__":
    asyncio.run(main())
