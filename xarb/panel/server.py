from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import Body, FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware

from ..alerts.cooldown import AlertCooldownTracker
from ..alerts.manager import AlertManager
from ..arbitrage.engine import ArbitrageEngine
from ..config import load_config
from ..errors import InsufficientExchanges, MissingRangeParameters, PersistenceFailure
from ..models import AlertConfig
from ..storage.sqlite import SqliteStore


@asynccontextmanager
async def lifespan(app: FastAPI):
    # the runner may have wired shared components already
    owned_store = None
    if getattr(app.state, "store", None) is None:
        cfg = load_config()
        app.state.cfg = cfg
        owned_store = app.state.store = await SqliteStore.open(cfg["db_path"])
    if getattr(app.state, "engine", None) is None:
        app.state.engine = ArbitrageEngine(app.state.store)
    if getattr(app.state, "alerts", None) is None:
        app.state.alerts = AlertManager(app.state.engine, AlertCooldownTracker())
    if getattr(app.state, "actors", None) is None:
        app.state.actors = {}
    try:
        yield
    finally:
        if owned_store is not None:
            await app.state.alerts.close()
            await owned_store.close()
            app.state.store = None
            app.state.engine = None
            app.state.alerts = None
            app.state.actors = None


app = FastAPI(title="xarb panel", version="0.1.0", lifespan=lifespan)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _split(exchanges: str) -> list[str]:
    return [e.strip() for e in exchanges.split(",") if e.strip()]


@app.get("/health")
async def health():
    return {"status": "ok"}


@app.get("/api/arbitrage")
async def api_arbitrage(exchanges: str, symbol: Optional[str] = None, min_profit: float = 0.0, granularity: str = "snapshots"):
    engine: ArbitrageEngine = app.state.engine
    try:
        opps = await engine.scan(_split(exchanges), symbol or None, min_profit, granularity)
    except (InsufficientExchanges, ValueError) as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"opportunities": [o.to_dict() for o in opps], "count": len(opps)}


@app.get("/api/arbitrage/history")
async def api_arbitrage_history(
    exchanges: str,
    symbol: Optional[str] = None,
    from_ts: Optional[int] = None,
    to_ts: Optional[int] = None,
    interval: str = "minutes",
):
    engine: ArbitrageEngine = app.state.engine
    try:
        rows = await engine.get_historical_arbitrage(_split(exchanges), symbol, from_ts, to_ts, interval)
    except (InsufficientExchanges, MissingRangeParameters, ValueError) as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"symbol": symbol, "data": [o.to_dict() for o in rows], "count": len(rows)}


@app.get("/api/alerts")
async def api_alerts(limit: int = 20):
    alerts: AlertManager = app.state.alerts
    events = alerts.tracker.get_recent(min(max(limit, 1), 100))
    return {"alerts": [e.to_dict() for e in events], "count": len(events)}


@app.get("/api/alerts/configs")
async def api_alert_configs():
    alerts: AlertManager = app.state.alerts
    configs = alerts.list_configs()
    return {"configs": [c.to_dict() for c in configs], "count": len(configs)}


@app.post("/api/alerts/configs")
async def api_alert_config_upsert(payload: dict):
    if not payload.get("exchanges"):
        raise HTTPException(status_code=400, detail="exchanges is required")
    try:
        config = AlertConfig.from_dict(payload)
    except (KeyError, TypeError, ValueError) as e:
        raise HTTPException(status_code=400, detail=f"invalid config: {e}")
    alerts: AlertManager = app.state.alerts
    return {"success": True, "config": alerts.upsert_config(config).to_dict()}


@app.delete("/api/alerts/configs/{config_id}")
async def api_alert_config_delete(config_id: str):
    alerts: AlertManager = app.state.alerts
    return {"success": alerts.delete_config(config_id)}


@app.post("/api/alerts/check")
async def api_alert_check():
    alerts: AlertManager = app.state.alerts
    fired = await alerts.check_alerts()
    return {"success": True, "fired": len(fired)}


@app.get("/api/stats")
async def api_stats():
    store: SqliteStore = app.state.store
    out = {}
    for name, actor in app.state.actors.items():
        out[name] = {**actor.stats(), "rows": await store.count_rows(name)}
    return out


def _page(limit: int, offset: int) -> tuple[int, int]:
    return min(max(limit, 1), 1000), max(offset, 0)


@app.get("/api/snapshots")
async def api_snapshots(exchange: str, symbol: Optional[str] = None, limit: int = 100, offset: int = 0):
    store: SqliteStore = app.state.store
    limit, offset = _page(limit, offset)
    try:
        rows = await store.list_rows(exchange, "snapshots", symbol, limit=limit, offset=offset)
    except PersistenceFailure as e:
        raise HTTPException(status_code=500, detail=f"Database error: {e}")
    return {"snapshots": [r.to_row() for r in rows], "count": len(rows), "pagination": {"limit": limit, "offset": offset}}


@app.get("/api/minutes")
async def api_minutes(
    exchange: str,
    symbol: Optional[str] = None,
    from_ts: Optional[int] = None,
    to_ts: Optional[int] = None,
    limit: int = 60,
    offset: int = 0,
):
    store: SqliteStore = app.state.store
    limit, offset = _page(limit, offset)
    try:
        rows = await store.list_rows(exchange, "minutes", symbol, from_ts, to_ts, limit, offset)
    except PersistenceFailure as e:
        raise HTTPException(status_code=500, detail=f"Database error: {e}")
    return {"minutes": [r.to_row() for r in rows], "count": len(rows), "pagination": {"limit": limit, "offset": offset}}


@app.get("/api/overview")
async def api_overview(exchange: Optional[str] = None):
    store: SqliteStore = app.state.store
    try:
        symbols = await store.minute_overview(exchange)
    except PersistenceFailure as e:
        raise HTTPException(status_code=500, detail=f"Database error: {e}")
    return {"symbols": symbols, "count": len(symbols)}


@app.get("/api/books/{venue}/{symbol}")
async def api_book(venue: str, symbol: str, levels: int = 10):
    actor = (app.state.actors or {}).get(venue)
    book = actor.books.get(symbol) if actor is not None else None
    if book is None:
        raise HTTPException(status_code=404, detail=f"no book for {venue}:{symbol}")
    return {"venue": venue, "symbol": symbol, "ready": book.ready, **book.depth(min(max(levels, 1), 100))}


@app.post("/api/alerts/start")
async def api_alerts_start(payload: Optional[dict] = Body(None)):
    interval = (payload or {}).get("interval_minutes", 1)
    try:
        interval = float(interval)
    except (TypeError, ValueError):
        raise HTTPException(status_code=400, detail=f"invalid interval_minutes {interval!r}")
    if interval <= 0:
        raise HTTPException(status_code=400, detail="interval_minutes must be positive")
    alerts: AlertManager = app.state.alerts
    alerts.start_monitoring(interval)
    return {"success": True, "message": f"Monitoring started (interval: {interval:g} min)"}


@app.post("/api/alerts/stop")
async def api_alerts_stop():
    alerts: AlertManager = app.state.alerts
    alerts.stop_monitoring()
    return {"success": True, "message": "Monitoring stopped"}
