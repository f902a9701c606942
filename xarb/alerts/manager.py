from __future__ import annotations

import asyncio
import uuid
from typing import Callable, Dict, List, Optional

from ..arbitrage.engine import ArbitrageEngine
from ..errors import ChannelError
from ..logger import get_logger
from ..models import AlertChannel, AlertConfig, AlertEvent, ArbitrageOpportunity, ChannelResult, now_ms
from .channels import Channel, build_channel
from .cooldown import AlertCooldownTracker

logger = get_logger("xarb.alerts")


def default_alert_configs() -> List[AlertConfig]:
    ts = now_ms()
    return [
        AlertConfig(
            id="default-arbitrage",
            name="Default Arbitrage Alert",
            enabled=False,  # enabled explicitly by the operator
            min_profit_percent=0.5,
            symbols=[],
            exchanges=["lighter", "aster"],
            channels=[AlertChannel(type="console", config={"format": "json"})],
            cooldown_minutes=5,
            created_at=ts,
            updated_at=ts,
        )
    ]


class AlertManager:
    """Periodically scans for opportunities and delivers alerts.

    Repeat alerts for the same (symbol, buy_from, sell_to) are suppressed by
    the cooldown tracker; delivery to each enabled channel is attempted
    independently and recorded on the event.
    """

    def __init__(
        self,
        engine: ArbitrageEngine,
        tracker: Optional[AlertCooldownTracker] = None,
        configs: Optional[List[AlertConfig]] = None,
        channels: Optional[Dict[str, Channel]] = None,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self.engine = engine
        self.tracker = tracker or AlertCooldownTracker(clock=clock)
        self._clock = clock
        self.configs: Dict[str, AlertConfig] = {}
        for c in default_alert_configs() if configs is None else configs:
            self.configs[c.id] = c
        self._channels: Dict[str, Channel] = dict(channels or {})
        self._task: Optional[asyncio.Task] = None

    # --- config CRUD ---

    def list_configs(self) -> List[AlertConfig]:
        return list(self.configs.values())

    def upsert_config(self, config: AlertConfig) -> AlertConfig:
        ts = self._clock()
        if not config.id:
            config.id = f"alert-{ts}"
            config.created_at = ts
        config.updated_at = ts
        self.configs[config.id] = config
        return config

    def delete_config(self, config_id: str) -> bool:
        return self.configs.pop(config_id, None) is not None

    # --- monitoring ---

    def start_monitoring(self, interval_minutes: float = 1) -> None:
        self.stop_monitoring()
        logger.info(f"starting alert monitoring every {interval_minutes} min")
        self._task = asyncio.create_task(self._monitor(interval_minutes * 60), name="alert-monitor")

    def stop_monitoring(self) -> None:
        if self._task is not None:
            self._task.cancel()
            self._task = None
            logger.info("alert monitoring stopped")

    @property
    def monitoring(self) -> bool:
        return self._task is not None and not self._task.done()

    async def _monitor(self, interval_s: float) -> None:
        while True:
            try:
                await self.check_alerts()
            except Exception as e:
                logger.exception(f"alert check failed: {e}")
            await asyncio.sleep(interval_s)

    async def check_alerts(self) -> List[AlertEvent]:
        enabled = [c for c in self.configs.values() if c.enabled]
        if not enabled:
            logger.debug("no enabled alert configs")
            return []
        fired: List[AlertEvent] = []
        for config in enabled:
            try:
                fired.extend(await self._check_config(config))
            except Exception as e:
                logger.error(f"error checking config {config.id}: {e}")
        self.tracker.cleanup(60)
        return fired

    async def _check_config(self, config: AlertConfig) -> List[AlertEvent]:
        targets = config.symbols or [None]
        fired: List[AlertEvent] = []
        for symbol in targets:
            opportunities = await self.engine.scan(config.exchanges, symbol, config.min_profit_percent, "snapshots")
            for opp in opportunities:
                event = await self.process_opportunity(config, opp)
                if event is not None:
                    fired.append(event)
        return fired

    async def process_opportunity(self, config: AlertConfig, opp: ArbitrageOpportunity) -> Optional[AlertEvent]:
        if not self.tracker.should_alert(opp.symbol, opp.buy_from, opp.sell_to, config.cooldown_minutes):
            logger.debug(f"cooldown active for {opp.symbol} {opp.buy_from}->{opp.sell_to}")
            return None

        ts = self._clock()
        event = AlertEvent(
            id=f"{ts}-{uuid.uuid4().hex[:9]}",
            config_id=config.id,
            timestamp=ts,
            opportunity={
                "symbol": opp.symbol,
                "buy_from": opp.buy_from,
                "sell_to": opp.sell_to,
                "buy_price": opp.buy_price,
                "sell_price": opp.sell_price,
                "profit": opp.profit,
                "profit_percent": opp.profit_percent,
            },
        )
        logger.info(f"alert triggered: {opp.symbol} {opp.profit_percent:.2f}% {opp.buy_from}->{opp.sell_to}")

        for channel in (c for c in config.channels if c.enabled):
            try:
                await self._channel(channel.type).send(event, channel.config)
                event.channels.append(ChannelResult(type=channel.type, status="sent"))
            except ChannelError as e:
                logger.error(f"failed to send to {channel.type}: {e}")
                event.channels.append(ChannelResult(type=channel.type, status="failed", error=str(e)))
            except Exception as e:
                logger.exception(f"unexpected error sending to {channel.type}: {e}")
                event.channels.append(ChannelResult(type=channel.type, status="failed", error=f"{type(e).__name__}: {e}"))

        event.status = "sent" if all(c.status == "sent" for c in event.channels) else "failed"
        self.tracker.mark_sent(opp.symbol, opp.buy_from, opp.sell_to)
        self.tracker.add_to_history(event)
        return event

    def _channel(self, kind: str) -> Channel:
        ch = self._channels.get(kind)
        if ch is None:
            ch = self._channels[kind] = build_channel(kind)
        return ch

    async def close(self) -> None:
        self.stop_monitoring()
        for ch in self._channels.values():
            close = getattr(ch, "close", None)
            if close is not None:
                await close()
