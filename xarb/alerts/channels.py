"""Alert delivery channels and webhook payload templates.

Channel kinds are resolved through the CHANNELS table by their `type`
string; templates through TEMPLATES by name.
"""
from __future__ import annotations

import abc
import asyncio
import json
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

import aiohttp

from ..errors import ChannelError
from ..logger import get_logger
from ..models import AlertEvent

logger = get_logger("xarb.alerts")


def _iso(ts_ms: int) -> str:
    return datetime.fromtimestamp(ts_ms / 1000, tz=timezone.utc).isoformat()


def default_template(event: AlertEvent) -> Dict[str, Any]:
    return {
        "alert_type": "arbitrage_opportunity",
        "timestamp": event.timestamp,
        "opportunity": event.opportunity,
    }


def slack_template(event: AlertEvent) -> Dict[str, Any]:
    o = event.opportunity
    return {
        "text": "Arbitrage Opportunity Detected!",
        "blocks": [
            {"type": "header", "text": {"type": "plain_text", "text": "Arbitrage Opportunity"}},
            {
                "type": "section",
                "fields": [
                    {"type": "mrkdwn", "text": f"*Symbol:*\n{o['symbol']}"},
                    {"type": "mrkdwn", "text": f"*Profit:*\n{o['profit_percent']:.2f}% (${o['profit']:.2f})"},
                    {"type": "mrkdwn", "text": f"*Buy From:*\n{o['buy_from']} @ ${o['buy_price']:.2f}"},
                    {"type": "mrkdwn", "text": f"*Sell To:*\n{o['sell_to']} @ ${o['sell_price']:.2f}"},
                ],
            },
            {"type": "context", "elements": [{"type": "mrkdwn", "text": f"Detected at {_iso(event.timestamp)}"}]},
        ],
    }


def discord_template(event: AlertEvent) -> Dict[str, Any]:
    o = event.opportunity
    return {
        "content": "**Arbitrage Opportunity Detected!**",
        "embeds": [
            {
                "title": f"{o['symbol']} Arbitrage",
                "color": 0x00FF00,
                "fields": [
                    {"name": "Profit", "value": f"{o['profit_percent']:.2f}% (${o['profit']:.2f})", "inline": True},
                    {"name": "Direction", "value": f"{o['buy_from']} -> {o['sell_to']}", "inline": True},
                    {"name": "Buy Price", "value": f"${o['buy_price']:.2f}", "inline": True},
                    {"name": "Sell Price", "value": f"${o['sell_price']:.2f}", "inline": True},
                ],
                "timestamp": _iso(event.timestamp),
            }
        ],
    }


TEMPLATES: Dict[str, Callable[[AlertEvent], Dict[str, Any]]] = {
    "default": default_template,
    "slack": slack_template,
    "discord": discord_template,
}


def render(template: Optional[str], event: AlertEvent) -> Dict[str, Any]:
    return TEMPLATES.get(template or "default", default_template)(event)


class Channel(abc.ABC):
    type: str

    @abc.abstractmethod
    async def send(self, event: AlertEvent, config: Dict[str, Any]) -> None:
        """Deliver one event; raise ChannelError on failure."""
        raise NotImplementedError


class ConsoleChannel(Channel):
    type = "console"

    async def send(self, event: AlertEvent, config: Dict[str, Any]) -> None:
        o = event.opportunity
        if config.get("format") == "json":
            logger.warning(f"ALERT: {json.dumps(o)}")
        else:
            logger.warning(
                f"ALERT: {o['symbol']} {o['profit_percent']:.2f}% "
                f"(Buy {o['buy_from']} @ {o['buy_price']:.2f}, Sell {o['sell_to']} @ {o['sell_price']:.2f})"
            )


class WebhookChannel(Channel):
    type = "webhook"

    def __init__(self, timeout_s: float = 10.0) -> None:
        self.timeout_s = timeout_s
        self._session: Optional[aiohttp.ClientSession] = None

    async def session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
        return self._session

    async def close(self) -> None:
        if self._session and not self._session.closed:
            await self._session.close()

    async def send(self, event: AlertEvent, config: Dict[str, Any]) -> None:
        url = config.get("url")
        if not url:
            raise ChannelError("webhook channel has no url")
        method = str(config.get("method", "POST")).upper()
        headers = {
            "Content-Type": "application/json",
            "User-Agent": "xarb-alerts/0.1",
            **(config.get("headers") or {}),
        }
        payload = render(config.get("template"), event)
        s = await self.session()
        try:
            async with s.request(
                method, url, headers=headers, json=payload, timeout=aiohttp.ClientTimeout(total=self.timeout_s)
            ) as resp:
                if resp.status >= 300:
                    raise ChannelError(f"webhook failed: {resp.status} {resp.reason}")
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise ChannelError(f"webhook failed: {e}") from e
        logger.info(f"webhook sent to {url}")


CHANNELS: Dict[str, Callable[[], Channel]] = {
    ConsoleChannel.type: ConsoleChannel,
    WebhookChannel.type: WebhookChannel,
}


def build_channel(kind: str) -> Channel:
    factory = CHANNELS.get(kind)
    if factory is None:
        raise ChannelError(f"unsupported channel type {kind!r}")
    return factory()
