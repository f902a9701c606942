from __future__ import annotations

from collections import deque
from typing import Callable, Deque, Dict, List, Tuple

from ..models import AlertEvent, now_ms

CooldownKey = Tuple[str, str, str]


class AlertCooldownTracker:
    """Cooldown per (symbol, buy_from, sell_to) plus a bounded alert history.

    History keeps the `capacity` most recent events; get_recent returns them
    newest first.
    """

    def __init__(self, capacity: int = 100, clock: Callable[[], int] = now_ms) -> None:
        self._clock = clock
        self._last_alert: Dict[CooldownKey, int] = {}
        self._history: Deque[AlertEvent] = deque(maxlen=capacity)

    def should_alert(self, symbol: str, buy_from: str, sell_to: str, cooldown_minutes: float) -> bool:
        last = self._last_alert.get((symbol, buy_from, sell_to))
        if last is None:
            return True
        return self._clock() - last >= cooldown_minutes * 60000

    def mark_sent(self, symbol: str, buy_from: str, sell_to: str) -> None:
        self._last_alert[(symbol, buy_from, sell_to)] = self._clock()

    def add_to_history(self, event: AlertEvent) -> None:
        self._history.append(event)

    def get_recent(self, limit: int = 20) -> List[AlertEvent]:
        if limit <= 0:
            return []
        items = list(self._history)[-limit:]
        items.reverse()
        return items

    def cleanup(self, max_age_minutes: float = 60) -> None:
        cutoff = self._clock() - max_age_minutes * 60000
        for key in [k for k, ts in self._last_alert.items() if ts < cutoff]:
            del self._last_alert[key]
        kept = [e for e in self._history if e.timestamp >= cutoff]
        self._history.clear()
        self._history.extend(kept)

    def __len__(self) -> int:
        return len(self._history)
