from __future__ import annotations


class XarbError(Exception):
    pass


class InvalidInput(XarbError):
    """Malformed tick or book level. Dropped at the boundary, never propagated."""


class InsufficientExchanges(XarbError):
    def __init__(self, count: int) -> None:
        super().__init__(f"Need at least 2 exchanges for arbitrage calculation, got {count}")
        self.count = count


class MissingRangeParameters(XarbError, ValueError):
    pass


class PersistenceFailure(XarbError):
    pass


class ChannelError(XarbError):
    pass
