"""Error codes raised by the lottery engines and the ledger store."""

from dataclasses import dataclass
from enum import Enum


class ErrorCode(Enum):
    INVALID_REQUEST = "INVALID_REQUEST"
    ADAPTER_FAILURE = "ADAPTER_FAILURE"
    DRAW_IN_PROGRESS = "DRAW_IN_PROGRESS"
    STORE_UNAVAILABLE = "STORE_UNAVAILABLE"


@dataclass
class LotteryError(Exception):
    """Base error with a code and a message that is safe to log."""

    code: ErrorCode
    message: str

    def __str__(self) -> str:
        return f"{self.code.value}: {self.message}"


class ValidationError(LotteryError):
    """Malformed or missing request fields. Terminal, no state mutation."""

    def __init__(self, message: str) -> None:
        super().__init__(code=ErrorCode.INVALID_REQUEST, message=message)


class AdapterFailure(LotteryError):
    def __init__(self, message: str) -> None:
        super().__init__(code=ErrorCode.ADAPTER_FAILURE, message=message)


class DrawInProgressError(LotteryError):
    """Another settlement holds the draw lock."""

    def __init__(self, holder: str | None = None) -> None:
        super().__init__(
            code=ErrorCode.DRAW_IN_PROGRESS,
            message="A draw is already in progress",
        )
        self.holder = holder


class StoreUnavailable(LotteryError):
    def __init__(self, message: str) -> None:
        super().__init__(code=ErrorCode.STORE_UNAVAILABLE, message=message)
