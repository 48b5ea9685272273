import enum
from dataclasses import dataclass


class RefreshState(enum.Enum):
    IDLE = "idle"
    REFRESHING = "refreshing"


@dataclass
class RateWindow:
    attempts: int = 0
    started_at: float = 0.0

    def elapsed(self, now: float) -> float:
        return now - self.started_at

    def restart(self, now: float) -> None:
        self.attempts = 0
        self.started_at = now
