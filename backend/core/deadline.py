import time
from dataclasses import dataclass

from backend.core.errors import DeadlineExceeded


@dataclass(frozen=True)
class Deadline:
    """Absolute point on the monotonic clock after which an operation gives up."""

    expires_at: float

    @classmethod
    def after(cls, seconds: float) -> 'Deadline':
        return cls(expires_at=time.monotonic() + seconds)

    def remaining(self) -> float:
        return self.expires_at - time.monotonic()

    def expired(self) -> bool:
        return self.remaining() <= 0

    def check(self, operation: str) -> None:
        if self.expired():
            raise DeadlineExceeded(f'Deadline exceeded during {operation}.')
