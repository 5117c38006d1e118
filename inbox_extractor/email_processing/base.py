from dataclasses import dataclass
from enum import Enum
from typing import Generic, Optional, TypeVar

T = TypeVar("T")


class OutcomeStatus(str, Enum):
    """Result status of a pipeline stage."""
    OK = "ok"
    DEGRADED = "degraded"
    FAILED = "failed"


@dataclass
class StageOutcome(Generic[T]):
    """
    Tagged result returned by every stage that may fall back.

    Stages never raise on oracle or backend trouble. They report how they
    finished so the orchestrator can continue with the fallback value and
    the run recorder can show which stages degraded.

    Attributes:
        status (OutcomeStatus): OK, DEGRADED (fallback value in use) or FAILED
        value (Optional[T]): Stage output, present for OK and DEGRADED
        reason (Optional[str]): Why the stage degraded or failed
    """
    status: OutcomeStatus
    value: Optional[T] = None
    reason: Optional[str] = None

    @classmethod
    def ok(cls, value: T) -> "StageOutcome[T]":
        return cls(OutcomeStatus.OK, value)

    @classmethod
    def degraded(cls, value: T, reason: str) -> "StageOutcome[T]":
        return cls(OutcomeStatus.DEGRADED, value, reason)

    @classmethod
    def failed(cls, reason: str) -> "StageOutcome[T]":
        return cls(OutcomeStatus.FAILED, None, reason)

    @property
    def is_usable(self) -> bool:
        """True when the stage produced a value the pipeline can continue with."""
        return self.status in (OutcomeStatus.OK, OutcomeStatus.DEGRADED)

    @property
    def is_degraded(self) -> bool:
        return self.status == OutcomeStatus.DEGRADED
