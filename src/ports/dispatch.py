"""Dispatch pass result definitions (DTOs)."""

from dataclasses import asdict, dataclass
from enum import Enum

__all__ = ["Outcome", "PassSummary"]


class Outcome(str, Enum):
    """Terminal state of one successfully handled record within a pass."""

    PERSISTED = "persisted"
    REMOVED = "removed"
    SKIPPED = "skipped"


@dataclass
class PassSummary:
    """Counters of one scheduling pass.

    Attributes:
        due: Records returned by the due query.
        persisted: Executed and kept with their result.
        removed: Executed and deleted.
        skipped: Claimed by a concurrent pass first.
        failed: Claim, execution or finalize failed.
    """

    due: int = 0
    persisted: int = 0
    removed: int = 0
    skipped: int = 0
    failed: int = 0

    def count(self, outcome: Outcome) -> None:
        setattr(self, outcome.value, getattr(self, outcome.value) + 1)

    def as_dict(self) -> dict[str, int]:
        return asdict(self)

    def __str__(self) -> str:
        return (
            f"due={self.due} persisted={self.persisted} removed={self.removed} "
            f"skipped={self.skipped} failed={self.failed}"
        )
