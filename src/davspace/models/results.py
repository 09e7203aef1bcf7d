"""Results reported by tree transactions."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path


@dataclass(frozen=True, slots=True)
class TransactionResult:
    """Outcome of a single tree transaction."""

    operation: str  # create_file | create_folder | delete | rename | paste | ...
    message: str  # human-readable summary
    source: str | None = None
    destination: str | None = None
    completed: bool = True  # False when the caller declined a confirmation


@dataclass
class BatchSummary:
    """Partial-failure accounting for batch operations (upload, download)."""

    success: int = 0
    fail: int = 0
    cancelled: bool = False
    errors: dict[str, str] = field(default_factory=dict)  # unit -> error message
    paths: list[Path] = field(default_factory=list)

    @property
    def total(self) -> int:
        return self.success + self.fail

    @property
    def message(self) -> str:
        if self.cancelled:
            return f"Cancelled after {self.success} succeeded, {self.fail} failed"
        if self.fail == 0:
            return f"{self.success} succeeded"
        if self.success == 0:
            return f"{self.fail} failed"
        return f"{self.success} succeeded, {self.fail} failed"
