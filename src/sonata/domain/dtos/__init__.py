"""Result objects returned by multi-step library operations.

Hey future me - multi-step operations (delete cascade, batch upload) never raise
for a failed step. They RETURN an OperationResult, or its subclass PartialFailure
when at least one step failed. That way the successful part is never erased by
an exception. Check with `isinstance(result, PartialFailure)` or `result.ok`.
"""

from dataclasses import dataclass, field


@dataclass(frozen=True)
class StepFailure:
    """One failed step of a multi-step operation."""

    step: str  # e.g. "cascade.playlist", "ingest.decode"
    entity_id: str  # id of the entity the step worked on (playlist id, file name)
    error: BaseException = field(compare=False)

    @property
    def message(self) -> str:
        return getattr(self.error, "message", None) or str(self.error)


@dataclass
class OperationResult:
    """Outcome of a multi-step operation in which every step succeeded."""

    operation: str
    completed: list[str] = field(default_factory=list)
    failures: list[StepFailure] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failures

    @property
    def success_count(self) -> int:
        return len(self.completed)

    @property
    def failure_count(self) -> int:
        return len(self.failures)

    @property
    def failed_ids(self) -> list[str]:
        return [failure.entity_id for failure in self.failures]

    @classmethod
    def from_steps(
        cls,
        operation: str,
        completed: list[str],
        failures: list[StepFailure],
    ) -> "OperationResult":
        """Build an OperationResult, or a PartialFailure if any step failed."""
        if failures:
            return PartialFailure(
                operation=operation, completed=list(completed), failures=list(failures)
            )
        return OperationResult(operation=operation, completed=list(completed))


@dataclass
class PartialFailure(OperationResult):
    """Some steps of a multi-step operation failed, the rest stays applied.

    Neither total success nor total failure - callers must report the listed
    failures and keep the completed part.
    """

    def summary(self) -> str:
        return (
            f"{self.operation}: {self.success_count} succeeded, "
            f"{self.failure_count} failed ({', '.join(self.failed_ids)})"
        )


@dataclass(frozen=True)
class StorageEstimate:
    """Read-only storage usage snapshot (for the quota display)."""

    used_bytes: int
    total_bytes: int | None = None

    @property
    def percent_used(self) -> float | None:
        if not self.total_bytes:
            return None
        return round(self.used_bytes / self.total_bytes * 100, 2)


__all__ = ["OperationResult", "PartialFailure", "StepFailure", "StorageEstimate"]
