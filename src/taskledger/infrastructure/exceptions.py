"""Exception hierarchy for taskledger."""

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from taskledger.domain.models import MigrationResult


class TaskLedgerError(Exception):
    """Base exception for all taskledger errors.

    Attributes:
        remediation: Optional guidance on how to fix the issue
    """

    def __init__(self, message: str, remediation: str | None = None):
        super().__init__(message)
        self.remediation = remediation

    def __str__(self) -> str:
        """Return formatted error message with remediation if available."""
        if self.remediation:
            return f"{self.args[0]}\n\nRemediation: {self.remediation}"
        return str(self.args[0])


class MigrationError(TaskLedgerError):
    """A schema migration step failed while opening the store.

    Steps that completed before the failure stay applied. Every step is
    idempotent, so the whole sequence can simply be run again once the
    cause is fixed.

    Attributes:
        results: The full migration report, ending with the failure entry
    """

    def __init__(self, results: list["MigrationResult"]):
        failure = results[-1] if results else None
        detail = failure.message if failure else "unknown error"
        super().__init__(
            f"Database migration failed: {detail}",
            remediation="Fix the reported problem and run: taskledger db migrate",
        )
        self.results = results
