"""Domain exceptions for planning and driving migrations."""

from typing import Optional


class MigrationError(Exception):
    """Base exception for migration planning and execution errors."""

    pass


class PlanValidationError(MigrationError, ValueError):
    """Invalid or contradictory input to plan building."""

    pass


class MigrationFailedError(MigrationError):
    """A migration job reached a terminal failure state."""

    def __init__(
        self,
        migration_id: str,
        repository_name: Optional[str] = None,
        failure_reason: Optional[str] = None,
    ):
        """Initialize migration failure.

        Args:
            migration_id: Migration job id
            repository_name: Target repository name
            failure_reason: Platform-provided failure reason
        """
        self.migration_id = migration_id
        self.repository_name = repository_name
        self.failure_reason = failure_reason or 'unknown failure reason'
        super().__init__(self.failure_reason)


class TransientMigrationError(MigrationFailedError):
    """A migration failure whose reason matches a known transient signature."""

    pass


class ArchiveGenerationError(MigrationError):
    """An export archive reached the failed status."""

    def __init__(self, archive_id: int, kind: str):
        self.archive_id = archive_id
        self.kind = kind
        super().__init__(f'Archive generation failed for id: {archive_id} ({kind})')


class ArchiveTimeoutError(MigrationError, TimeoutError):
    """Archives were not exported before the overall deadline."""

    pass


class StepFailedError(MigrationError):
    """A guarded plan step exited with a non-zero status."""

    def __init__(self, command: str, exit_code: int):
        self.command = command
        self.exit_code = exit_code
        super().__init__(f'Step "{command}" failed with exit code {exit_code}')
