"""Migration job and export archive models."""

from enum import Enum
from typing import Optional

from loguru import logger
from pydantic import BaseModel, ConfigDict, Field


class MigrationState(str, Enum):
    """Repository migration states reported by the target platform."""

    QUEUED = 'QUEUED'
    IN_PROGRESS = 'IN_PROGRESS'
    PENDING_VALIDATION = 'PENDING_VALIDATION'
    SUCCEEDED = 'SUCCEEDED'
    FAILED = 'FAILED'
    FAILED_VALIDATION = 'FAILED_VALIDATION'

    @classmethod
    def from_api(cls, value: Optional[str]) -> 'MigrationState':
        """Parse a platform state string.

        Unknown states are treated as failures so that a polling loop can
        never spin forever on a value it does not understand.
        """
        try:
            return cls((value or '').upper())
        except ValueError:
            logger.warning(f'Unknown migration state "{value}", treating it as failed')
            return cls.FAILED

    @property
    def is_pending(self) -> bool:
        return self in (
            MigrationState.QUEUED,
            MigrationState.IN_PROGRESS,
            MigrationState.PENDING_VALIDATION,
        )

    @property
    def is_succeeded(self) -> bool:
        return self is MigrationState.SUCCEEDED

    @property
    def is_failed(self) -> bool:
        return self in (MigrationState.FAILED, MigrationState.FAILED_VALIDATION)

    @property
    def is_terminal(self) -> bool:
        return not self.is_pending


class MigrationJob(BaseModel):
    """Snapshot of a migration job as last queried."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., description='Migration ID')
    repository_name: Optional[str] = Field(default=None, description='Target repository')
    state: MigrationState = Field(..., description='Current state')
    failure_reason: Optional[str] = Field(default=None)
    warnings_count: int = Field(default=0)
    migration_log_url: Optional[str] = Field(default=None)


class ArchiveKind(str, Enum):
    """The two archives generated for a GHES repository."""

    GIT = 'git'
    METADATA = 'metadata'


class ArchiveStatus(str, Enum):
    """Export archive status."""

    PENDING = 'pending'
    EXPORTED = 'exported'
    FAILED = 'failed'

    @classmethod
    def from_api(cls, value: Optional[str]) -> 'ArchiveStatus':
        """Collapse platform states (pending, exporting, ...) onto three values."""
        normalized = (value or '').lower()
        if normalized == 'exported':
            return cls.EXPORTED
        if normalized == 'failed':
            return cls.FAILED
        return cls.PENDING


class ArchiveRequest(BaseModel):
    """A started archive generation."""

    id: int = Field(..., description='Archive migration ID on the source')
    kind: ArchiveKind
    status: ArchiveStatus = Field(default=ArchiveStatus.PENDING)


class ArchiveUrls(BaseModel):
    """Authenticated URLs handed to the migration start call."""

    model_config = ConfigDict(frozen=True)

    git_url: str
    metadata_url: str
