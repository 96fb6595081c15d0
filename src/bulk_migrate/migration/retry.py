"""Bounded retry around starting and waiting for a migration."""

from typing import Awaitable, Callable, Optional

from loguru import logger

from ..exceptions import TransientMigrationError
from ..models.migration import MigrationJob

HOST_KEY_WARNING = 'Warning: Permanently added'
HOST_KEY_WARNING_SUFFIX = 'to the list of known hosts'


def is_transient_failure(reason: Optional[str]) -> bool:
    """Whether a failure reason is the transport's host-key acceptance warning.

    This is the only failure signature known to succeed on a second attempt.
    """
    if not reason:
        return False
    return HOST_KEY_WARNING in reason and HOST_KEY_WARNING_SUFFIX in reason


class RetryCoordinator:
    """Runs start + wait, retrying exactly once on a transient failure."""

    def __init__(self, delete_repo: Callable[[], Awaitable[None]]):
        """Initialize retry coordinator.

        Args:
            delete_repo: Deletes the partially created target repository
        """
        self.delete_repo = delete_repo
        self.logger = logger.bind(component='RetryCoordinator')

    async def run(
        self,
        start: Callable[[], Awaitable[str]],
        wait: Callable[[str], Awaitable[MigrationJob]],
    ) -> MigrationJob:
        """Start a migration and wait for it.

        Args:
            start: Starts the migration and returns its id
            wait: Waits for a migration id to succeed

        Returns:
            The succeeded migration job

        Raises:
            MigrationFailedError: On a non-transient failure or a failed retry
        """
        migration_id = await start()
        try:
            return await wait(migration_id)
        except TransientMigrationError as e:
            self.logger.warning(
                f'Migration {migration_id} failed with a transient error, retrying once: {e}'
            )

        await self.delete_repo()
        migration_id = await start()
        return await wait(migration_id)
