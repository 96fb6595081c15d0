"""Polling of migration jobs until they reach a terminal state."""

import asyncio
from typing import Awaitable, Callable, Dict

from loguru import logger

from ..api.github import GithubApi
from ..exceptions import MigrationFailedError, TransientMigrationError
from ..models.migration import MigrationJob, MigrationState
from .retry import is_transient_failure

DEFAULT_POLL_INTERVAL = 10.0


class MigrationStateTracker:
    """Drives a migration id, or every migration of an org, to completion."""

    def __init__(
        self,
        api: GithubApi,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        """Initialize tracker.

        Args:
            api: Target GitHub API
            poll_interval: Seconds between polls
            sleep: Coroutine used to wait between polls
        """
        self.api = api
        self.poll_interval = poll_interval
        self.sleep = sleep
        self.logger = logger.bind(component='MigrationStateTracker')

    async def wait_for_migration(self, migration_id: str) -> MigrationJob:
        """Poll one migration until it is terminal.

        Returns:
            The succeeded migration job

        Raises:
            TransientMigrationError: Failed with a known transient reason
            MigrationFailedError: Failed for any other reason
        """
        job = await self.api.get_migration(migration_id)
        self.logger.info(
            f'Waiting for migration (ID: {migration_id}) to finish for {job.repository_name}...'
        )

        while job.state.is_pending:
            self.logger.info(
                f'Migration {migration_id} for {job.repository_name} is {job.state.value}'
            )
            self.logger.info(f'Waiting {self.poll_interval:g} seconds...')
            await self.sleep(self.poll_interval)
            job = await self.api.get_migration(migration_id)

        if job.state.is_succeeded:
            self.logger.success(
                f'Migration {migration_id} succeeded for {job.repository_name}'
            )
            if job.warnings_count:
                self.logger.warning(
                    f'{job.warnings_count} warnings encountered during this migration'
                )
            if job.migration_log_url:
                self.logger.info(f'Migration log available at {job.migration_log_url}')
            return job

        reason = await self.api.get_migration_failure_reason(migration_id)
        self.logger.error(
            f'Migration {migration_id} failed for {job.repository_name} '
            f'({job.state.value}): {reason}'
        )

        error_class = (
            TransientMigrationError if is_transient_failure(reason) else MigrationFailedError
        )
        raise error_class(migration_id, job.repository_name, reason)

    async def wait_for_all(self, org: str) -> Dict[str, int]:
        """Poll until no migration of the org is in progress or queued.

        Individual failures are not errors here; historical jobs do not count.

        Returns:
            Final counts per state
        """
        while True:
            jobs = await self.api.get_migration_states(org)
            counts: Dict[str, int] = {state.value: 0 for state in MigrationState}
            for job in jobs:
                counts[job.state.value] += 1

            in_progress = counts[MigrationState.IN_PROGRESS.value]
            queued = counts[MigrationState.QUEUED.value]

            if in_progress == 0 and queued == 0:
                self.logger.success(f'No migrations in progress or queued for {org}')
                return counts

            self.logger.info(
                f'{in_progress} migrations in progress and {queued} queued for {org}. '
                f'Waiting {self.poll_interval:g} seconds...'
            )
            await self.sleep(self.poll_interval)
