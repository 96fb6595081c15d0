"""Tests for single repository migration."""

from unittest.mock import AsyncMock, Mock

import pytest

from bulk_migrate.api.exceptions import AuthenticationError
from bulk_migrate.config.config import Config
from bulk_migrate.exceptions import TransientMigrationError
from bulk_migrate.migration.runner import MigrationRequest, RepoMigrator
from bulk_migrate.models.migration import ArchiveUrls, MigrationJob, MigrationState
from bulk_migrate.planning.sources import AdoSource, GhesSource


class TestRepoMigrator:
    """Test repository migrator."""

    def setup_method(self):
        """Set up test fixtures."""
        self.config = Config(target={'token': 'gh'}, ado={'pat': 'ado'})
        self.target_api = Mock()
        self.target_api.repo_exists = AsyncMock(return_value=False)
        self.target_api.get_organization_id = AsyncMock(return_value='O_1')
        self.target_api.create_ado_migration_source = AsyncMock(return_value='MS_1')
        self.target_api.create_github_migration_source = AsyncMock(return_value='MS_2')
        self.target_api.start_migration = AsyncMock(side_effect=['RM_1', 'RM_2'])
        self.target_api.delete_repo = AsyncMock()
        self.tracker = Mock()
        self.tracker.wait_for_migration = AsyncMock(
            return_value=MigrationJob(id='RM_1', state=MigrationState.SUCCEEDED)
        )
        self.migrator = RepoMigrator(self.config, AdoSource(), self.target_api, self.tracker)
        self.request = MigrationRequest(
            source_org='contoso',
            source_project='App',
            source_repo='web',
            target_org='target-org',
            target_repo='App-web',
        )

    @pytest.mark.asyncio
    async def test_existing_target_repo_is_skipped(self):
        """Test nothing is started when the target repository exists."""
        self.target_api.repo_exists = AsyncMock(return_value=True)

        result = await self.migrator.migrate(self.request)

        assert result.skipped
        self.target_api.start_migration.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_queue_only(self):
        """Test queue-only returns the migration id without waiting."""
        request = self.request.model_copy(update={'wait': False})

        result = await self.migrator.migrate(request)

        assert result.migration_id == 'RM_1'
        assert result.queued
        self.tracker.wait_for_migration.assert_not_awaited()
        self.target_api.create_ado_migration_source.assert_awaited_once_with(
            'O_1', 'https://dev.azure.com'
        )

        args = self.target_api.start_migration.await_args
        assert args.args[:6] == (
            'MS_1',
            'https://dev.azure.com/contoso/App/_git/web',
            'O_1',
            'App-web',
            'ado',
            'gh',
        )
        assert args.kwargs['target_repo_visibility'] == 'private'
        assert args.kwargs['git_archive_url'] is None

    @pytest.mark.asyncio
    async def test_wait(self):
        """Test waiting returns the succeeded job."""
        result = await self.migrator.migrate(self.request)

        assert result.job.state is MigrationState.SUCCEEDED
        assert not result.queued
        self.tracker.wait_for_migration.assert_awaited_once_with('RM_1')

    @pytest.mark.asyncio
    async def test_transient_failure_recreates_repo(self):
        """Test a transient failure deletes the target repo and starts again."""
        self.tracker.wait_for_migration = AsyncMock(
            side_effect=[
                TransientMigrationError('RM_1', 'App-web', 'host key'),
                MigrationJob(id='RM_2', state=MigrationState.SUCCEEDED),
            ]
        )

        result = await self.migrator.migrate(self.request)

        assert result.migration_id == 'RM_2'
        self.target_api.delete_repo.assert_awaited_once_with('target-org', 'App-web')

    @pytest.mark.asyncio
    async def test_missing_source_token(self):
        """Test a missing source credential fails before starting."""
        migrator = RepoMigrator(
            Config(target={'token': 'gh'}), AdoSource(), self.target_api, self.tracker
        )

        with pytest.raises(AuthenticationError):
            await migrator.migrate(self.request)

        self.target_api.start_migration.assert_not_awaited()

    def test_ghes_requires_archive_pipeline(self):
        """Test GHES sources need an archive pipeline."""
        with pytest.raises(ValueError):
            RepoMigrator(
                self.config, GhesSource('https://ghes.example.com/api/v3'),
                self.target_api, self.tracker,
            )

    @pytest.mark.asyncio
    async def test_ghes_uses_archives(self):
        """Test GHES migrations pass archive URLs and lock while archiving."""
        config = Config(target={'token': 'gh'}, github_source={'token': 'src'})
        pipeline = Mock()
        pipeline.run = AsyncMock(
            return_value=ArchiveUrls(git_url='https://blob/git', metadata_url='https://blob/meta')
        )
        migrator = RepoMigrator(
            config,
            GhesSource('https://ghes.example.com/api/v3'),
            self.target_api,
            self.tracker,
            archive_pipeline=pipeline,
        )
        request = MigrationRequest(
            source_org='acme',
            source_repo='svc',
            target_org='target-org',
            target_repo='svc',
            wait=False,
            lock_source=True,
        )

        await migrator.migrate(request)

        pipeline.run.assert_awaited_once_with(
            'acme', 'svc', skip_releases=False, lock_source=True
        )
        kwargs = self.target_api.start_migration.await_args.kwargs
        assert kwargs['git_archive_url'] == 'https://blob/git'
        assert kwargs['metadata_archive_url'] == 'https://blob/meta'
        assert kwargs['lock_source'] is False
        self.target_api.create_github_migration_source.assert_awaited_once_with('O_1')
