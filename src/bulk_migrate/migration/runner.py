"""Repository migrator - body of the migrate-repo command."""

from typing import Optional

from loguru import logger
from pydantic import BaseModel, Field

from ..api.exceptions import AuthenticationError
from ..api.github import GithubApi
from ..config.config import Config
from ..models.migration import ArchiveUrls, MigrationJob
from ..planning.sources import MigrationSource
from .archive import ArchivePipeline
from .retry import RetryCoordinator
from .tracker import MigrationStateTracker


class MigrationRequest(BaseModel):
    """One repository to migrate."""

    source_org: str = Field(..., description='Source organization')
    source_project: Optional[str] = Field(default=None, description='Team project (ADO)')
    source_repo: str = Field(..., description='Source repository name')
    target_org: str = Field(..., description='Target GitHub organization')
    target_repo: str = Field(..., description='Target repository name')
    wait: bool = Field(default=True, description='Wait for the migration to finish')
    lock_source: bool = Field(default=False, description='Lock the source repository')
    skip_releases: bool = Field(default=False, description='Leave releases out')
    target_repo_visibility: Optional[str] = Field(default=None)


class MigrationResult(BaseModel):
    """Outcome of :meth:`RepoMigrator.migrate`."""

    migration_id: Optional[str] = Field(default=None, description='Last started migration')
    job: Optional[MigrationJob] = Field(default=None, description='Succeeded job when waiting')
    skipped: bool = Field(default=False, description='Target repository already existed')

    @property
    def queued(self) -> bool:
        return self.migration_id is not None and self.job is None


class RepoMigrator:
    """Starts a repository migration and optionally waits for it."""

    def __init__(
        self,
        config: Config,
        source: MigrationSource,
        target_api: GithubApi,
        tracker: MigrationStateTracker,
        archive_pipeline: Optional[ArchivePipeline] = None,
    ):
        """Initialize repository migrator.

        Args:
            config: Tool configuration (tokens, visibility)
            source: Source platform strategy
            target_api: Target GitHub API
            tracker: Tracker used when waiting
            archive_pipeline: Required for sources that need archives
        """
        self.config = config
        self.source = source
        self.target_api = target_api
        self.tracker = tracker
        self.archive_pipeline = archive_pipeline
        self.logger = logger.bind(component='RepoMigrator')

        if source.requires_archives and archive_pipeline is None:
            raise ValueError(f'{source.kind.value} sources require an archive pipeline')

    async def migrate(self, request: MigrationRequest) -> MigrationResult:
        """Migrate one repository.

        Raises:
            MigrationFailedError: The migration failed (after the one allowed retry)
            ArchiveGenerationError: An archive could not be generated
            ApiError: A remote call failed
        """
        self.logger.info(
            f'Migrating {request.source_org}/{request.source_repo} to '
            f'{request.target_org}/{request.target_repo}'
        )

        if await self.target_api.repo_exists(request.target_org, request.target_repo):
            self.logger.warning(
                f"The Org '{request.target_org}' already contains a repository with the "
                f"name '{request.target_repo}'. No operation will be performed"
            )
            return MigrationResult(skipped=True)

        source_token = self.source.source_token(self.config)
        target_token = self.config.target.token
        if not source_token:
            raise AuthenticationError(f'No credentials for the {self.source.kind.value} source')
        if not target_token:
            raise AuthenticationError('No credentials for the target organization')

        org_id = await self.target_api.get_organization_id(request.target_org)
        migration_source_id = await self.source.create_migration_source(self.target_api, org_id)

        archives: Optional[ArchiveUrls] = None
        if self.source.requires_archives:
            archives = await self.archive_pipeline.run(
                request.source_org,
                request.source_repo,
                skip_releases=request.skip_releases,
                lock_source=request.lock_source,
            )

        source_repo_url = self.source.repo_url(
            request.source_org, request.source_project, request.source_repo
        )
        visibility = (
            request.target_repo_visibility or self.config.migration.target_repo_visibility
        )

        async def start() -> str:
            migration_id = await self.target_api.start_migration(
                migration_source_id,
                source_repo_url,
                org_id,
                request.target_repo,
                source_token,
                target_token,
                git_archive_url=archives.git_url if archives else None,
                metadata_archive_url=archives.metadata_url if archives else None,
                skip_releases=request.skip_releases,
                target_repo_visibility=visibility,
                # archives are locked while generating them
                lock_source=request.lock_source and archives is None,
            )
            self.logger.info(f'Migration started with ID: {migration_id}')
            return migration_id

        if not request.wait:
            migration_id = await start()
            return MigrationResult(migration_id=migration_id)

        last_id = None

        async def start_and_remember() -> str:
            nonlocal last_id
            last_id = await start()
            return last_id

        async def delete_target_repo() -> None:
            await self.target_api.delete_repo(request.target_org, request.target_repo)

        job = await RetryCoordinator(delete_target_repo).run(
            start_and_remember, self.tracker.wait_for_migration
        )
        return MigrationResult(migration_id=last_id, job=job)

