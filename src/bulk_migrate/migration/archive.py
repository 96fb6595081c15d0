"""Export archive generation for GitHub Enterprise Server sources."""

import asyncio
import tempfile
import time
from datetime import datetime
from pathlib import Path
from typing import Awaitable, Callable, List, Optional

from loguru import logger

from ..api.exceptions import ForbiddenError, NotFoundError
from ..api.github import GithubApi
from ..api.storage import AzureBlobStorage, HttpDownloader
from ..exceptions import ArchiveGenerationError, ArchiveTimeoutError
from ..models.migration import ArchiveKind, ArchiveRequest, ArchiveStatus, ArchiveUrls

DEFAULT_POLL_INTERVAL = 10.0
DEFAULT_TIMEOUT_HOURS = 20.0


class ArchivePipeline:
    """Generates, downloads and re-uploads the git and metadata archives.

    Both archives are polled on every tick; the first failure of either one
    aborts the pipeline without waiting for the other.
    """

    def __init__(
        self,
        source_api: GithubApi,
        storage: AzureBlobStorage,
        downloader: Optional[HttpDownloader] = None,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        timeout_hours: float = DEFAULT_TIMEOUT_HOURS,
        keep_archive: bool = False,
        work_dir: Optional[Path] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initialize archive pipeline.

        Args:
            source_api: API of the GHES instance holding the repository
            storage: Blob storage the target platform downloads from
            downloader: Archive downloader
            poll_interval: Seconds between status polls
            timeout_hours: Overall generation deadline
            keep_archive: Keep downloaded archives on disk
            work_dir: Directory archives are downloaded to
            sleep: Coroutine used to wait between polls
            clock: Monotonic clock used for the deadline
        """
        self.source_api = source_api
        self.storage = storage
        self.downloader = downloader or HttpDownloader()
        self.poll_interval = poll_interval
        self.timeout_seconds = timeout_hours * 3600
        self.keep_archive = keep_archive
        self.work_dir = Path(work_dir or tempfile.gettempdir())
        self.sleep = sleep
        self.clock = clock
        self.logger = logger.bind(component='ArchivePipeline')

    async def run(
        self, org: str, repo: str, skip_releases: bool = False, lock_source: bool = False
    ) -> ArchiveUrls:
        """Produce authenticated archive URLs for one repository.

        Raises:
            ArchiveGenerationError: Either archive failed
            ArchiveTimeoutError: Archives not exported before the deadline
        """
        requests = await self.start(org, repo, skip_releases, lock_source)
        git, metadata = await self.wait_for_archives(org, requests)

        git_url = await self.transfer(org, git)
        metadata_url = await self.transfer(org, metadata)

        return ArchiveUrls(git_url=git_url, metadata_url=metadata_url)

    async def start(
        self, org: str, repo: str, skip_releases: bool = False, lock_source: bool = False
    ) -> List[ArchiveRequest]:
        """Start the git and metadata archive generations."""
        self.logger.info(f'Starting archive generation for {org}/{repo}')

        git_id = await self.source_api.start_git_archive_generation(org, repo)
        self.logger.info(f'Archive generation of git data started with id: {git_id}')

        metadata_id = await self.source_api.start_metadata_archive_generation(
            org, repo, skip_releases=skip_releases, lock_source=lock_source
        )
        self.logger.info(f'Archive generation of metadata started with id: {metadata_id}')

        return [
            ArchiveRequest(id=git_id, kind=ArchiveKind.GIT),
            ArchiveRequest(id=metadata_id, kind=ArchiveKind.METADATA),
        ]

    async def wait_for_archives(
        self, org: str, requests: List[ArchiveRequest]
    ) -> List[ArchiveRequest]:
        """Poll every archive until all are exported.

        Returns:
            The requests with their exported status, in the given order
        """
        deadline = self.clock() + self.timeout_seconds
        current = list(requests)

        while True:
            for index, request in enumerate(current):
                if request.status is ArchiveStatus.EXPORTED:
                    continue

                raw = await self.source_api.get_archive_migration_status(org, request.id)
                status = ArchiveStatus.from_api(raw)
                if status is ArchiveStatus.FAILED:
                    self.logger.error(f'{request.kind.value} archive {request.id} failed')
                    raise ArchiveGenerationError(request.id, request.kind.value)

                current[index] = request.model_copy(update={'status': status})

            if all(request.status is ArchiveStatus.EXPORTED for request in current):
                self.logger.success('Archives generated')
                return current

            if self.clock() >= deadline:
                raise ArchiveTimeoutError(
                    f'Archive generation timed out after '
                    f'{self.timeout_seconds / 3600:g} hours'
                )

            pending = ', '.join(
                f'{r.kind.value} ({r.id})' for r in current if r.status is ArchiveStatus.PENDING
            )
            self.logger.info(
                f'Waiting for archives: {pending}. Waiting {self.poll_interval:g} seconds...'
            )
            await self.sleep(self.poll_interval)

    def archive_name(self, request: ArchiveRequest) -> str:
        """Blob name of an archive."""
        timestamp = datetime.now().strftime('%Y%m%d%H%M%S')
        return f'{timestamp}-{request.id}-{request.kind.value}_archive.tar.gz'

    async def transfer(self, org: str, request: ArchiveRequest) -> str:
        """Download an exported archive and upload it to blob storage.

        Returns:
            Authenticated URL of the uploaded archive
        """
        name = self.archive_name(request)
        path = self.work_dir / name

        try:
            url = await self.source_api.get_archive_migration_url(org, request.id)
            try:
                await self.downloader.download_to_file(url, path)
            except (ForbiddenError, NotFoundError):
                self.logger.warning(
                    f'Download URL for archive {request.id} expired, fetching a new one'
                )
                url = await self.source_api.get_archive_migration_url(org, request.id)
                await self.downloader.download_to_file(url, path)

            return await self.storage.upload(name, path)
        finally:
            if not self.keep_archive:
                path.unlink(missing_ok=True)
