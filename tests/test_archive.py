"""Tests for GHES export archive generation."""

import re
import tempfile
from pathlib import Path
from unittest.mock import AsyncMock, Mock

import pytest

from bulk_migrate.api.exceptions import ForbiddenError
from bulk_migrate.exceptions import ArchiveGenerationError, ArchiveTimeoutError
from bulk_migrate.migration.archive import ArchivePipeline
from bulk_migrate.models.migration import ArchiveKind, ArchiveRequest, ArchiveStatus


class FakeClock:
    """Monotonic clock advanced by the fake sleep."""

    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now

    async def sleep(self, seconds):
        self.now += seconds


class TestArchivePipeline:
    """Test archive pipeline."""

    def setup_method(self):
        """Set up test fixtures."""
        self.temp_dir = tempfile.TemporaryDirectory()
        self.work_dir = Path(self.temp_dir.name)
        self.clock = FakeClock()

        self.source_api = Mock()
        self.source_api.start_git_archive_generation = AsyncMock(return_value=11)
        self.source_api.start_metadata_archive_generation = AsyncMock(return_value=12)
        self.source_api.get_archive_migration_url = AsyncMock(
            return_value='https://ghes.example.com/archive'
        )

        self.storage = Mock()
        self.storage.upload = AsyncMock(
            side_effect=lambda name, path: f'https://blob.example.com/c/{name}?sig=x'
        )

        self.downloader = Mock()
        self.downloader.download_to_file = AsyncMock(side_effect=self._write_archive)

        self.pipeline = ArchivePipeline(
            self.source_api,
            self.storage,
            downloader=self.downloader,
            poll_interval=60,
            timeout_hours=1,
            work_dir=self.work_dir,
            sleep=self.clock.sleep,
            clock=self.clock,
        )

    def teardown_method(self):
        """Clean up test fixtures."""
        self.temp_dir.cleanup()

    @staticmethod
    async def _write_archive(url, path):
        Path(path).write_bytes(b'archive')

    def _statuses(self, mapping):
        """Status lookup from an id -> list of statuses mapping."""
        calls = []

        async def get_status(org, archive_id):
            calls.append(archive_id)
            return mapping[archive_id].pop(0)

        self.source_api.get_archive_migration_status = AsyncMock(side_effect=get_status)
        return calls

    @pytest.mark.asyncio
    async def test_run(self):
        """Test both archives are generated, transferred and returned."""
        self._statuses({11: ['pending', 'exported'], 12: ['exporting', 'exported']})

        urls = await self.pipeline.run('acme', 'svc', skip_releases=True)

        assert re.match(
            r'https://blob\.example\.com/c/\d{14}-11-git_archive\.tar\.gz\?sig=x$', urls.git_url
        )
        assert '-12-metadata_archive.tar.gz' in urls.metadata_url
        self.source_api.start_metadata_archive_generation.assert_awaited_once_with(
            'acme', 'svc', skip_releases=True, lock_source=False
        )
        assert list(self.work_dir.iterdir()) == []

    @pytest.mark.asyncio
    async def test_first_failure_aborts(self):
        """Test a failed git archive aborts without polling the metadata archive."""
        calls = self._statuses({11: ['failed'], 12: ['pending']})

        with pytest.raises(ArchiveGenerationError) as exc_info:
            await self.pipeline.run('acme', 'svc')

        assert exc_info.value.archive_id == 11
        assert calls == [11]
        self.downloader.download_to_file.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_metadata_failure_while_git_pending(self):
        """Test a failed metadata archive aborts while the git archive is pending."""
        calls = self._statuses({11: ['pending', 'pending'], 12: ['failed']})

        with pytest.raises(ArchiveGenerationError) as exc_info:
            await self.pipeline.run('acme', 'svc')

        assert exc_info.value.archive_id == 12
        assert calls == [11, 12]
        assert self.clock.now == 0
        self.downloader.download_to_file.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_exported_archives_not_polled_again(self):
        """Test exported archives are skipped on later ticks."""
        calls = self._statuses({11: ['exported'], 12: ['pending', 'pending', 'exported']})
        requests = [
            ArchiveRequest(id=11, kind=ArchiveKind.GIT),
            ArchiveRequest(id=12, kind=ArchiveKind.METADATA),
        ]

        result = await self.pipeline.wait_for_archives('acme', requests)

        assert calls == [11, 12, 12, 12]
        assert all(r.status is ArchiveStatus.EXPORTED for r in result)
        assert requests[0].status is ArchiveStatus.PENDING

    @pytest.mark.asyncio
    async def test_timeout(self):
        """Test the overall deadline."""
        self.source_api.get_archive_migration_status = AsyncMock(return_value='pending')

        with pytest.raises(ArchiveTimeoutError):
            await self.pipeline.run('acme', 'svc')

        # 60 second polls against a one hour deadline
        assert self.clock.now == 3600

    @pytest.mark.asyncio
    async def test_expired_url_refetched_once(self):
        """Test an expired download URL is fetched again."""
        self.downloader.download_to_file = AsyncMock(
            side_effect=[ForbiddenError('expired', status_code=403), None]
        )
        request = ArchiveRequest(id=11, kind=ArchiveKind.GIT, status=ArchiveStatus.EXPORTED)

        await self.pipeline.transfer('acme', request)

        assert self.source_api.get_archive_migration_url.await_count == 2
        assert self.downloader.download_to_file.await_count == 2
        self.storage.upload.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_keep_archive(self):
        """Test archives are kept on disk when asked to."""
        self.pipeline.keep_archive = True
        request = ArchiveRequest(id=11, kind=ArchiveKind.GIT, status=ArchiveStatus.EXPORTED)

        await self.pipeline.transfer('acme', request)

        kept = list(self.work_dir.iterdir())
        assert len(kept) == 1
        assert kept[0].name.endswith('-11-git_archive.tar.gz')

    def test_archive_status_from_api(self):
        """Test platform states collapse onto three values."""
        assert ArchiveStatus.from_api('exporting') is ArchiveStatus.PENDING
        assert ArchiveStatus.from_api('EXPORTED') is ArchiveStatus.EXPORTED
        assert ArchiveStatus.from_api('failed') is ArchiveStatus.FAILED
