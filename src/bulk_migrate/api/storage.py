"""Archive download and blob storage upload."""

import asyncio
import base64
from pathlib import Path
from typing import List
from urllib.parse import quote, urlencode, urlparse, urlunparse

import aiohttp
from loguru import logger

from .client import USER_AGENT, raise_for_status
from .exceptions import ApiError

CHUNK_SIZE = 1024 * 1024
BLOCK_SIZE = 4 * 1024 * 1024


def _with_query(url: str, **params: str) -> str:
    """Append query parameters after the SAS token."""
    parsed = urlparse(url)
    extra = urlencode(params)
    query = f'{parsed.query}&{extra}' if parsed.query else extra
    return urlunparse(parsed._replace(query=query))


def _block_id(index: int) -> str:
    # ids within a blob must all have the same length
    return base64.b64encode(f'block-{index:08d}'.encode()).decode()


def _block_list_xml(block_ids: List[str]) -> str:
    latest = ''.join(f'<Latest>{block_id}</Latest>' for block_id in block_ids)
    return f'<?xml version="1.0" encoding="utf-8"?><BlockList>{latest}</BlockList>'


async def _check(response: aiohttp.ClientResponse) -> None:
    if response.status >= 400:
        raise_for_status(response.status, dict(response.headers), text=await response.text())


class HttpDownloader:
    """Streams URLs to local files."""

    def __init__(self, timeout: int = 3600):
        self.timeout = timeout

    async def download_to_file(self, url: str, path: Path) -> Path:
        """Download a URL to ``path``.

        Raises:
            ForbiddenError: Expired or unauthorized URL (403)
            NotFoundError: URL no longer exists (404)
            ApiError: Any other failure
        """
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        timeout = aiohttp.ClientTimeout(total=self.timeout)
        loop = asyncio.get_running_loop()

        try:
            async with aiohttp.ClientSession(
                timeout=timeout, headers={'User-Agent': USER_AGENT}
            ) as session:
                async with session.get(url) as response:
                    await _check(response)
                    with open(path, 'wb') as f:
                        async for chunk in response.content.iter_chunked(CHUNK_SIZE):
                            await loop.run_in_executor(None, f.write, chunk)
        except aiohttp.ClientError as e:
            raise ApiError(f'Network error while downloading archive: {e}')

        logger.debug(f'Downloaded {path.stat().st_size} bytes to {path}')
        return path


class AzureBlobStorage:
    """Uploads archives to an Azure Blob container addressed by a SAS URL.

    Files are staged as fixed-size blocks and committed with a block list,
    so archive size is not bounded by the single-request blob limit. The
    returned blob URL carries the container's SAS token, so it is both
    authenticated and limited to the token's lifetime.
    """

    def __init__(self, container_sas_url: str, timeout: int = 3600, block_size: int = BLOCK_SIZE):
        if not container_sas_url:
            raise ValueError('An Azure Blob container SAS URL is required')
        if block_size <= 0:
            raise ValueError('Block size must be positive')
        self.container_sas_url = container_sas_url
        self.timeout = timeout
        self.block_size = block_size

    def blob_url(self, name: str) -> str:
        """SAS URL of a blob inside the container."""
        parsed = urlparse(self.container_sas_url)
        path = f'{parsed.path.rstrip("/")}/{quote(name)}'
        return urlunparse(parsed._replace(path=path))

    async def upload(self, name: str, path: Path) -> str:
        """Upload a local file as a block blob.

        Returns:
            Authenticated URL of the uploaded blob

        Raises:
            ApiError: If staging a block or committing the block list fails
        """
        url = self.blob_url(name)
        path = Path(path)
        size = path.stat().st_size
        timeout = aiohttp.ClientTimeout(total=self.timeout)
        loop = asyncio.get_running_loop()
        block_ids: List[str] = []
        uploaded = 0

        logger.info(f'Uploading {path.name} ({size} bytes) to blob storage as {name}')

        try:
            async with aiohttp.ClientSession(
                timeout=timeout, headers={'User-Agent': USER_AGENT}
            ) as session:
                with open(path, 'rb') as f:
                    while True:
                        block = await loop.run_in_executor(None, f.read, self.block_size)
                        if not block:
                            break

                        block_id = _block_id(len(block_ids))
                        async with session.put(
                            _with_query(url, comp='block', blockid=block_id),
                            data=block,
                            headers={'Content-Type': 'application/octet-stream'},
                        ) as response:
                            await _check(response)

                        block_ids.append(block_id)
                        uploaded += len(block)
                        logger.debug(f'Uploaded {uploaded}/{size} bytes of {name}')

                async with session.put(
                    _with_query(url, comp='blocklist'),
                    data=_block_list_xml(block_ids).encode(),
                    headers={
                        'Content-Type': 'application/xml',
                        'x-ms-blob-content-type': 'application/octet-stream',
                    },
                ) as response:
                    await _check(response)
        except aiohttp.ClientError as e:
            raise ApiError(f'Network error while uploading archive: {e}')

        logger.debug(f'Committed {len(block_ids)} blocks for {name}')
        return url
