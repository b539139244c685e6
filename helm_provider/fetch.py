"""Library for downloading charts and values documents.

Objects in S3 (`s3://bucket/key`) are downloaded from the bucket's own region.
Any other URL is downloaded with an HTTP GET. Either way the destination is
only replaced once the whole body has been written, so a failed download never
leaves a partial file behind for a later step to read.
"""

import asyncio
from collections.abc import Generator
import contextlib
import logging
import os
from pathlib import Path
import tempfile
from urllib.parse import urlsplit

import aiofiles
import httpx

from .aws import AwsClients
from .exceptions import FetchError

__all__ = [
    "SourceFetcher",
]

_LOGGER = logging.getLogger(__name__)

S3_SCHEME = "s3"


@contextlib.contextmanager
def _staged_file(dest: Path) -> Generator[Path, None, None]:
    """Yield a temporary path that is renamed to dest on success."""
    dest.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{dest.name}.", dir=dest.parent)
    os.close(fd)
    tmp_path = Path(tmp_name)
    try:
        yield tmp_path
        os.replace(tmp_path, dest)
    finally:
        tmp_path.unlink(missing_ok=True)


class SourceFetcher:
    """Dispatches downloads to S3 or HTTP based on the URL scheme."""

    def __init__(
        self,
        aws: AwsClients | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize SourceFetcher."""
        self._aws = aws
        self._timeout = timeout
        self._transport = transport

    async def fetch(self, url: str, dest: Path) -> None:
        """Download url to the local file dest."""
        try:
            parts = urlsplit(url)
        except ValueError as err:
            raise FetchError(url, f"Invalid URL: {err}") from err
        if parts.scheme.lower() == S3_SCHEME:
            await self._fetch_s3(url, parts.netloc, parts.path.lstrip("/"), dest)
        else:
            await self._fetch_http(url, dest)
        _LOGGER.info("Downloaded %s to %s", url, dest)

    async def _fetch_s3(self, url: str, bucket: str, key: str, dest: Path) -> None:
        if not bucket or not key:
            raise FetchError(url, "Expected a URL of the form s3://bucket/key")
        if self._aws is None:
            self._aws = AwsClients()
        aws = self._aws
        region = await asyncio.to_thread(aws.get_bucket_region, bucket)
        with _staged_file(dest) as tmp_path:
            await asyncio.to_thread(aws.download_s3, region, bucket, key, tmp_path)

    async def _fetch_http(self, url: str, dest: Path) -> None:
        _LOGGER.info("Getting file from URL %s", url)
        try:
            async with httpx.AsyncClient(
                timeout=self._timeout,
                transport=self._transport,
                follow_redirects=True,
            ) as client:
                async with client.stream("GET", url) as response:
                    _LOGGER.debug("Response %s for %s", response.status_code, url)
                    if not response.is_success:
                        raise FetchError(
                            url,
                            f"Got response {response.status_code}",
                            status_code=response.status_code,
                        )
                    with _staged_file(dest) as tmp_path:
                        async with aiofiles.open(tmp_path, mode="wb") as out:
                            async for chunk in response.aiter_bytes():
                                await out.write(chunk)
        except httpx.HTTPError as err:
            raise FetchError(url, str(err)) from err
