from __future__ import annotations

import asyncio
import logging
import os
import shutil
import tempfile
import time
from pathlib import Path
from typing import Callable

import requests

from extsync.exceptions import DownloadError, ExtsyncError
from extsync.install_engine import validate_package
from extsync.internal_config import (
    DEFAULT_GALLERY_URL,
    DOWNLOAD_RETRIES,
    DOWNLOAD_RETRY_DELAY_SECONDS,
)
from extsync.marketplace import package_url

logger: logging.Logger = logging.getLogger(__name__)

Downloader = Callable[[str, Path], Path]


def artifact_filename(
    publisher: str, name: str, version: str, ext: str = "vsix"
) -> str:
    return f"{publisher}.{name}-{version}.{ext}"


def _temporary_path(directory: Path, filename: str) -> Path:
    # unique per writer so concurrent downloads of one file never interleave
    fd, raw_path = tempfile.mkstemp(prefix=f"{filename}.", suffix=".tmp", dir=directory)
    os.close(fd)
    return Path(raw_path)


def _copy_atomically(source: Path, target: Path) -> Path:
    temp_path = _temporary_path(target.parent, target.name)
    try:
        shutil.copyfile(source, temp_path)
        os.replace(temp_path, target)
    finally:
        temp_path.unlink(missing_ok=True)
    return target


class ArtifactCache(object):
    """Download extension packages under deterministic file names.

    A file that already exists at its final path is trusted and returned
    without touching the network.
    """

    def __init__(
        self,
        output_dir: Path,
        download: Downloader,
        cache_dir: Path | None = None,
        gallery_url: str = DEFAULT_GALLERY_URL,
        retries: int = DOWNLOAD_RETRIES,
        retry_delay: float = DOWNLOAD_RETRY_DELAY_SECONDS,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.output_dir = output_dir
        self.download = download
        self.cache_dir = cache_dir
        self.gallery_url = gallery_url
        self.retries = retries
        self.retry_delay = retry_delay
        self.sleep = sleep
        self.output_dir.mkdir(parents=True, exist_ok=True)
        if self.cache_dir is not None:
            self.cache_dir.mkdir(parents=True, exist_ok=True)

    def target_path(self, publisher: str, name: str, version: str) -> Path:
        return self.output_dir.joinpath(artifact_filename(publisher, name, version))

    def _download_with_retries(self, url: str, file_path: Path) -> None:
        last_error: Exception | None = None
        # one initial attempt plus `retries` retries
        for attempt in range(self.retries + 1):
            if attempt:
                logger.info(f"Retrying download ({attempt}/{self.retries}): {url}")
                self.sleep(self.retry_delay)
            try:
                self.download(url, file_path)
                return
            except (requests.RequestException, OSError) as e:
                last_error = e
                logger.warning(f"Download of {url} failed: {e}")
        raise DownloadError(f"Failed to download {url}: {last_error}") from last_error

    def fetch_sync(
        self, publisher: str, name: str, version: str, static_url: str = ""
    ) -> Path:
        target = self.target_path(publisher, name, version)
        if target.is_file():
            logger.info(f"VSIX already exists: {target.name}")
            return target

        if self.cache_dir is not None:
            cached = self.cache_dir.joinpath(target.name)
            if cached.is_file():
                logger.info(f"Using cached VSIX: {cached}")
                try:
                    return _copy_atomically(cached, target)
                except OSError as e:
                    logger.warning(f"Couldn't copy {cached} from the cache: {e}")

        url = static_url or package_url(self.gallery_url, publisher, name, version)
        logger.info(f"Downloading {publisher}.{name}@{version} from {url}")

        try:
            temp_path = _temporary_path(self.output_dir, target.name)
        except OSError as e:
            raise DownloadError(f"Cannot write to {self.output_dir}: {e}") from e
        try:
            self._download_with_retries(url, temp_path)
            validate_package(temp_path)
            os.replace(temp_path, target)
        except ExtsyncError:
            raise
        except OSError as e:
            raise DownloadError(f"Could not store {target.name}: {e}") from e
        finally:
            temp_path.unlink(missing_ok=True)

        if self.cache_dir is not None:
            # target is already in place and valid
            try:
                _copy_atomically(target, self.cache_dir.joinpath(target.name))
            except OSError as e:
                logger.warning(f"Couldn't store {target.name} in the cache: {e}")
        logger.info(f"Downloaded: {target.name}")
        return target

    async def fetch(
        self, publisher: str, name: str, version: str, static_url: str = ""
    ) -> Path:
        """Asynchronously fetch one artifact and return its path."""
        return await asyncio.to_thread(
            self.fetch_sync, publisher, name, version, static_url
        )
