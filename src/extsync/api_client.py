from __future__ import annotations

import asyncio
import logging
from pathlib import Path

import requests
from requests.adapters import HTTPAdapter, Retry

from extsync.exceptions import VersionNotFoundError
from extsync.install_engine import stream_download
from extsync.internal_config import (
    DEFAULT_GALLERY_URL,
    DEFAULT_USER_AGENT,
    HTTP_REQUEST_TIMEOUT_SECONDS,
    HTTP_RETRY_ALLOWED_METHODS,
    HTTP_RETRY_BACKOFF_FACTOR,
    HTTP_RETRY_STATUS_FORCELIST,
    HTTP_RETRY_TOTAL,
    HTTP_STREAM_CONNECT_TIMEOUT_SECONDS,
    HTTP_STREAM_READ_TIMEOUT_SECONDS,
    MARKETPLACE_API_VERSION,
)
from extsync.marketplace import (
    GalleryQueryResponse,
    build_extension_query_body,
    build_query_headers,
    query_url,
)

logger: logging.Logger = logging.getLogger(__name__)


class MarketplaceClient(object):
    """Talk to the Visual Studio Marketplace gallery API."""

    session: requests.Session
    gallery_url: str = DEFAULT_GALLERY_URL

    def __init__(self, gallery_url: str = DEFAULT_GALLERY_URL) -> None:
        retry_strategy = Retry(
            total=HTTP_RETRY_TOTAL,
            backoff_factor=HTTP_RETRY_BACKOFF_FACTOR,
            status_forcelist=HTTP_RETRY_STATUS_FORCELIST,
            allowed_methods=HTTP_RETRY_ALLOWED_METHODS,
        )
        adapter = HTTPAdapter(max_retries=retry_strategy)
        self.session = requests.Session()
        self.session.mount("https://", adapter)
        self.session.mount("http://", adapter)
        self.session.headers.update({"User-Agent": DEFAULT_USER_AGENT})
        self.gallery_url = gallery_url.rstrip("/")

    def _query_extension_sync(self, extension_id: str) -> GalleryQueryResponse:
        logger.debug(f"Querying the Marketplace for {extension_id}")
        r = self.session.post(
            query_url(self.gallery_url),
            json=build_extension_query_body(extension_id),
            headers=build_query_headers(MARKETPLACE_API_VERSION),
            timeout=HTTP_REQUEST_TIMEOUT_SECONDS,
        )
        r.raise_for_status()
        return GalleryQueryResponse.from_payload(r.json())

    def _get_latest_version_sync(self, extension_id: str) -> str:
        try:
            response = self._query_extension_sync(extension_id)
        except requests.RequestException as e:
            raise VersionNotFoundError(
                f"Marketplace query for {extension_id} failed: {e}"
            ) from e
        except ValueError as e:
            # r.json() on a non-JSON body
            raise VersionNotFoundError(
                f"Marketplace returned malformed data for {extension_id}"
            ) from e
        return response.latest_version(extension_id)

    async def get_latest_version(self, extension_id: str) -> str:
        """Asynchronously fetch the newest published version of an extension."""
        return await asyncio.to_thread(self._get_latest_version_sync, extension_id)

    def download_sync(self, url: str, file_path: Path) -> Path:
        return stream_download(
            session=self.session,
            url=url,
            file_path=file_path,
            headers={"User-Agent": DEFAULT_USER_AGENT},
            timeout=(
                HTTP_STREAM_CONNECT_TIMEOUT_SECONDS,
                HTTP_STREAM_READ_TIMEOUT_SECONDS,
            ),
        )
