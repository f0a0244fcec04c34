from __future__ import annotations

import asyncio
from pathlib import Path
from types import SimpleNamespace

import pytest
import requests

from extsync import marketplace
from extsync.api_client import MarketplaceClient
from extsync.exceptions import VersionNotFoundError
from extsync.marketplace import GalleryQueryResponse


def _payload(*versions: str) -> dict:
    return {
        "results": [
            {
                "extensions": [
                    {
                        "extensionName": "pnp-powershell-extension",
                        "publisher": {"publisherName": "adamwojcikit"},
                        "versions": [{"version": v} for v in versions],
                    }
                ]
            }
        ]
    }


class _Response:
    def __init__(self, payload: object, status_error: Exception | None = None) -> None:
        self._payload = payload
        self._status_error = status_error

    def raise_for_status(self) -> None:
        if self._status_error is not None:
            raise self._status_error

    def json(self) -> object:
        if isinstance(self._payload, Exception):
            raise self._payload
        return self._payload


def test_default_query_flags_match_well_known_value() -> None:
    assert marketplace.DEFAULT_QUERY_FLAGS == 950
    assert marketplace.build_query_flags(
        include_files=False,
        include_category_and_tags=False,
        include_version_properties=False,
        exclude_non_validated=False,
        include_asset_uri=False,
        include_statistics=False,
        include_latest_version_only=False,
    ) == 0
    assert marketplace.build_query_flags(include_versions=True) == 951


def test_query_body_selects_exact_extension_name() -> None:
    assert marketplace.build_extension_query_body("publisher.name") == {
        "filters": [{"criteria": [{"filterType": 7, "value": "publisher.name"}]}],
        "flags": 950,
    }


def test_query_headers_support_exclude_urls_variant() -> None:
    headers = marketplace.build_query_headers("7.1-preview.1")
    assert headers == {
        "Content-Type": "application/json",
        "Accept": "application/json;api-version=7.1-preview.1",
    }
    assert marketplace.build_query_headers("7.1-preview.1", exclude_urls=True)[
        "Accept"
    ].endswith(";excludeUrls=true")


def test_url_templates() -> None:
    base = "https://marketplace.visualstudio.com/_apis/public/gallery/"

    assert marketplace.query_url(base) == f"{base}extensionquery"
    assert marketplace.package_url(base, "ms-python", "python", "2024.1.0") == (
        "https://marketplace.visualstudio.com/_apis/public/gallery/publishers/"
        "ms-python/vsextensions/python/2024.1.0/vspackage"
    )


def test_latest_version_takes_first_entry() -> None:
    response = GalleryQueryResponse.from_payload(_payload("3.0.50", "3.0.42"))

    assert response.latest_version("adamwojcikit.pnp-powershell-extension") == "3.0.50"


@pytest.mark.parametrize(
    ("payload", "message"),
    [
        ([], "no results"),
        ({}, "no results"),
        ({"results": []}, "no results"),
        ({"results": ["invalid"]}, "no results"),
        ({"results": [{"extensions": "invalid"}]}, "not found"),
        ({"results": [{"extensions": []}]}, "not found"),
        ({"results": [{"extensions": [None]}]}, "not found"),
        ({"results": [{"extensions": [{"versions": []}]}]}, "No published versions"),
        ({"results": [{"extensions": [{"versions": [{"version": ""}]}]}]}, "No published"),
        ({"results": [{"extensions": [{"versions": [{}]}]}]}, "No published versions"),
    ],
)
def test_latest_version_reports_first_missing_level(
    payload: object, message: str
) -> None:
    response = GalleryQueryResponse.from_payload(payload)

    with pytest.raises(VersionNotFoundError, match=message):
        response.latest_version("publisher.name")


def test_init_creates_session_with_http_adapters() -> None:
    client = MarketplaceClient(gallery_url="https://gallery.example/api/")

    assert "https://" in client.session.adapters
    assert "http://" in client.session.adapters
    retry = client.session.adapters["https://"].max_retries
    assert "POST" in retry.allowed_methods
    assert client.gallery_url == "https://gallery.example/api"
    assert client.session.headers["User-Agent"].startswith("extsync/")


def test_get_latest_version_posts_query() -> None:
    client = MarketplaceClient.__new__(MarketplaceClient)
    client.gallery_url = "https://gallery.example/api"
    calls: list[dict] = []

    def _post(url: str, json: dict, headers: dict, timeout: int) -> _Response:
        calls.append({"url": url, "json": json, "headers": headers})
        assert timeout == 30
        return _Response(_payload("1.2.3", "1.2.2"))

    client.session = SimpleNamespace(post=_post)

    version = asyncio.run(client.get_latest_version("publisher.name"))

    assert version == "1.2.3"
    assert calls[0]["url"] == "https://gallery.example/api/extensionquery"
    assert calls[0]["headers"]["Accept"].endswith("api-version=7.1-preview.1")
    assert calls[0]["json"]["filters"][0]["criteria"][0]["value"] == "publisher.name"


@pytest.mark.parametrize(
    "response",
    [
        _Response({}, status_error=requests.HTTPError("503 Server Error")),
        _Response(ValueError("Expecting value")),
        _Response({"results": [{"extensions": []}]}),
    ],
)
def test_get_latest_version_raises_typed_error(response: _Response) -> None:
    client = MarketplaceClient.__new__(MarketplaceClient)
    client.gallery_url = "https://gallery.example/api"
    client.session = SimpleNamespace(post=lambda *_args, **_kwargs: response)

    with pytest.raises(VersionNotFoundError):
        asyncio.run(client.get_latest_version("publisher.name"))


def test_get_latest_version_wraps_network_errors() -> None:
    client = MarketplaceClient.__new__(MarketplaceClient)
    client.gallery_url = "https://gallery.example/api"

    def _post(*_args, **_kwargs):
        raise requests.ConnectionError("connection refused")

    client.session = SimpleNamespace(post=_post)

    with pytest.raises(VersionNotFoundError, match="connection refused"):
        asyncio.run(client.get_latest_version("publisher.name"))


def test_download_sync_streams_to_file(tmp_path: Path, vsix_bytes: bytes) -> None:
    client = MarketplaceClient.__new__(MarketplaceClient)
    calls: list[dict] = []

    class _StreamResponse:
        def raise_for_status(self) -> None:
            return None

        def iter_content(self, chunk_size: int):
            assert chunk_size == 8192
            yield vsix_bytes[:10]
            yield b""
            yield vsix_bytes[10:]

    def _get(url: str, *, stream: bool, headers: dict, timeout: tuple) -> _StreamResponse:
        calls.append({"url": url, "stream": stream, "timeout": timeout})
        return _StreamResponse()

    client.session = SimpleNamespace(get=_get)
    target = tmp_path / "download.tmp"

    assert client.download_sync("https://download/pkg", target) == target
    assert target.read_bytes() == vsix_bytes
    assert calls == [
        {"url": "https://download/pkg", "stream": True, "timeout": (10, 120)}
    ]


@pytest.mark.slow
def test_real_marketplace_returns_a_version() -> None:
    client = MarketplaceClient()

    version = asyncio.run(client.get_latest_version("ms-python.python"))

    assert version[0].isdigit()
