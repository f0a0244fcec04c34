from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from extsync.exceptions import VersionNotFoundError

FLAG_INCLUDE_VERSIONS = 0x1
FLAG_INCLUDE_FILES = 0x2
FLAG_INCLUDE_CATEGORY_AND_TAGS = 0x4
FLAG_INCLUDE_SHARED_ACCOUNTS = 0x8
FLAG_INCLUDE_VERSION_PROPERTIES = 0x10
FLAG_EXCLUDE_NON_VALIDATED = 0x20
FLAG_INCLUDE_INSTALLATION_TARGETS = 0x40
FLAG_INCLUDE_ASSET_URI = 0x80
FLAG_INCLUDE_STATISTICS = 0x100
FLAG_INCLUDE_LATEST_VERSION_ONLY = 0x200
FLAG_UNPUBLISHED = 0x1000
FLAG_INCLUDE_NAME_CONFLICT_INFO = 0x8000

# filterType values understood by the gallery
FILTER_TYPE_TAG = 1
FILTER_TYPE_EXTENSION_ID = 4
FILTER_TYPE_CATEGORY = 5
FILTER_TYPE_EXTENSION_NAME = 7
FILTER_TYPE_TARGET = 8


def build_query_flags(
    include_versions: bool = False,
    include_files: bool = True,
    include_category_and_tags: bool = True,
    include_shared_accounts: bool = False,
    include_version_properties: bool = True,
    exclude_non_validated: bool = True,
    include_installation_targets: bool = False,
    include_asset_uri: bool = True,
    include_statistics: bool = True,
    include_latest_version_only: bool = True,
    unpublished: bool = False,
    include_name_conflict_info: bool = False,
) -> int:
    """Combine query flags; the defaults produce the well-known value 950."""
    flag_map = [
        (include_versions, FLAG_INCLUDE_VERSIONS),
        (include_files, FLAG_INCLUDE_FILES),
        (include_category_and_tags, FLAG_INCLUDE_CATEGORY_AND_TAGS),
        (include_shared_accounts, FLAG_INCLUDE_SHARED_ACCOUNTS),
        (include_version_properties, FLAG_INCLUDE_VERSION_PROPERTIES),
        (exclude_non_validated, FLAG_EXCLUDE_NON_VALIDATED),
        (include_installation_targets, FLAG_INCLUDE_INSTALLATION_TARGETS),
        (include_asset_uri, FLAG_INCLUDE_ASSET_URI),
        (include_statistics, FLAG_INCLUDE_STATISTICS),
        (include_latest_version_only, FLAG_INCLUDE_LATEST_VERSION_ONLY),
        (unpublished, FLAG_UNPUBLISHED),
        (include_name_conflict_info, FLAG_INCLUDE_NAME_CONFLICT_INFO),
    ]
    return sum(flag for enabled, flag in flag_map if enabled)


DEFAULT_QUERY_FLAGS = build_query_flags()


def build_extension_query_body(
    extension_id: str, flags: int = DEFAULT_QUERY_FLAGS
) -> dict[str, Any]:
    return {
        "filters": [
            {
                "criteria": [
                    {"filterType": FILTER_TYPE_EXTENSION_NAME, "value": extension_id},
                ],
            }
        ],
        "flags": flags,
    }


def build_query_headers(api_version: str, exclude_urls: bool = False) -> dict[str, str]:
    accept = f"application/json;api-version={api_version}"
    if exclude_urls:
        accept = f"{accept};excludeUrls=true"
    return {"Content-Type": "application/json", "Accept": accept}


def query_url(gallery_url: str) -> str:
    return f"{gallery_url.rstrip('/')}/extensionquery"


def package_url(gallery_url: str, publisher: str, name: str, version: str) -> str:
    return (
        f"{gallery_url.rstrip('/')}/publishers/{publisher}"
        f"/vsextensions/{name}/{version}/vspackage"
    )


@dataclass(frozen=True)
class GalleryVersion:
    version: str

    @classmethod
    def from_payload(cls, payload: object) -> GalleryVersion | None:
        if not isinstance(payload, dict):
            return None
        version = payload.get("version")
        if not isinstance(version, str) or not version.strip():
            return None
        return cls(version=version.strip())


@dataclass(frozen=True)
class GalleryExtension:
    extension_name: str
    publisher_name: str
    versions: tuple[GalleryVersion | None, ...]

    @classmethod
    def from_payload(cls, payload: object) -> GalleryExtension | None:
        if not isinstance(payload, dict):
            return None
        publisher = payload.get("publisher")
        raw_versions = payload.get("versions")
        return cls(
            extension_name=str(payload.get("extensionName", "")),
            publisher_name=(
                str(publisher.get("publisherName", ""))
                if isinstance(publisher, dict)
                else ""
            ),
            versions=(
                tuple(GalleryVersion.from_payload(v) for v in raw_versions)
                if isinstance(raw_versions, list)
                else ()
            ),
        )


@dataclass(frozen=True)
class GalleryResult:
    extensions: tuple[GalleryExtension | None, ...]

    @classmethod
    def from_payload(cls, payload: object) -> GalleryResult | None:
        if not isinstance(payload, dict):
            return None
        raw_extensions = payload.get("extensions")
        if not isinstance(raw_extensions, list):
            return cls(extensions=())
        return cls(
            extensions=tuple(GalleryExtension.from_payload(e) for e in raw_extensions)
        )


@dataclass(frozen=True)
class GalleryQueryResponse:
    results: tuple[GalleryResult | None, ...]

    @classmethod
    def from_payload(cls, payload: object) -> GalleryQueryResponse:
        raw_results = payload.get("results") if isinstance(payload, dict) else None
        if not isinstance(raw_results, list):
            return cls(results=())
        return cls(results=tuple(GalleryResult.from_payload(r) for r in raw_results))

    def latest_version(self, extension_id: str) -> str:
        """Return ``results[0].extensions[0].versions[0].version``.

        The gallery lists versions newest first.
        """
        if not self.results or self.results[0] is None:
            raise VersionNotFoundError(
                f"Marketplace returned no results for {extension_id}"
            )
        result = self.results[0]
        if not result.extensions or result.extensions[0] is None:
            raise VersionNotFoundError(
                f"Extension {extension_id} not found on the Marketplace"
            )
        extension = result.extensions[0]
        if not extension.versions or extension.versions[0] is None:
            raise VersionNotFoundError(f"No published versions for {extension_id}")
        return extension.versions[0].version
