from __future__ import annotations

import os
import platform
from dataclasses import dataclass
from importlib.metadata import PackageNotFoundError
from importlib.metadata import version as _pkg_version
from pathlib import Path

import json5

from extsync.models import ExtensionId, PinnedOverride


def _get_package_version(name: str) -> str:
    """Return the installed version of *name*, or ``"0"`` if not found."""
    try:
        return _pkg_version(name)
    except PackageNotFoundError:
        return "0"


_extsync_version = _get_package_version("extsync")

DEFAULT_USER_AGENT = (
    f"extsync/{_extsync_version}"
    f" ({platform.system()}; {platform.machine()}; compatible)"
)

DEFAULT_GALLERY_URL = "https://marketplace.visualstudio.com/_apis/public/gallery"
MARKETPLACE_API_VERSION = "7.1-preview.1"

HTTP_REQUEST_TIMEOUT_SECONDS = 30
HTTP_STREAM_CONNECT_TIMEOUT_SECONDS = 10
HTTP_STREAM_READ_TIMEOUT_SECONDS = 120

HTTP_RETRY_TOTAL = 3
HTTP_RETRY_BACKOFF_FACTOR = 1
HTTP_RETRY_STATUS_FORCELIST = [429, 500, 502, 503, 504]
HTTP_RETRY_ALLOWED_METHODS = ["HEAD", "GET", "OPTIONS", "POST"]

# mirrors `curl --retry 3 --retry-delay 1`
DOWNLOAD_RETRIES = 3
DOWNLOAD_RETRY_DELAY_SECONDS = 1.0

INSTALL_TIMEOUT_SECONDS = 600

DEFAULT_MAX_DEP_DEPTH = 3
DEFAULT_PARALLELISM = 1
DEFAULT_VSIX_DIR = Path.home().joinpath(".cache/extsync/vsix")

PINNED_OVERRIDES: dict[str, PinnedOverride] = {
    "adamwojcikit.pnp-powershell-extension": PinnedOverride(version="3.0.42"),
    "ms-azuretools.vscode-azure-mcp-server": PinnedOverride(version="0.5.5"),
    "openai.openai-chatgpt-adhoc": PinnedOverride(
        version="latest",
        static_url="https://persistent.oaistatic.com/pair-with-ai/openai-chatgpt-latest.vsix",
    ),
}


def _env_int(name: str, default: int, minimum: int = 0) -> int:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from None
    if value < minimum:
        raise ValueError(f"{name} must be >= {minimum}, got {value}")
    return value


def _env_path(name: str) -> Path | None:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return None
    return Path(raw).expanduser().resolve()


@dataclass(frozen=True)
class SyncSettings:
    source_bin: str = ""
    destination_bin: str = ""
    gallery_url: str = DEFAULT_GALLERY_URL
    max_dep_depth: int = DEFAULT_MAX_DEP_DEPTH
    parallelism: int = DEFAULT_PARALLELISM
    vsix_dir: Path = DEFAULT_VSIX_DIR
    cache_dir: Path | None = None
    pins_file: Path | None = None

    @classmethod
    def from_environment(cls) -> SyncSettings:
        """Read ``EXTSYNC_*`` overrides from the process environment."""
        return cls(
            source_bin=os.environ.get("EXTSYNC_SOURCE_BIN", "").strip(),
            destination_bin=os.environ.get("EXTSYNC_DEST_BIN", "").strip(),
            gallery_url=(
                os.environ.get("EXTSYNC_MARKETPLACE_URL", "").strip().rstrip("/")
                or DEFAULT_GALLERY_URL
            ),
            max_dep_depth=_env_int("EXTSYNC_MAX_DEP_DEPTH", DEFAULT_MAX_DEP_DEPTH),
            parallelism=_env_int("EXTSYNC_PARALLELISM", DEFAULT_PARALLELISM, 1),
            vsix_dir=_env_path("EXTSYNC_VSIX_DIR") or DEFAULT_VSIX_DIR,
            cache_dir=_env_path("EXTSYNC_CACHE_DIR"),
            pins_file=_env_path("EXTSYNC_PINS_FILE"),
        )


def load_pinned_overrides(pins_file: Path | None = None) -> dict[str, PinnedOverride]:
    """Return the built-in pin table, extended by an optional JSON5 file.

    The file maps ``publisher.name`` either to a version string or to an
    object with ``version`` and/or ``url`` keys. Comments and trailing
    commas are allowed.
    """
    pins = dict(PINNED_OVERRIDES)
    if pins_file is None:
        return pins

    data = json5.loads(pins_file.read_text(encoding="utf-8"))
    if not isinstance(data, dict):
        raise ValueError(f"Pinned overrides file must contain an object: {pins_file}")

    for raw_id, entry in data.items():
        extension_id = ExtensionId.parse(str(raw_id))
        if isinstance(entry, str):
            override = PinnedOverride(version=entry.strip())
        elif isinstance(entry, dict):
            url = str(entry.get("url", "")).strip()
            override = PinnedOverride(
                version=str(entry.get("version", "latest" if url else "")).strip(),
                static_url=url,
            )
        else:
            raise ValueError(f"Unsupported pin entry for {raw_id}: {entry!r}")
        if not override.version:
            raise ValueError(f"Pin entry for {raw_id} has no version")
        pins[extension_id.key] = override
    return pins
