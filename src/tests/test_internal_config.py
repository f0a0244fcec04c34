from __future__ import annotations

from pathlib import Path

import pytest

from extsync.exceptions import InvalidExtensionIdError
from extsync.internal_config import (
    DEFAULT_GALLERY_URL,
    DEFAULT_MAX_DEP_DEPTH,
    PINNED_OVERRIDES,
    SyncSettings,
    _get_package_version,
    load_pinned_overrides,
)

ENVIRONMENT_VARIABLES = (
    "EXTSYNC_SOURCE_BIN",
    "EXTSYNC_DEST_BIN",
    "EXTSYNC_MARKETPLACE_URL",
    "EXTSYNC_MAX_DEP_DEPTH",
    "EXTSYNC_PARALLELISM",
    "EXTSYNC_VSIX_DIR",
    "EXTSYNC_CACHE_DIR",
    "EXTSYNC_PINS_FILE",
)


@pytest.fixture
def _clean_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in ENVIRONMENT_VARIABLES:
        monkeypatch.delenv(name, raising=False)


def test_settings_defaults(_clean_environment: None) -> None:
    settings = SyncSettings.from_environment()

    assert settings.gallery_url == DEFAULT_GALLERY_URL
    assert settings.max_dep_depth == DEFAULT_MAX_DEP_DEPTH
    assert settings.parallelism == 1
    assert settings.cache_dir is None
    assert settings.pins_file is None


def test_settings_read_environment_overrides(
    _clean_environment: None, monkeypatch: pytest.MonkeyPatch, tmp_path: Path
) -> None:
    monkeypatch.setenv("EXTSYNC_SOURCE_BIN", "code-insiders")
    monkeypatch.setenv("EXTSYNC_DEST_BIN", "surf")
    monkeypatch.setenv("EXTSYNC_MARKETPLACE_URL", "https://mirror.example/gallery/")
    monkeypatch.setenv("EXTSYNC_MAX_DEP_DEPTH", "5")
    monkeypatch.setenv("EXTSYNC_PARALLELISM", "4")
    monkeypatch.setenv("EXTSYNC_VSIX_DIR", str(tmp_path / "vsix"))
    monkeypatch.setenv("EXTSYNC_CACHE_DIR", str(tmp_path / "cache"))

    settings = SyncSettings.from_environment()

    assert settings.source_bin == "code-insiders"
    assert settings.destination_bin == "surf"
    assert settings.gallery_url == "https://mirror.example/gallery"
    assert settings.max_dep_depth == 5
    assert settings.parallelism == 4
    assert settings.vsix_dir == (tmp_path / "vsix").resolve()
    assert settings.cache_dir == (tmp_path / "cache").resolve()


@pytest.mark.parametrize(
    ("name", "value"),
    [
        ("EXTSYNC_MAX_DEP_DEPTH", "three"),
        ("EXTSYNC_MAX_DEP_DEPTH", "-1"),
        ("EXTSYNC_PARALLELISM", "0"),
    ],
)
def test_settings_reject_invalid_integers(
    _clean_environment: None, monkeypatch: pytest.MonkeyPatch, name: str, value: str
) -> None:
    monkeypatch.setenv(name, value)

    with pytest.raises(ValueError, match=name):
        SyncSettings.from_environment()


def test_load_pinned_overrides_without_file_returns_builtin_table() -> None:
    pins = load_pinned_overrides()

    assert pins == PINNED_OVERRIDES
    assert pins is not PINNED_OVERRIDES


def test_load_pinned_overrides_merges_json5_file(tmp_path: Path) -> None:
    pins_file = tmp_path / "pins.json5"
    pins_file.write_text(
        """
        {
          // keep the old formatter until it supports our setup
          "Publisher.Formatter": "1.2.3",
          "adamwojcikit.pnp-powershell-extension": "3.0.50",
          "corp.internal": {url: "https://files.example/internal.vsix"},
        }
        """
    )

    pins = load_pinned_overrides(pins_file)

    assert pins["publisher.formatter"].version == "1.2.3"
    assert pins["adamwojcikit.pnp-powershell-extension"].version == "3.0.50"
    assert pins["corp.internal"].version == "latest"
    assert pins["corp.internal"].static_url == "https://files.example/internal.vsix"
    assert "openai.openai-chatgpt-adhoc" in pins


@pytest.mark.parametrize(
    ("content", "error"),
    [
        ("[]", ValueError),
        ('{"publisher.name": 3}', ValueError),
        ('{"publisher.name": {}}', ValueError),
        ('{"nodot": "1.0.0"}', InvalidExtensionIdError),
    ],
)
def test_load_pinned_overrides_rejects_bad_entries(
    tmp_path: Path, content: str, error: type[Exception]
) -> None:
    pins_file = tmp_path / "pins.json5"
    pins_file.write_text(content)

    with pytest.raises(error):
        load_pinned_overrides(pins_file)


def test_get_package_version_returns_zero_when_package_not_found() -> None:
    assert _get_package_version("this-package-does-not-exist-xyz") == "0"
