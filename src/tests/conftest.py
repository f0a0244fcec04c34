from __future__ import annotations

import io
import zipfile
from pathlib import Path

import pytest

from extsync.models import EditorHandle


def pytest_addoption(parser: pytest.Parser) -> None:
    parser.addoption(
        "--slow",
        action="store_true",
        default=False,
        help="run slow tests that talk to the real Marketplace",
    )
    parser.addoption(
        "--only-slow",
        action="store_true",
        default=False,
        help="run only tests marked as slow",
    )


def pytest_configure(config: pytest.Config) -> None:
    config.addinivalue_line("markers", "slow: marks tests as slow")


def pytest_collection_modifyitems(
    config: pytest.Config, items: list[pytest.Item]
) -> None:
    only_slow = bool(config.getoption("--only-slow"))
    run_slow = bool(config.getoption("--slow")) or only_slow

    if only_slow:
        selected = [item for item in items if "slow" in item.keywords]
        deselected = [item for item in items if "slow" not in item.keywords]
        if deselected:
            config.hook.pytest_deselected(items=deselected)
        items[:] = selected

    if run_slow:
        return

    skip_slow = pytest.mark.skip(reason="need --slow option to run")
    for item in items:
        if "slow" in item.keywords:
            item.add_marker(skip_slow)


def _make_vsix_bytes(extension_id: str = "publisher.name") -> bytes:
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as archive:
        archive.writestr("extension.vsixmanifest", f"<Identity Id='{extension_id}'/>")
        archive.writestr("extension/package.json", "{}")
    return buffer.getvalue()



@pytest.fixture
def vsix_bytes() -> bytes:
    return _make_vsix_bytes()


@pytest.fixture
def source_editor(tmp_path: Path) -> EditorHandle:
    return EditorHandle(
        binary="code-insiders",
        display_name="VS Code Insiders",
        extension_dirs=(tmp_path / "source-extensions",),
    )


@pytest.fixture
def destination_editor(tmp_path: Path) -> EditorHandle:
    return EditorHandle(
        binary="windsurf",
        display_name="Windsurf",
        extension_dirs=(tmp_path / "destination-extensions",),
    )
