from __future__ import annotations

import os
import platform
from dataclasses import dataclass
from pathlib import Path


@dataclass(frozen=True)
class KnownEditor:
    key: str
    display_name: str
    binaries: tuple[str, ...]
    app_cli_path: Path
    data_dirs: tuple[str, ...]
    support_dirs: tuple[str, ...] = ()


KNOWN_EDITORS: tuple[KnownEditor, ...] = (
    KnownEditor(
        key="vscode",
        display_name="VS Code",
        binaries=("code", "vscode"),
        app_cli_path=Path(
            "/Applications/Visual Studio Code.app/Contents/Resources/app/bin/code"
        ),
        data_dirs=(".vscode",),
        support_dirs=("Code",),
    ),
    KnownEditor(
        key="vscode-insiders",
        display_name="VS Code Insiders",
        binaries=("code-insiders", "vscode-insiders"),
        app_cli_path=Path(
            "/Applications/Visual Studio Code - Insiders.app/Contents/Resources/app/bin/code"
        ),
        data_dirs=(".vscode-insiders",),
        support_dirs=("Code - Insiders",),
    ),
    KnownEditor(
        key="cursor",
        display_name="Cursor",
        binaries=("cursor",),
        app_cli_path=Path("/Applications/Cursor.app/Contents/Resources/app/bin/cursor"),
        data_dirs=(".cursor",),
        support_dirs=("Cursor",),
    ),
    KnownEditor(
        key="windsurf",
        display_name="Windsurf",
        binaries=("windsurf", "surf"),
        app_cli_path=Path(
            "/Applications/Windsurf.app/Contents/Resources/app/bin/windsurf"
        ),
        data_dirs=(".windsurf",),
        support_dirs=("Windsurf", "windsurf", "Codeium Windsurf"),
    ),
)


def find_known_editor(binary: str) -> KnownEditor | None:
    """Match a binary name or path against the known editor table."""
    name = Path(binary).name.lower()
    for editor in KNOWN_EDITORS:
        if name in editor.binaries or name == editor.key:
            return editor
    return None


def _support_root() -> Path:
    if platform.system().lower() == "darwin":
        return Path.home().joinpath("Library/Application Support")
    return Path(
        os.environ.get("XDG_CONFIG_HOME", "") or Path.home().joinpath(".config")
    )


def resolve_extension_dirs(editor: KnownEditor) -> tuple[Path, ...]:
    """Return every directory where *editor* may keep installed extensions.

    ``EXTSYNC_<KEY>_EXTENSIONS_DIR`` replaces the built-in candidates.
    """
    env_name = f"EXTSYNC_{editor.key.upper().replace('-', '_')}_EXTENSIONS_DIR"
    explicit_dir = os.environ.get(env_name, "").strip()
    if explicit_dir:
        return (Path(explicit_dir).expanduser().resolve(),)

    home = Path.home()
    candidates = [home.joinpath(d, "extensions") for d in editor.data_dirs]
    support_root = _support_root()
    candidates.extend(support_root.joinpath(d, "extensions") for d in editor.support_dirs)
    return tuple(candidates)
