from __future__ import annotations

import logging
import os
import shutil
from pathlib import Path

from extsync.editor_paths import (
    KNOWN_EDITORS,
    KnownEditor,
    find_known_editor,
    resolve_extension_dirs,
)
from extsync.models import EditorHandle

logger: logging.Logger = logging.getLogger(__name__)


def handle_for_binary(binary: str) -> EditorHandle:
    """Build an editor handle, attaching storage dirs for known editors."""
    known = find_known_editor(binary)
    if known is None:
        return EditorHandle(binary=binary)
    return EditorHandle(
        binary=binary,
        display_name=known.display_name,
        extension_dirs=resolve_extension_dirs(known),
    )


class EditorManager(object):
    """Find editor CLIs and make them reachable for the current process."""

    editors: tuple[KnownEditor, ...] = KNOWN_EDITORS

    def __init__(self, editors: tuple[KnownEditor, ...] | None = None) -> None:
        if editors is not None:
            self.editors = editors

    def expose_editor_binaries(self) -> list[Path]:
        """Prepend existing app-bundle CLI directories to ``$PATH``."""
        exposed: list[Path] = []
        for editor in self.editors:
            if editor.app_cli_path.is_file():
                exposed.append(editor.app_cli_path.parent)

        if not exposed:
            return exposed

        current_path = os.environ.get("PATH", "")
        # the PATH may contain duplicate entries, drop them while reordering
        entries = list(dict.fromkeys(p for p in current_path.split(os.pathsep) if p))
        for directory in reversed(exposed):
            entry = f"{directory}"
            if entry in entries:
                entries.remove(entry)
            entries.insert(0, entry)
            logger.debug(f"Adding {entry} to $PATH")
        os.environ["PATH"] = os.pathsep.join(entries)
        return exposed

    def discover(self) -> list[EditorHandle]:
        """Return handles for every known editor whose CLI is on ``$PATH``."""
        available: list[EditorHandle] = []
        for editor in self.editors:
            for binary in editor.binaries:
                if shutil.which(binary):
                    available.append(
                        EditorHandle(
                            binary=binary,
                            display_name=editor.display_name,
                            extension_dirs=resolve_extension_dirs(editor),
                        )
                    )
                    break
        return available


def select_editors(
    available: list[EditorHandle],
    source_choice: str = "",
    destination_choice: str = "",
) -> tuple[EditorHandle, EditorHandle]:
    """Map 1-based menu choices to a ``(source, destination)`` pair.

    An empty choice picks the default: the first editor for the source and
    the one following it for the destination. Destination choices index the
    list of editors with the source removed. A single available editor is
    used as both source and destination.
    """
    if not available:
        raise ValueError("No supported editors found")
    if len(available) == 1:
        return available[0], available[0]

    source_index = _parse_choice(source_choice or "1", len(available))
    source = available[source_index]

    remaining = [e for index, e in enumerate(available) if index != source_index]
    if destination_choice:
        destination = remaining[_parse_choice(destination_choice, len(remaining))]
    else:
        destination = available[(source_index + 1) % len(available)]
    return source, destination


def _parse_choice(choice: str, count: int) -> int:
    try:
        index = int(choice.strip())
    except ValueError:
        raise ValueError(f"Invalid selection: {choice!r}") from None
    if not 1 <= index <= count:
        raise ValueError(f"Selection must be between 1 and {count}, got {index}")
    return index - 1
