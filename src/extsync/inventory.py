from __future__ import annotations

import logging
import re
import shutil
import subprocess

from extsync.exceptions import CollectorError, InvalidExtensionIdError
from extsync.install_engine import RunCommand
from extsync.models import EditorHandle, ExtensionId, Inventory

logger: logging.Logger = logging.getLogger(__name__)

LIST_TIMEOUT_SECONDS = 120

# `publisher.name-1.2.3`, `publisher.name-2024.1.0-darwin-arm64`
VERSION_SUFFIX_PATTERN = re.compile(r"-\d+(?:\.\d+)+(?:[-+][\w.+-]*)?$")
IDENTIFIER_PATTERN = re.compile(r"^[^.\s]+\.[^\s]+$")


def normalize_folder_name(folder_name: str) -> str | None:
    """Turn an extension storage folder name into an identifier string."""
    # dot folders and `__`-marked folders left behind by interrupted installs
    if folder_name.startswith(".") or "__" in folder_name:
        return None
    stripped = VERSION_SUFFIX_PATTERN.sub("", folder_name)
    if not IDENTIFIER_PATTERN.match(stripped):
        return None
    return stripped


def parse_listing(output: str) -> list[ExtensionId]:
    """Parse `--list-extensions` output, one identifier per line."""
    identifiers: list[ExtensionId] = []
    for line in output.splitlines():
        # some forks print `publisher.name@version`
        text = line.strip().split("@", 1)[0]
        if not text:
            continue
        try:
            identifiers.append(ExtensionId.parse(text))
        except InvalidExtensionIdError:
            logger.debug(f"Ignoring unexpected listing line: {line!r}")
    return identifiers


class InventoryCollector(object):
    """Obtain the set of installed extensions of one editor."""

    def __init__(self, run_command: RunCommand = subprocess.run) -> None:
        self.run_command = run_command

    def supports_flag(self, binary: str, flag: str) -> bool:
        """Probe `<bin> --help` for *flag*."""
        try:
            process = self.run_command(
                [binary, "--help"],
                capture_output=True,
                check=False,
                text=True,
                timeout=LIST_TIMEOUT_SECONDS,
            )
        except (OSError, subprocess.TimeoutExpired):
            return False
        help_text = f"{process.stdout}\n{process.stderr}".lower()
        return flag.lower() in help_text

    def list_via_cli(self, editor: EditorHandle) -> list[ExtensionId] | None:
        """Return the CLI listing, or ``None`` when the CLI is unusable."""
        if shutil.which(editor.binary) is None:
            logger.debug(f"{editor.binary} not found on $PATH")
            return None
        try:
            process = self.run_command(
                [editor.binary, "--list-extensions"],
                capture_output=True,
                check=False,
                text=True,
                timeout=LIST_TIMEOUT_SECONDS,
            )
        except (OSError, subprocess.TimeoutExpired) as e:
            logger.warning(f"Listing extensions with {editor.binary} failed: {e}")
            return None

        if process.returncode != 0:
            if not self.supports_flag(editor.binary, "--list-extensions"):
                logger.info(f"{editor.binary} does not support --list-extensions")
            else:
                logger.warning(
                    f"{editor.binary} --list-extensions exited with "
                    f"{process.returncode}: {process.stderr.strip()}"
                )
            return None
        return parse_listing(process.stdout)

    def list_via_directories(self, editor: EditorHandle) -> list[ExtensionId] | None:
        """Scan extension storage directories, merging all that exist."""
        identifiers: list[ExtensionId] = []
        found_directory = False
        for directory in editor.extension_dirs:
            if not directory.is_dir():
                continue
            found_directory = True
            logger.debug(f"Scanning {directory}")
            for entry in directory.iterdir():
                if not entry.is_dir():
                    continue
                normalized = normalize_folder_name(entry.name)
                if normalized:
                    identifiers.append(ExtensionId.parse(normalized))
        if not found_directory or not identifiers:
            return None
        return identifiers

    def collect(self, editor: EditorHandle) -> Inventory:
        identifiers = self.list_via_cli(editor)
        if identifiers is None:
            logger.info(
                f"Falling back to scanning extension folders for {editor.label}"
            )
            identifiers = self.list_via_directories(editor)
        if identifiers is None:
            searched = ", ".join(f"{d}" for d in editor.extension_dirs) or "none"
            raise CollectorError(
                f"Could not list extensions for {editor.label}: CLI "
                f"{editor.binary!r} unavailable and no extension folders found "
                f"(searched: {searched})"
            )
        inventory = Inventory.from_identifiers(editor.label, identifiers)
        logger.info(f"{editor.label}: {len(inventory)} extensions found")
        return inventory


def compute_missing(source: Inventory, destination: Inventory) -> list[ExtensionId]:
    """Return extensions in *source* absent from *destination*.

    Both inventories are sorted by key, so this is a single merge pass in
    the manner of `comm -23`. Output keeps source order.
    """
    missing: list[ExtensionId] = []
    destination_keys = [e.key for e in destination.extensions]
    position = 0
    for extension_id in source.extensions:
        key = extension_id.key
        while position < len(destination_keys) and destination_keys[position] < key:
            position += 1
        if position < len(destination_keys) and destination_keys[position] == key:
            continue
        missing.append(extension_id)
    return missing
