from __future__ import annotations

import enum
from dataclasses import dataclass, field
from pathlib import Path

from extsync.exceptions import ExtsyncError, InvalidExtensionIdError


@dataclass(frozen=True)
class ExtensionId:
    publisher: str
    name: str

    @classmethod
    def parse(cls, value: str) -> ExtensionId:
        """Split ``publisher.name`` at the first dot."""
        text = value.strip()
        publisher, separator, name = text.partition(".")
        if not separator or not publisher or not name:
            raise InvalidExtensionIdError(f"Invalid extension identifier: {value!r}")
        return cls(publisher=publisher, name=name)

    @property
    def key(self) -> str:
        # Marketplace identifiers are case-insensitive
        return str(self).lower()

    def __str__(self) -> str:
        return f"{self.publisher}.{self.name}"


@dataclass(frozen=True)
class EditorHandle:
    """A resolved editor installation the core can talk to."""

    binary: str
    display_name: str = ""
    extension_dirs: tuple[Path, ...] = ()

    @property
    def label(self) -> str:
        return self.display_name or Path(self.binary).name


@dataclass(frozen=True)
class Inventory:
    editor: str
    extensions: tuple[ExtensionId, ...] = ()

    @classmethod
    def from_identifiers(
        cls, editor: str, identifiers: list[ExtensionId]
    ) -> Inventory:
        """Sort and de-duplicate a raw listing."""
        unique: dict[str, ExtensionId] = {}
        for extension_id in identifiers:
            unique.setdefault(extension_id.key, extension_id)
        return cls(
            editor=editor,
            extensions=tuple(unique[key] for key in sorted(unique)),
        )

    def keys(self) -> set[str]:
        return {extension_id.key for extension_id in self.extensions}

    def __contains__(self, extension_id: object) -> bool:
        if not isinstance(extension_id, ExtensionId):
            return False
        return extension_id.key in self.keys()

    def __len__(self) -> int:
        return len(self.extensions)


@dataclass(frozen=True)
class ResolvedVersion:
    extension_id: ExtensionId
    version: str
    # set only for pinned overrides that bypass the URL template
    static_url: str = ""
    pinned: bool = False


@dataclass(frozen=True)
class PinnedOverride:
    version: str
    static_url: str = ""


class OutcomeKind(str, enum.Enum):
    ALREADY_INSTALLED = "already_installed"
    INSTALLED_DIRECT = "installed_direct"
    INSTALLED_VIA_ARTIFACT = "installed_via_artifact"
    INSTALLED_AFTER_DEPENDENCY = "installed_after_dependency"
    FAILED = "failed"


@dataclass(frozen=True)
class InstallOutcome:
    extension_id: ExtensionId
    kind: OutcomeKind
    reason: str = ""
    error: ExtsyncError | None = None
    artifact_path: Path | None = None
    version: str = ""

    @property
    def succeeded(self) -> bool:
        return self.kind is not OutcomeKind.FAILED


@dataclass(frozen=True)
class DownloadOutcome:
    extension_id: ExtensionId
    artifact_path: Path | None = None
    version: str = ""
    error: ExtsyncError | None = None

    @property
    def succeeded(self) -> bool:
        return self.artifact_path is not None and self.error is None


@dataclass
class RunResult:
    source: Inventory
    destination: Inventory
    missing: list[ExtensionId] = field(default_factory=list)
    outcomes: list[InstallOutcome] = field(default_factory=list)
    unprocessed: list[ExtensionId] = field(default_factory=list)
    output_dir: Path | None = None
