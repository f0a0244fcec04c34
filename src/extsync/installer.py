from __future__ import annotations

import asyncio
import logging
import re
from pathlib import Path
from typing import Awaitable, Callable

from extsync.artifacts import ArtifactCache
from extsync.exceptions import (
    DependencyUnresolved,
    ExtsyncError,
    InstallRejected,
    InvalidExtensionIdError,
    MaxDepthExceeded,
)
from extsync.install_engine import run_code_cli_install
from extsync.internal_config import DEFAULT_MAX_DEP_DEPTH, INSTALL_TIMEOUT_SECONDS
from extsync.models import (
    EditorHandle,
    ExtensionId,
    InstallOutcome,
    OutcomeKind,
    ResolvedVersion,
)
from extsync.version_resolver import VersionResolver

logger: logging.Logger = logging.getLogger(__name__)

# Cannot install 'a.b' extension because it depends on an unknown 'foo.bar' extension.
MISSING_DEPENDENCY_PATTERN = re.compile(r"unknown '([^']+)'")

InstallCommand = Callable[[str, bool], Awaitable[str]]
ListInstalled = Callable[[], Awaitable[set[str]]]


def parse_missing_dependency(error_text: str) -> ExtensionId | None:
    """Extract the dependency named by an ``unknown '<publisher.name>'`` error."""
    match = MISSING_DEPENDENCY_PATTERN.search(error_text)
    if match is None:
        return None
    try:
        return ExtensionId.parse(match.group(1))
    except InvalidExtensionIdError:
        return None


def is_builtin_dependency(extension_id: ExtensionId) -> bool:
    """Built-in `vscode.*` extensions are never published on the Marketplace."""
    return extension_id.publisher.lower() == "vscode"


def _error_text(error: ExtsyncError) -> str:
    if isinstance(error, InstallRejected) and error.output:
        return error.output
    return f"{error}"


class FallbackInstaller(object):
    """Install an extension through progressively more manual paths.

    1. skip if the destination already has it
    2. `--install-extension <id>`
    3. on an unknown-dependency error, install the dependency (bounded
       depth) and retry step 2 once
    4. resolve a version, download the VSIX and install from the file
    5. resolve again ignoring pins and retry the file install once
    """

    def __init__(
        self,
        destination: EditorHandle,
        resolver: VersionResolver,
        artifacts: ArtifactCache,
        list_installed: ListInstalled,
        max_depth: int = DEFAULT_MAX_DEP_DEPTH,
        install_command: InstallCommand | None = None,
    ) -> None:
        self.destination = destination
        self.resolver = resolver
        self.artifacts = artifacts
        self.list_installed = list_installed
        self.max_depth = max_depth
        self.install_command = install_command or self._run_install
        self._installed: set[str] | None = None

    async def _run_install(self, target: str, force: bool) -> str:
        return await asyncio.to_thread(
            lambda: run_code_cli_install(
                code_binary=self.destination.binary,
                target=target,
                force=force,
                timeout=INSTALL_TIMEOUT_SECONDS,
            )
        )

    async def is_installed(self, extension_id: ExtensionId) -> bool:
        """Check the destination listing, refreshing it on a cache miss."""
        if self._installed is not None and extension_id.key in self._installed:
            return True
        try:
            listing = await self.list_installed()
        except ExtsyncError as e:
            logger.warning(
                f"   couldn't refresh the extensions of {self.destination.label}: {e}"
            )
            return False
        self._installed = {key.lower() for key in listing}
        return extension_id.key in self._installed

    def _mark_installed(self, extension_id: ExtensionId) -> None:
        if self._installed is None:
            self._installed = set()
        self._installed.add(extension_id.key)

    async def _try_install(
        self, target: str, force: bool = False
    ) -> InstallRejected | None:
        try:
            output = await self.install_command(target, force)
        except InstallRejected as e:
            logger.debug(f"Installer output for {target}:\n{e.output}")
            return e
        if output:
            logger.debug(f"Installer output for {target}:\n{output}")
        return None

    async def _install_from_artifact(
        self, extension_id: ExtensionId, resolved: ResolvedVersion
    ) -> tuple[Path | None, ExtsyncError | None]:
        try:
            path = await self.artifacts.fetch(
                extension_id.publisher,
                extension_id.name,
                resolved.version,
                resolved.static_url,
            )
        except ExtsyncError as e:
            logger.warning(f"   couldn't download VSIX for {extension_id}: {e}")
            return None, e

        rejected = await self._try_install(f"{path}", force=True)
        if rejected is not None:
            logger.warning(f"   failed to install downloaded VSIX: {path}")
        return path, rejected

    def _finish(self, outcome: InstallOutcome) -> InstallOutcome:
        if outcome.succeeded:
            self._mark_installed(outcome.extension_id)
        return outcome

    async def install(
        self, extension_id: ExtensionId, depth: int = 0
    ) -> InstallOutcome:
        """Run the fallback chain for one extension; never raises domain errors."""
        if await self.is_installed(extension_id):
            logger.info(f"   already installed: {extension_id}")
            return InstallOutcome(extension_id, OutcomeKind.ALREADY_INSTALLED)

        logger.info(f" -> installing: {extension_id}")
        rejected = await self._try_install(f"{extension_id}")
        if rejected is None:
            logger.info(f"   installed via gallery: {extension_id}")
            return self._finish(
                InstallOutcome(extension_id, OutcomeKind.INSTALLED_DIRECT)
            )
        last_error: ExtsyncError = rejected

        dependency = parse_missing_dependency(_error_text(last_error))
        if dependency is not None and is_builtin_dependency(dependency):
            logger.info(f"   {dependency} is built into the editor, skipping it")
        elif dependency is not None and depth >= self.max_depth:
            logger.warning(
                f"   not resolving dependency {dependency}: "
                f"maximum depth {self.max_depth} reached"
            )
            last_error = MaxDepthExceeded(
                f"Dependency {dependency} of {extension_id} exceeds the maximum "
                f"resolution depth of {self.max_depth}"
            )
        elif dependency is not None:
            logger.info(
                f"   missing dependency detected: {dependency} (depth {depth + 1})"
            )
            dependency_outcome = await self.install(dependency, depth=depth + 1)
            retry_error = await self._try_install(f"{extension_id}")
            if retry_error is None:
                logger.info(f"   installed after dependencies: {extension_id}")
                return self._finish(
                    InstallOutcome(extension_id, OutcomeKind.INSTALLED_AFTER_DEPENDENCY)
                )
            last_error = retry_error
            if not dependency_outcome.succeeded:
                last_error = DependencyUnresolved(
                    f"Dependency {dependency} of {extension_id} could not be "
                    f"installed: {dependency_outcome.reason}"
                )

        artifact_path: Path | None = None
        version = ""
        try:
            resolved = await self.resolver.resolve(extension_id)
        except ExtsyncError as e:
            logger.warning(f"   couldn't resolve a version for {extension_id}: {e}")
            # a dependency failure explains more than a missing version does
            if not isinstance(last_error, (MaxDepthExceeded, DependencyUnresolved)):
                last_error = e
        else:
            version = resolved.version
            artifact_path, artifact_error = await self._install_from_artifact(
                extension_id, resolved
            )
            if artifact_error is None:
                logger.info(f"   installed via VSIX: {extension_id}@{version}")
                return self._finish(
                    InstallOutcome(
                        extension_id,
                        OutcomeKind.INSTALLED_VIA_ARTIFACT,
                        artifact_path=artifact_path,
                        version=version,
                    )
                )
            last_error = artifact_error

            logger.info(f"   retrying {extension_id} without a pinned version")
            try:
                fresh = await self.resolver.resolve(
                    extension_id, use_pins=False, refresh=True
                )
            except ExtsyncError as e:
                logger.warning(f"   couldn't re-resolve {extension_id}: {e}")
            else:
                retry_path, second_error = await self._install_from_artifact(
                    extension_id, fresh
                )
                if retry_path is not None:
                    artifact_path, version = retry_path, fresh.version
                if second_error is None:
                    logger.info(f"   installed via VSIX: {extension_id}@{version}")
                    return self._finish(
                        InstallOutcome(
                            extension_id,
                            OutcomeKind.INSTALLED_VIA_ARTIFACT,
                            artifact_path=artifact_path,
                            version=version,
                        )
                    )
                last_error = second_error

        reason = _error_text(last_error)
        logger.warning(f"   failed to install {extension_id}, last error:\n{reason}")
        return self._finish(
            InstallOutcome(
                extension_id,
                OutcomeKind.FAILED,
                reason=reason,
                error=last_error,
                artifact_path=artifact_path,
                version=version,
            )
        )
