#! /bin/env python3
from __future__ import annotations

import asyncio
import datetime
import logging
import shutil
from pathlib import Path
from typing import Awaitable, Callable, TypeVar

import typer

from extsync.api_client import MarketplaceClient
from extsync.artifacts import ArtifactCache
from extsync.editor_manager import EditorManager, handle_for_binary, select_editors
from extsync.exceptions import ExtsyncError, SyncAbortedError
from extsync.installer import FallbackInstaller
from extsync.internal_config import (
    DEFAULT_GALLERY_URL,
    DEFAULT_MAX_DEP_DEPTH,
    DEFAULT_PARALLELISM,
    DEFAULT_VSIX_DIR,
    SyncSettings,
    load_pinned_overrides,
)
from extsync.inventory import InventoryCollector, compute_missing
from extsync.models import (
    DownloadOutcome,
    EditorHandle,
    ExtensionId,
    Inventory,
    PinnedOverride,
    RunResult,
)
from extsync.reporter import RunSummary, render_download_report
from extsync.version_resolver import VersionResolver

app: typer.Typer = typer.Typer(
    help="Install the extensions of one VS Code-based editor into another."
)
logger: logging.Logger = logging.getLogger(__name__)

T = TypeVar("T")


class ExtensionSyncManager(object):
    """One-way reconciliation of installed extensions (source -> destination)."""

    source: EditorHandle
    destination: EditorHandle
    settings: SyncSettings
    collector: InventoryCollector
    api_manager: MarketplaceClient
    resolver: VersionResolver
    output_dir: Path

    def __init__(
        self,
        source: EditorHandle,
        destination: EditorHandle,
        settings: SyncSettings | None = None,
        pinned_overrides: dict[str, PinnedOverride] | None = None,
        collector: InventoryCollector | None = None,
        api_manager: MarketplaceClient | None = None,
    ) -> None:
        self.source = source
        self.destination = destination
        self.settings = settings or SyncSettings.from_environment()
        self.collector = collector or InventoryCollector()
        self.api_manager = api_manager or MarketplaceClient(self.settings.gallery_url)
        self.resolver = VersionResolver(
            self.api_manager.get_latest_version,
            (
                pinned_overrides
                if pinned_overrides is not None
                else load_pinned_overrides(self.settings.pins_file)
            ),
        )
        timestamp = datetime.datetime.now().strftime("%Y%m%d-%H%M%S")
        self.output_dir = self.settings.vsix_dir.joinpath(
            f"{Path(source.binary).name}-to-{Path(destination.binary).name}-{timestamp}"
        )
        self._cancelled = False

    def cancel(self) -> None:
        """Stop before the next extension; work already done stays valid."""
        self._cancelled = True

    async def collect_inventories(self) -> tuple[Inventory, Inventory]:
        """Collect both inventories; any CollectorError is fatal to the run."""
        source = await asyncio.to_thread(self.collector.collect, self.source)
        if not len(source):
            raise SyncAbortedError(
                f"No extensions found for {self.source.label}, nothing to sync"
            )
        destination = await asyncio.to_thread(self.collector.collect, self.destination)
        return source, destination

    async def find_missing(self) -> RunResult:
        source, destination = await self.collect_inventories()
        missing = compute_missing(source, destination)
        logger.info(
            f"{len(missing)} extensions of {self.source.label} are missing "
            f"in {self.destination.label}"
        )
        return RunResult(source=source, destination=destination, missing=missing)

    def artifact_cache(self) -> ArtifactCache:
        return ArtifactCache(
            output_dir=self.output_dir,
            download=self.api_manager.download_sync,
            cache_dir=self.settings.cache_dir,
            gallery_url=self.settings.gallery_url,
        )

    async def _list_destination(self) -> set[str]:
        inventory = await asyncio.to_thread(self.collector.collect, self.destination)
        return inventory.keys()

    def build_installer(self, artifacts: ArtifactCache) -> FallbackInstaller:
        return FallbackInstaller(
            destination=self.destination,
            resolver=self.resolver,
            artifacts=artifacts,
            list_installed=self._list_destination,
            max_depth=self.settings.max_dep_depth,
        )

    async def _run_each(
        self,
        missing: list[ExtensionId],
        worker: Callable[[ExtensionId], Awaitable[T]],
    ) -> tuple[list[T], list[ExtensionId]]:
        """Run *worker* for every identifier, sequentially or in a bounded pool."""
        if self.settings.parallelism <= 1:
            results: list[T] = []
            for index, extension_id in enumerate(missing):
                if self._cancelled:
                    return results, missing[index:]
                logger.info(f"[{index + 1}/{len(missing)}] {extension_id}")
                results.append(await worker(extension_id))
            return results, []

        semaphore = asyncio.Semaphore(self.settings.parallelism)

        async def _bounded(extension_id: ExtensionId) -> T | None:
            async with semaphore:
                if self._cancelled:
                    return None
                return await worker(extension_id)

        # per-worker results are merged here once every worker is done
        gathered = await asyncio.gather(*(_bounded(e) for e in missing))
        finished: list[T] = [r for r in gathered if r is not None]
        unprocessed = [e for e, r in zip(missing, gathered) if r is None]
        return finished, unprocessed

    async def install_async(self) -> RunResult:
        """Install every missing extension into the destination."""
        result = await self.find_missing()
        if not result.missing:
            logger.info("The destination already has all extensions of the source.")
            return result

        artifacts = self.artifact_cache()
        installer = self.build_installer(artifacts)
        outcomes, unprocessed = await self._run_each(result.missing, installer.install)
        result.outcomes = list(outcomes)
        result.unprocessed = unprocessed
        result.output_dir = self.output_dir
        return result

    async def _download_one(
        self, artifacts: ArtifactCache, extension_id: ExtensionId
    ) -> DownloadOutcome:
        try:
            resolved = await self.resolver.resolve(extension_id)
            path = await artifacts.fetch(
                extension_id.publisher,
                extension_id.name,
                resolved.version,
                resolved.static_url,
            )
        except ExtsyncError as e:
            logger.warning(f"Could not download {extension_id}: {e}")
            return DownloadOutcome(extension_id=extension_id, error=e)
        return DownloadOutcome(
            extension_id=extension_id, artifact_path=path, version=resolved.version
        )

    async def download_async(self) -> tuple[RunResult, list[DownloadOutcome]]:
        """Download packages for every missing extension without installing."""
        result = await self.find_missing()
        if not result.missing:
            return result, []

        artifacts = self.artifact_cache()
        downloads, unprocessed = await self._run_each(
            result.missing,
            lambda extension_id: self._download_one(artifacts, extension_id),
        )
        result.unprocessed = unprocessed
        result.output_dir = self.output_dir
        return result, list(downloads)

    def install(self) -> RunResult:
        return asyncio.run(self.install_async())

    def cleanup(self) -> None:
        """Delete the per-run output directory."""
        if self.output_dir.exists():
            shutil.rmtree(self.output_dir)
            logger.info(f"Removed {self.output_dir}")


def _configure_logging(log_level: str) -> None:
    level = getattr(logging, log_level.upper(), None)
    if not isinstance(level, int):
        raise typer.BadParameter(f"Invalid log level: {log_level!r}")
    logging.basicConfig(
        level=level,
        format="%(relativeCreated)d [%(levelname)s] %(message)s",
    )


def _prompt_choice(label: str, candidates: list[EditorHandle]) -> str:
    typer.echo(f"Available {label} applications:")
    for index, editor in enumerate(candidates, start=1):
        typer.echo(f"  {index}) {editor.label} ({editor.binary})")
    if len(candidates) == 1:
        return ""
    return str(typer.prompt(f"Select the {label} application", default="1"))


def _choose_editors(
    source: str, destination: str
) -> tuple[EditorHandle, EditorHandle]:
    """Resolve editor handles, asking on the terminal for the missing ones."""
    if source and destination:
        return handle_for_binary(source), handle_for_binary(destination)

    available = EditorManager().discover()
    try:
        if source:
            candidates = [e for e in available if e.binary != source]
            if not candidates:
                raise ValueError("No destination editor found, pass --destination")
            choice = _prompt_choice("destination", candidates)
            _, chosen = select_editors(
                [handle_for_binary(source), *candidates], "1", choice
            )
            return handle_for_binary(source), chosen
        if destination:
            candidates = [e for e in available if e.binary != destination]
            if not candidates:
                raise ValueError("No source editor found, pass --source")
            choice = _prompt_choice("source", candidates)
            chosen, _ = select_editors(candidates, choice, "")
            return chosen, handle_for_binary(destination)

        source_choice = _prompt_choice("source", available) if available else ""
        destination_choice = ""
        if len(available) > 1:
            destination_choice = str(
                typer.prompt(
                    "Select the destination application "
                    "(number among the remaining ones)",
                    default="",
                    show_default=False,
                )
            )
        return select_editors(available, source_choice, destination_choice)
    except ValueError as e:
        raise typer.BadParameter(f"{e}") from e


def _build_settings(
    source: str,
    destination: str,
    marketplace_url: str,
    max_depth: int,
    parallelism: int,
    vsix_dir: str,
    cache_dir: str,
    pins_file: str,
) -> SyncSettings:
    return SyncSettings(
        source_bin=source,
        destination_bin=destination,
        gallery_url=marketplace_url.rstrip("/") or DEFAULT_GALLERY_URL,
        max_dep_depth=max_depth,
        parallelism=max(parallelism, 1),
        vsix_dir=Path(vsix_dir).expanduser().resolve() if vsix_dir else DEFAULT_VSIX_DIR,
        cache_dir=Path(cache_dir).expanduser().resolve() if cache_dir else None,
        pins_file=Path(pins_file).expanduser().resolve() if pins_file else None,
    )


SOURCE_OPTION = typer.Option("", envvar="EXTSYNC_SOURCE_BIN", help="Source editor CLI.")
DESTINATION_OPTION = typer.Option(
    "", envvar="EXTSYNC_DEST_BIN", help="Destination editor CLI."
)
MARKETPLACE_OPTION = typer.Option(
    DEFAULT_GALLERY_URL, envvar="EXTSYNC_MARKETPLACE_URL", help="Gallery API base URL."
)
MAX_DEPTH_OPTION = typer.Option(
    DEFAULT_MAX_DEP_DEPTH,
    envvar="EXTSYNC_MAX_DEP_DEPTH",
    min=0,
    help="Maximum dependency resolution depth.",
)
PARALLELISM_OPTION = typer.Option(
    DEFAULT_PARALLELISM,
    envvar="EXTSYNC_PARALLELISM",
    min=1,
    help="Number of extensions processed concurrently.",
)
VSIX_DIR_OPTION = typer.Option(
    "", envvar="EXTSYNC_VSIX_DIR", help="Base directory for per-run VSIX folders."
)
CACHE_DIR_OPTION = typer.Option(
    "", envvar="EXTSYNC_CACHE_DIR", help="Long-lived VSIX cache shared across runs."
)
PINS_FILE_OPTION = typer.Option(
    "", envvar="EXTSYNC_PINS_FILE", help="JSON5 file with extra pinned versions."
)
LOG_LEVEL_OPTION = typer.Option("info", help="Logging level.")


def _manager_for(
    source: str,
    destination: str,
    marketplace_url: str,
    max_depth: int,
    parallelism: int,
    vsix_dir: str,
    cache_dir: str,
    pins_file: str,
) -> ExtensionSyncManager:
    EditorManager().expose_editor_binaries()
    source_handle, destination_handle = _choose_editors(source, destination)
    settings = _build_settings(
        source_handle.binary,
        destination_handle.binary,
        marketplace_url,
        max_depth,
        parallelism,
        vsix_dir,
        cache_dir,
        pins_file,
    )
    logger.info(
        f"Source: {source_handle.label} ({source_handle.binary}) | "
        f"Destination: {destination_handle.label} ({destination_handle.binary})"
    )
    return ExtensionSyncManager(source_handle, destination_handle, settings=settings)


@app.command()
def sync(
    source: str = SOURCE_OPTION,
    destination: str = DESTINATION_OPTION,
    marketplace_url: str = MARKETPLACE_OPTION,
    max_depth: int = MAX_DEPTH_OPTION,
    parallelism: int = PARALLELISM_OPTION,
    vsix_dir: str = VSIX_DIR_OPTION,
    cache_dir: str = CACHE_DIR_OPTION,
    pins_file: str = PINS_FILE_OPTION,
    cleanup: bool = typer.Option(False, help="Delete downloaded VSIX files afterwards."),
    log_level: str = LOG_LEVEL_OPTION,
) -> None:
    """Install every extension of the source editor missing in the destination."""
    _configure_logging(log_level)
    manager = _manager_for(
        source,
        destination,
        marketplace_url,
        max_depth,
        parallelism,
        vsix_dir,
        cache_dir,
        pins_file,
    )
    try:
        result = manager.install()
    except ExtsyncError as e:
        logger.error(f"{e}")
        raise typer.Exit(code=1) from e

    if not result.missing:
        typer.echo("No missing extensions found.")
        return

    summary = RunSummary(
        destination_binary=manager.destination.binary,
        outcomes=result.outcomes,
        unprocessed=result.unprocessed,
        output_dir=None if cleanup else result.output_dir,
    )
    typer.echo(summary.render())
    if cleanup:
        manager.cleanup()
    if summary.failures or summary.unprocessed:
        raise typer.Exit(code=2)


@app.command()
def download(
    source: str = SOURCE_OPTION,
    destination: str = DESTINATION_OPTION,
    marketplace_url: str = MARKETPLACE_OPTION,
    parallelism: int = PARALLELISM_OPTION,
    vsix_dir: str = VSIX_DIR_OPTION,
    cache_dir: str = CACHE_DIR_OPTION,
    pins_file: str = PINS_FILE_OPTION,
    log_level: str = LOG_LEVEL_OPTION,
) -> None:
    """Download VSIX files for the missing extensions without installing them."""
    _configure_logging(log_level)
    manager = _manager_for(
        source,
        destination,
        marketplace_url,
        DEFAULT_MAX_DEP_DEPTH,
        parallelism,
        vsix_dir,
        cache_dir,
        pins_file,
    )
    try:
        result, downloads = asyncio.run(manager.download_async())
    except ExtsyncError as e:
        logger.error(f"{e}")
        raise typer.Exit(code=1) from e

    if not result.missing:
        typer.echo("No missing extensions found.")
        return
    typer.echo(
        render_download_report(manager.destination.binary, downloads, manager.output_dir)
    )
    if any(not d.succeeded for d in downloads):
        raise typer.Exit(code=2)


@app.command()
def compare(
    source: str = SOURCE_OPTION,
    destination: str = DESTINATION_OPTION,
    log_level: str = LOG_LEVEL_OPTION,
) -> None:
    """List the extensions of the source editor missing in the destination."""
    _configure_logging(log_level)
    EditorManager().expose_editor_binaries()
    source_handle, destination_handle = _choose_editors(source, destination)
    collector = InventoryCollector()
    try:
        source_inventory = collector.collect(source_handle)
        destination_inventory = collector.collect(destination_handle)
    except ExtsyncError as e:
        logger.error(f"{e}")
        raise typer.Exit(code=1) from e

    typer.echo(f"{source_handle.label}: {len(source_inventory)}")
    typer.echo(f"{destination_handle.label}: {len(destination_inventory)}")
    missing = compute_missing(source_inventory, destination_inventory)
    if not missing:
        typer.echo("None missing.")
        return
    typer.echo(f"Missing in {destination_handle.label} ({len(missing)}):")
    for index, extension_id in enumerate(missing, start=1):
        typer.echo(f"{index:>3}) {extension_id}")


@app.command()
def editors(log_level: str = LOG_LEVEL_OPTION) -> None:
    """List the editors whose CLI can be found."""
    _configure_logging(log_level)
    manager = EditorManager()
    manager.expose_editor_binaries()
    available = manager.discover()
    if not available:
        typer.echo("No supported editors found.")
        raise typer.Exit(code=1)
    for index, editor in enumerate(available, start=1):
        typer.echo(f"{index}) {editor.label} ({editor.binary})")


def main() -> None:
    app()


if __name__ == "__main__":
    main()
