from __future__ import annotations

import shlex
from collections import Counter
from dataclasses import dataclass, field
from pathlib import Path

from extsync.models import (
    DownloadOutcome,
    ExtensionId,
    InstallOutcome,
    OutcomeKind,
)

OUTCOME_LABELS: dict[OutcomeKind, str] = {
    OutcomeKind.ALREADY_INSTALLED: "Already installed",
    OutcomeKind.INSTALLED_DIRECT: "Installed from gallery",
    OutcomeKind.INSTALLED_VIA_ARTIFACT: "Installed from VSIX",
    OutcomeKind.INSTALLED_AFTER_DEPENDENCY: "Installed after dependencies",
    OutcomeKind.FAILED: "Failed",
}


def remediation_commands(
    destination_binary: str, outcome: InstallOutcome
) -> list[str]:
    """Commands an operator can run to retry a failed installation by hand."""
    commands = [
        f"{shlex.quote(destination_binary)} --install-extension "
        f"{shlex.quote(str(outcome.extension_id))}"
    ]
    if outcome.artifact_path is not None:
        commands.append(
            f"{shlex.quote(destination_binary)} --install-extension "
            f"{shlex.quote(str(outcome.artifact_path))} --force"
        )
    return commands


@dataclass
class RunSummary:
    destination_binary: str
    outcomes: list[InstallOutcome] = field(default_factory=list)
    unprocessed: list[ExtensionId] = field(default_factory=list)
    output_dir: Path | None = None

    @property
    def counts(self) -> dict[OutcomeKind, int]:
        counter = Counter(outcome.kind for outcome in self.outcomes)
        return {kind: counter.get(kind, 0) for kind in OutcomeKind}

    @property
    def failures(self) -> list[InstallOutcome]:
        return [o for o in self.outcomes if o.kind is OutcomeKind.FAILED]

    def render(self) -> str:
        lines = ["=== Installation Summary ===", f"Total missing: {self.total}"]
        for kind, count in self.counts.items():
            lines.append(f"{OUTCOME_LABELS[kind] + ':':<30}{count}")

        if self.unprocessed:
            lines.append("")
            lines.append(f"Not processed (run aborted): {len(self.unprocessed)}")
            lines.extend(f" - {extension_id}" for extension_id in self.unprocessed)

        failures = self.failures
        if failures:
            lines.append("")
            lines.append(f"Failed to install ({len(failures)}):")
            for outcome in failures:
                first_line = outcome.reason.strip().splitlines()[:1]
                detail = f": {first_line[0]}" if first_line else ""
                lines.append(f" - {outcome.extension_id}{detail}")
            lines.append("")
            lines.append("You can try installing them manually with:")
            for outcome in failures:
                lines.extend(
                    f"  {command}"
                    for command in remediation_commands(
                        self.destination_binary, outcome
                    )
                )

        if self.output_dir is not None:
            lines.append("")
            lines.append(f"VSIX files are available at: {self.output_dir}")
        return "\n".join(lines)

    @property
    def total(self) -> int:
        return len(self.outcomes) + len(self.unprocessed)


def render_download_report(
    destination_binary: str,
    results: list[DownloadOutcome],
    output_dir: Path,
) -> str:
    downloaded = [r for r in results if r.succeeded]
    failed = [r for r in results if not r.succeeded]
    lines = [
        "=== Download Summary ===",
        f"Total missing extensions: {len(results)}",
        f"Successfully downloaded:  {len(downloaded)}",
    ]
    if failed:
        lines.append(f"Failed to download:       {len(failed)}")
        lines.extend(f" - {r.extension_id}: {r.error}" for r in failed)
    lines.append("")
    lines.append(f"VSIX files saved to: {output_dir}")
    if downloaded:
        lines.append("Install them later with:")
        lines.extend(
            f"  {shlex.quote(destination_binary)} --install-extension "
            f"{shlex.quote(str(r.artifact_path))} --force"
            for r in downloaded
        )
    return "\n".join(lines)
