from __future__ import annotations

import gzip
import os
import shutil
import subprocess
import zipfile
import zlib
from pathlib import Path
from typing import Callable, Protocol

import requests

from extsync.exceptions import InstallRejected, InvalidArtifactError

GZIP_MAGIC = b"\x1f\x8b"


class DownloadSession(Protocol):
    def get(
        self,
        url: str,
        *,
        stream: bool,
        headers: dict[str, str],
        timeout: tuple[int, int],
    ) -> requests.Response: ...


RunCommand = Callable[..., subprocess.CompletedProcess[str]]


def stream_download(
    *,
    session: DownloadSession,
    url: str,
    file_path: Path,
    headers: dict[str, str],
    timeout: tuple[int, int],
) -> Path:
    with open(file_path, "wb") as output:
        response: requests.Response = session.get(
            url,
            stream=True,
            headers=headers,
            timeout=timeout,
        )
        response.raise_for_status()

        for chunk in response.iter_content(chunk_size=1024 * 8):
            if chunk:
                output.write(chunk)
        output.flush()
        os.fsync(output.fileno())

    return file_path


def validate_package(file_path: Path) -> None:
    """Make sure *file_path* holds a ZIP-based extension package.

    A gzip-wrapped body is unpacked in place first.
    """
    if not file_path.is_file() or file_path.stat().st_size == 0:
        raise InvalidArtifactError(f"Downloaded file is empty: {file_path.name}")

    with open(file_path, "rb") as f:
        signature = f.read(2)

    if signature == GZIP_MAGIC:
        unpacked = file_path.with_name(f"{file_path.name}.unzipped")
        try:
            with gzip.open(file_path, "rb") as src, open(unpacked, "wb") as dst:
                shutil.copyfileobj(src, dst)
        except (OSError, EOFError, zlib.error) as e:
            raise InvalidArtifactError(
                f"Downloaded file is a corrupt gzip stream: {file_path.name}"
            ) from e
        else:
            os.replace(unpacked, file_path)
        finally:
            unpacked.unlink(missing_ok=True)

    if not zipfile.is_zipfile(file_path):
        raise InvalidArtifactError(
            f"Downloaded file is not a valid VSIX package: {file_path.name}"
        )


def run_code_cli_install(
    *,
    code_binary: str,
    target: str,
    force: bool = False,
    timeout: int | None = None,
    run_command: RunCommand = subprocess.run,
) -> str:
    """Run `<bin> --install-extension <target>` and return its output."""
    cmd = [code_binary, "--install-extension", target]
    if force:
        cmd.append("--force")
    try:
        process = run_command(
            cmd,
            capture_output=True,
            check=False,
            text=True,
            timeout=timeout,
        )
    except subprocess.TimeoutExpired as e:
        raise InstallRejected(
            f"{code_binary} did not finish installing {target} within {timeout}s"
        ) from e
    except OSError as e:
        raise InstallRejected(f"Could not run {code_binary}: {e}") from e

    output = "\n".join(
        part.strip()
        for part in (process.stdout, process.stderr)
        if part and part.strip()
    )
    # some editors report failures with exit code 0
    if process.returncode != 0 or "Error: " in output:
        raise InstallRejected(
            f"Installing {target} failed (exit code {process.returncode})",
            output=output,
        )
    return output
