from __future__ import annotations

import subprocess
from pathlib import Path

import pytest

from extsync.exceptions import InstallRejected, InvalidArtifactError
from extsync.install_engine import run_code_cli_install, validate_package


def _run(returncode: int, stdout: str = "", stderr: str = "", calls: list | None = None):
    def _runner(cmd: list[str], **kwargs) -> subprocess.CompletedProcess[str]:
        if calls is not None:
            calls.append((cmd, kwargs))
        return subprocess.CompletedProcess(cmd, returncode, stdout, stderr)

    return _runner


def test_run_code_cli_install_returns_output() -> None:
    calls: list = []

    output = run_code_cli_install(
        code_binary="surf",
        target="publisher.name",
        timeout=5,
        run_command=_run(0, "Extension 'publisher.name' was successfully installed.\n", calls=calls),
    )

    assert output == "Extension 'publisher.name' was successfully installed."
    cmd, kwargs = calls[0]
    assert cmd == ["surf", "--install-extension", "publisher.name"]
    assert kwargs["timeout"] == 5
    assert kwargs["check"] is False


def test_run_code_cli_install_can_force() -> None:
    calls: list = []

    run_code_cli_install(
        code_binary="surf",
        target="/tmp/publisher.name-1.0.0.vsix",
        force=True,
        run_command=_run(0, calls=calls),
    )

    assert calls[0][0][-1] == "--force"


def test_run_code_cli_install_raises_with_installer_output() -> None:
    with pytest.raises(InstallRejected) as exc_info:
        run_code_cli_install(
            code_binary="surf",
            target="a.b",
            run_command=_run(
                1,
                stderr="Cannot install 'a.b' extension because it depends on an "
                "unknown 'foo.bar' extension.",
            ),
        )

    assert "unknown 'foo.bar'" in exc_info.value.output
    assert "exit code 1" in f"{exc_info.value}"


def test_run_code_cli_install_detects_errors_with_zero_exit_code() -> None:
    with pytest.raises(InstallRejected):
        run_code_cli_install(
            code_binary="surf",
            target="a.b",
            run_command=_run(0, stdout="Error: Extension 'a.b' not found."),
        )


def test_run_code_cli_install_wraps_timeouts_and_missing_binaries() -> None:
    def _timeout(cmd: list[str], **_kwargs):
        raise subprocess.TimeoutExpired(cmd, 1)

    def _missing(cmd: list[str], **_kwargs):
        raise FileNotFoundError(cmd[0])

    with pytest.raises(InstallRejected, match="within 1s"):
        run_code_cli_install(
            code_binary="surf", target="a.b", timeout=1, run_command=_timeout
        )
    with pytest.raises(InstallRejected, match="Could not run surf"):
        run_code_cli_install(code_binary="surf", target="a.b", run_command=_missing)


def test_validate_package_accepts_zip(tmp_path: Path, vsix_bytes: bytes) -> None:
    package = tmp_path / "package.vsix"
    package.write_bytes(vsix_bytes)

    validate_package(package)


def test_validate_package_rejects_missing_file(tmp_path: Path) -> None:
    with pytest.raises(InvalidArtifactError):
        validate_package(tmp_path / "missing.vsix")
