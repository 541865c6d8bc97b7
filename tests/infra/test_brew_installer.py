import asyncio

from cozybrew.core.brew_types import CommandResult
from cozybrew.infra import brew_installer
from cozybrew.infra.brew_installer import (
    INSTALL_SCRIPT_URL,
    build_install_argv,
    install_homebrew,
)


def test_build_install_argv_pipes_script_into_bash() -> None:
    assert build_install_argv() == [
        "/bin/bash",
        "-c",
        f"curl -fsSL {INSTALL_SCRIPT_URL} | bash",
    ]


def test_install_homebrew_runs_non_interactively_and_streams(monkeypatch) -> None:
    calls: list[tuple[list[str], dict, object]] = []

    async def fake_run_command(argv, env=None, on_output=None) -> CommandResult:
        calls.append((list(argv), dict(env or {}), on_output))
        on_output("==> Installation successful!")
        return CommandResult(stdout="done", exit_code=0)

    monkeypatch.setattr(brew_installer, "run_command", fake_run_command)
    lines: list[str] = []

    result = asyncio.run(install_homebrew(lines.append))

    assert result.succeeded
    assert lines == ["==> Installation successful!"]
    assert calls[0][0] == build_install_argv()
    assert calls[0][1] == {"NONINTERACTIVE": "1"}


def test_install_homebrew_reports_failure_in_result(monkeypatch) -> None:
    async def fake_run_command(argv, env=None, on_output=None) -> CommandResult:
        return CommandResult(stderr="curl: (6) Could not resolve host", exit_code=6)

    monkeypatch.setattr(brew_installer, "run_command", fake_run_command)

    result = asyncio.run(install_homebrew())

    assert not result.succeeded
    assert result.diagnostic_text == "curl: (6) Could not resolve host"
