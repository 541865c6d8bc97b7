import asyncio
import sys

import pytest

from cozybrew.infra import brew_process
from cozybrew.infra.brew_process import (
    BrewProcess,
    BrewProcessError,
    OutputSink,
    merge_env,
    run_command,
)


def _python(code: str) -> list[str]:
    return [sys.executable, "-c", code]


def test_run_command_buffers_stdout_stderr_and_exit_code() -> None:
    result = asyncio.run(
        run_command(
            _python(
                "import sys; print('out'); print('err', file=sys.stderr); sys.exit(3)"
            )
        )
    )

    assert result.stdout.strip() == "out"
    assert result.stderr.strip() == "err"
    assert result.exit_code == 3
    assert not result.succeeded


def test_run_command_does_not_raise_on_non_zero_exit() -> None:
    result = asyncio.run(run_command(_python("import sys; sys.exit(1)")))

    assert result.exit_code == 1
    assert result.diagnostic_text == ""


def test_run_command_raises_when_executable_is_missing(tmp_path) -> None:
    missing = str(tmp_path / "no-such-brew")

    with pytest.raises(BrewProcessError) as excinfo:
        asyncio.run(run_command([missing, "list"]))

    assert excinfo.value.argv == [missing, "list"]
    assert isinstance(excinfo.value.cause, OSError)


def test_run_command_streams_both_streams_and_still_aggregates() -> None:
    lines: list[str] = []
    code = (
        "import sys\n"
        "print('alpha', flush=True)\n"
        "print('beta', file=sys.stderr, flush=True)\n"
        "print('gamma', flush=True)\n"
    )

    result = asyncio.run(run_command(_python(code), on_output=lines.append))

    assert sorted(lines) == ["alpha", "beta", "gamma"]
    assert lines.index("alpha") < lines.index("gamma")
    assert result.stdout.splitlines() == ["alpha", "gamma"]
    assert result.stderr.splitlines() == ["beta"]
    assert result.succeeded


def test_run_command_strips_ansi_from_streamed_lines_only() -> None:
    lines: list[str] = []

    result = asyncio.run(
        run_command(_python("print('\\x1b[34m==>\\x1b[0m Pouring')"), on_output=lines.append)
    )

    assert lines == ["==> Pouring"]
    assert "\x1b[34m" in result.stdout


def test_detached_sink_stops_forwarding_but_output_is_captured() -> None:
    received: list[str] = []

    def on_line(line: str) -> None:
        received.append(line)
        sink.detach()

    sink = OutputSink(on_line)
    code = "for word in ('one', 'two', 'three'):\n    print(word, flush=True)\n"

    result = asyncio.run(run_command(_python(code), on_output=sink))

    assert received == ["one"]
    assert not sink.attached
    assert result.stdout.splitlines() == ["one", "two", "three"]


def test_failing_sink_is_detached_without_killing_the_process() -> None:
    def on_line(line: str) -> None:
        raise RuntimeError("view went away")

    sink = OutputSink(on_line)

    result = asyncio.run(
        run_command(_python("print('a', flush=True); print('b')"), on_output=sink)
    )

    assert not sink.attached
    assert result.stdout.splitlines() == ["a", "b"]
    assert result.succeeded


def test_merge_env_applies_overrides_in_order(monkeypatch) -> None:
    monkeypatch.setenv("COZYBREW_TEST_AMBIENT", "ambient")
    monkeypatch.setenv("COZYBREW_TEST_KEY", "ambient")

    env = merge_env({"COZYBREW_TEST_KEY": "first"}, None, {"COZYBREW_TEST_KEY": "second"})

    assert env["COZYBREW_TEST_AMBIENT"] == "ambient"
    assert env["COZYBREW_TEST_KEY"] == "second"


def test_run_command_env_overrides_win_over_ambient(monkeypatch) -> None:
    monkeypatch.setenv("COZYBREW_TEST_AMBIENT", "kept")
    monkeypatch.setenv("COZYBREW_TEST_KEY", "ambient")
    code = (
        "import os; "
        "print(os.environ['COZYBREW_TEST_AMBIENT'], os.environ['COZYBREW_TEST_KEY'])"
    )

    result = asyncio.run(run_command(_python(code), env={"COZYBREW_TEST_KEY": "override"}))

    assert result.stdout.strip() == "kept override"


def test_brew_process_call_env_wins_over_instance_env() -> None:
    process = BrewProcess(
        sys.executable,
        env={"COZYBREW_TEST_A": "instance", "COZYBREW_TEST_B": "instance"},
    )
    code = "import os; print(os.environ['COZYBREW_TEST_A'], os.environ['COZYBREW_TEST_B'])"

    result = asyncio.run(process.run(["-c", code], env={"COZYBREW_TEST_B": "call"}))

    assert result.stdout.strip() == "instance call"
    assert process.brew_path == sys.executable


def test_cancelled_caller_leaves_process_running_and_drained(tmp_path) -> None:
    marker = tmp_path / "finished"
    # Writes more than a pipe buffer holds, so it only finishes if someone keeps reading.
    code = (
        "import pathlib, sys, time\n"
        "time.sleep(1.0)\n"
        "sys.stdout.write('x' * 200000)\n"
        "sys.stdout.flush()\n"
        f"pathlib.Path({str(marker)!r}).write_text('ok')\n"
    )

    async def scenario() -> None:
        with pytest.raises(asyncio.TimeoutError):
            await asyncio.wait_for(run_command(_python(code)), timeout=0.5)
        assert brew_process._background_reaps
        for _ in range(200):
            if not brew_process._background_reaps:
                break
            await asyncio.sleep(0.05)

    asyncio.run(scenario())

    assert marker.read_text() == "ok"
    assert not brew_process._background_reaps
