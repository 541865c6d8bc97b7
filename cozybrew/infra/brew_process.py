"""Asynchronous runner for the `brew` CLI.

Every call spawns exactly one process and suspends the caller until it exits.
A non-zero exit status is reported inside :class:`CommandResult`; only a
process that cannot be started raises. If the caller is cancelled the child
is left running, and its output is drained and its exit reaped in the
background.
"""

import asyncio
import os
from asyncio.subprocess import Process
from typing import Callable, Final, Mapping, Sequence

from logly import logger

from cozybrew.core.brew_output import decode_output, strip_ansi
from cozybrew.core.brew_types import CommandResult

_CHUNK_SIZE: Final[int] = 64 * 1024

OutputCallback = Callable[[str], None]

# Children whose caller stopped waiting; drained and reaped in the background.
_background_reaps: set[asyncio.Task] = set()


class BrewProcessError(RuntimeError):
    """Raised when an external process cannot be started at all."""

    def __init__(self, argv: Sequence[str], cause: OSError):
        super().__init__(f"failed to start {argv[0] if argv else '<empty>'}: {cause}")
        self.argv = list(argv)
        self.cause = cause


class OutputSink:
    """Forwards streamed output lines to a callback until detached.

    Detaching only stops forwarding; the process keeps running and its output
    is still captured into the final result.
    """

    def __init__(self, callback: OutputCallback):
        self._callback: OutputCallback | None = callback

    @property
    def attached(self) -> bool:
        return self._callback is not None

    def detach(self) -> None:
        self._callback = None

    def __call__(self, line: str) -> None:
        callback = self._callback
        if callback is None:
            return
        try:
            callback(line)
        except Exception:
            logger.exception("Output sink raised; detaching it")
            self._callback = None


def merge_env(*overrides: Mapping[str, str] | None) -> dict[str, str]:
    """Returns the ambient environment with each override applied in order."""
    env = dict(os.environ)
    for override in overrides:
        if override:
            env.update(override)
    return env


def _forward(sink: OutputSink, raw_line: bytes) -> None:
    for line in strip_ansi(decode_output(raw_line)).split("\n"):
        line = line.rstrip()
        if line:
            sink(line)


async def _pump(stream: asyncio.StreamReader | None, buffer: bytearray, sink: OutputSink) -> None:
    """Reads one pipe to EOF, capturing everything and forwarding whole lines."""
    if stream is None:
        return
    pending = b""
    while True:
        chunk = await stream.read(_CHUNK_SIZE)
        if not chunk:
            break
        buffer.extend(chunk)
        pending += chunk
        *lines, pending = pending.split(b"\n")
        for line in lines:
            _forward(sink, line)
    if pending:
        _forward(sink, pending)


async def _stream_process(process: Process, sink: OutputSink) -> tuple[bytes, bytes]:
    stdout_buf = bytearray()
    stderr_buf = bytearray()
    await asyncio.gather(
        _pump(process.stdout, stdout_buf, sink),
        _pump(process.stderr, stderr_buf, sink),
    )
    await process.wait()
    return bytes(stdout_buf), bytes(stderr_buf)


def _reap_in_background(process: Process) -> None:
    logger.warning(f"Caller stopped waiting; process keeps running pid={process.pid}")
    task = asyncio.get_running_loop().create_task(process.communicate())
    _background_reaps.add(task)
    task.add_done_callback(_background_reaps.discard)


async def run_command(
    argv: Sequence[str],
    env: Mapping[str, str] | None = None,
    on_output: OutputCallback | OutputSink | None = None,
) -> CommandResult:
    """Runs a command and captures its output.

    Args:
        argv: Executable followed by its arguments.
        env: Overrides merged on top of the ambient environment.
        on_output: Optional sink receiving stdout and stderr lines as they
            arrive. Without it the output is buffered.

    Returns:
        The captured stdout, stderr and exit status.

    Raises:
        BrewProcessError: If the process could not be started.
    """
    logger.info(f"Starting subprocess argv={' '.join(argv)}")
    try:
        process = await asyncio.create_subprocess_exec(
            *argv,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            env=merge_env(env) if env is not None else None,
        )
    except OSError as e:
        logger.error(f"Subprocess could not be started: {e}")
        raise BrewProcessError(argv, e) from e

    try:
        if on_output is None:
            stdout, stderr = await process.communicate()
        else:
            sink = on_output if isinstance(on_output, OutputSink) else OutputSink(on_output)
            stdout, stderr = await _stream_process(process, sink)
    except asyncio.CancelledError:
        if process.returncode is None:
            _reap_in_background(process)
        raise

    returncode = process.returncode if process.returncode is not None else 0
    logger.info(f"Subprocess finished returncode={returncode}")
    return CommandResult(
        stdout=decode_output(stdout),
        stderr=decode_output(stderr),
        exit_code=returncode,
    )


class BrewProcess:
    """Runs `brew` subcommands for one resolved executable."""

    def __init__(self, brew_path: str, env: Mapping[str, str] | None = None):
        """Initializes the runner.

        Args:
            brew_path: Path to the `brew` executable.
            env: Environment overrides applied to every invocation.
        """
        self._brew_path = brew_path
        self._env = dict(env or {})

    @property
    def brew_path(self) -> str:
        return self._brew_path

    async def run(
        self,
        args: Sequence[str],
        env: Mapping[str, str] | None = None,
        on_output: OutputCallback | OutputSink | None = None,
    ) -> CommandResult:
        """Runs `brew <args>`; per-call env wins over the instance env."""
        merged = {**self._env, **(env or {})}
        return await run_command([self._brew_path, *args], env=merged, on_output=on_output)
