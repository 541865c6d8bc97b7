from typing import Final

from logly import logger

from cozybrew.core.brew_types import CommandResult

from .brew_process import OutputCallback, OutputSink, run_command

INSTALL_SCRIPT_URL: Final[str] = (
    "https://raw.githubusercontent.com/Homebrew/install/HEAD/install.sh"
)


def build_install_argv(script_url: str = INSTALL_SCRIPT_URL) -> list[str]:
    """Builds the argv that fetches and runs the official Homebrew installer."""
    return ["/bin/bash", "-c", f"curl -fsSL {script_url} | bash"]


async def install_homebrew(
    on_output: OutputCallback | OutputSink | None = None,
) -> CommandResult:
    """Runs the one-time Homebrew setup script non-interactively.

    Args:
        on_output: Optional sink receiving installer output as it arrives.

    Returns:
        The installer's result; check `succeeded` and `diagnostic_text`.

    Raises:
        BrewProcessError: If bash itself cannot be started.
    """
    logger.info("Installing Homebrew")
    result = await run_command(
        build_install_argv(), env={"NONINTERACTIVE": "1"}, on_output=on_output
    )
    if result.succeeded:
        logger.success("Homebrew installed")
    else:
        logger.error(f"Homebrew install failed exit_code={result.exit_code}")
    return result
