import asyncio
import sys

from cozybrew.application.brew_controller import BrewController
from cozybrew.config import load_settings
from cozybrew.logging import init_logger


async def _refresh(controller: BrewController) -> int:
    await controller.refresh_all()
    state = controller.state
    print(f"brew: {state.backend_path}")
    print(f"installed: {len(state.installed_packages)}")
    print(f"outdated: {len(state.outdated_packages)}")
    print(f"taps: {len(state.taps)}")
    if state.last_error:
        print(f"error: {state.last_error}", file=sys.stderr)
        return 1
    return 0


def main() -> int:
    """Runs one headless refresh and prints a summary of the Homebrew state."""
    settings = load_settings()
    logger = init_logger(settings.log_dir, settings.log_level)

    controller = BrewController(settings)
    controller.log.connect(lambda line: logger.info(line))

    if not controller.state.is_backend_available:
        print("Error: `brew` command not found.")
        print("Please install Homebrew from https://brew.sh")
        return 1

    return asyncio.run(_refresh(controller))


if __name__ == "__main__":
    sys.exit(main())
