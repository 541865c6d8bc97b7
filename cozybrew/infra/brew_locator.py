import os
import shutil
from typing import Final

from logly import logger

from cozybrew.core.brew_types import BrewArchitecture, BrewLocation

APPLE_SILICON_PATH: Final[str] = "/opt/homebrew/bin/brew"
INTEL_PATH: Final[str] = "/usr/local/bin/brew"
LINUXBREW_PATH: Final[str] = "/home/linuxbrew/.linuxbrew/bin/brew"

_WELL_KNOWN_PATHS: Final[tuple[tuple[str, BrewArchitecture], ...]] = (
    (APPLE_SILICON_PATH, BrewArchitecture.APPLE_SILICON),
    (INTEL_PATH, BrewArchitecture.INTEL),
    (LINUXBREW_PATH, BrewArchitecture.CUSTOM),
)


def classify_path(path: str) -> BrewArchitecture:
    """Infers the install variant from where a `brew` binary lives."""
    if path.startswith("/opt/homebrew"):
        return BrewArchitecture.APPLE_SILICON
    if path.startswith("/usr/local"):
        return BrewArchitecture.INTEL
    return BrewArchitecture.CUSTOM


def locate(override: str | None = None) -> BrewLocation | None:
    """Finds a usable `brew` executable.

    Checks an explicit override first, then the standard install locations,
    and only then falls back to a PATH lookup.

    Args:
        override: Optional user-configured path to the binary.

    Returns:
        The resolved location, or None when Homebrew is not installed.
    """
    if override:
        if os.path.exists(override):
            return BrewLocation(path=override, architecture=BrewArchitecture.CUSTOM)
        logger.warning(f"Configured brew path does not exist path={override}")

    for path, architecture in _WELL_KNOWN_PATHS:
        if os.path.exists(path):
            return BrewLocation(path=path, architecture=architecture)

    found = shutil.which("brew")
    if found:
        return BrewLocation(path=found, architecture=classify_path(found))

    logger.info("brew executable not found")
    return None
