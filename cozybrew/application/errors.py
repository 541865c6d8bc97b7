class BrewControllerError(Exception):
    """Base class for errors surfaced to the presentation layer.

    Attributes:
        diagnostic: Raw text from `brew` (or the runner) for display.
    """

    message = "Homebrew operation failed"

    def __init__(self, diagnostic: str = ""):
        self.diagnostic = diagnostic
        super().__init__(f"{self.message}: {diagnostic}" if diagnostic else self.message)


class BrewNotAvailableError(BrewControllerError):
    message = "Homebrew is not available"


class InstallFailedError(BrewControllerError):
    message = "Installation failed"


class UninstallFailedError(BrewControllerError):
    message = "Uninstallation failed"


class UpgradeFailedError(BrewControllerError):
    message = "Upgrade failed"


class UpdateFailedError(BrewControllerError):
    message = "Update failed"
