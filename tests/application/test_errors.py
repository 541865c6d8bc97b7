import pytest

from cozybrew.application.errors import (
    BrewControllerError,
    BrewNotAvailableError,
    InstallFailedError,
    UninstallFailedError,
    UpdateFailedError,
    UpgradeFailedError,
)


@pytest.mark.parametrize(
    "error_cls",
    [InstallFailedError, UninstallFailedError, UpgradeFailedError, UpdateFailedError],
)
def test_write_errors_carry_diagnostic(error_cls) -> None:
    error = error_cls("Error: No available formula with the name \"nope\".")

    assert isinstance(error, BrewControllerError)
    assert error.diagnostic == "Error: No available formula with the name \"nope\"."
    assert str(error) == f"{error_cls.message}: {error.diagnostic}"


def test_error_without_diagnostic_uses_message_only() -> None:
    error = BrewNotAvailableError()

    assert error.diagnostic == ""
    assert str(error) == "Homebrew is not available"
