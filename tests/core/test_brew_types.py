from dataclasses import FrozenInstanceError, replace

import pytest

from cozybrew.core.brew_types import (
    BrewState,
    CommandResult,
    Flow,
    FlowStatus,
    Package,
    PackageKind,
)


def test_command_result_succeeded_only_for_zero_exit_code() -> None:
    assert CommandResult(exit_code=0).succeeded
    assert not CommandResult(exit_code=1).succeeded
    assert not CommandResult(exit_code=-9).succeeded


def test_command_result_diagnostic_text_prefers_stderr() -> None:
    result = CommandResult(stdout="partial output", stderr="Error: boom", exit_code=1)

    assert result.diagnostic_text == "Error: boom"


def test_command_result_diagnostic_text_falls_back_to_stdout() -> None:
    result = CommandResult(stdout="Error: only on stdout", stderr="", exit_code=1)

    assert result.diagnostic_text == "Error: only on stdout"


def test_package_defaults_flags_to_false() -> None:
    package = Package(
        identity="jq", name="jq", full_name="jq", kind=PackageKind.FORMULA
    )

    assert package.is_installed is False
    assert package.is_outdated is False
    assert package.is_deprecated is False
    assert package.desc is None


def test_package_is_frozen() -> None:
    package = Package(identity="jq", name="jq", full_name="jq", kind=PackageKind.FORMULA)

    with pytest.raises(FrozenInstanceError):
        package.name = "yq"  # type: ignore[misc]


def test_brew_state_starts_idle_for_every_flow() -> None:
    state = BrewState()

    assert state.installed_packages == ()
    assert state.is_loading is False
    assert state.last_error is None
    assert dict(state.flow_status) == {flow: FlowStatus.IDLE for flow in Flow}


def test_brew_state_flow_status_is_read_only() -> None:
    state = BrewState()

    with pytest.raises(TypeError):
        state.flow_status[Flow.INSTALLED] = FlowStatus.READY  # type: ignore[index]


def test_brew_state_replace_leaves_previous_snapshot_untouched() -> None:
    before = BrewState()

    after = replace(before, is_loading=True, last_error="boom")

    assert before.is_loading is False
    assert before.last_error is None
    assert after.is_loading is True
    assert after.last_error == "boom"
