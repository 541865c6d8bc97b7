from cozybrew.core.brew_types import BrewArchitecture, BrewLocation
from cozybrew.infra import brew_locator
from cozybrew.infra.brew_locator import (
    APPLE_SILICON_PATH,
    INTEL_PATH,
    classify_path,
    locate,
)


def _existing(*paths: str):
    return lambda path: path in paths


def test_locate_prefers_apple_silicon_path(monkeypatch) -> None:
    monkeypatch.setattr(
        brew_locator.os.path, "exists", _existing(APPLE_SILICON_PATH, INTEL_PATH)
    )
    monkeypatch.setattr(brew_locator.shutil, "which", lambda _: "/somewhere/else/brew")

    assert locate() == BrewLocation(
        path=APPLE_SILICON_PATH, architecture=BrewArchitecture.APPLE_SILICON
    )


def test_locate_falls_back_to_intel_path(monkeypatch) -> None:
    monkeypatch.setattr(brew_locator.os.path, "exists", _existing(INTEL_PATH))

    assert locate() == BrewLocation(path=INTEL_PATH, architecture=BrewArchitecture.INTEL)


def test_locate_uses_path_lookup_when_no_well_known_path_exists(monkeypatch) -> None:
    monkeypatch.setattr(brew_locator.os.path, "exists", lambda _: False)
    monkeypatch.setattr(brew_locator.shutil, "which", lambda _: "/home/me/.brew/bin/brew")

    assert locate() == BrewLocation(
        path="/home/me/.brew/bin/brew", architecture=BrewArchitecture.CUSTOM
    )


def test_locate_returns_none_when_brew_is_missing(monkeypatch) -> None:
    monkeypatch.setattr(brew_locator.os.path, "exists", lambda _: False)
    monkeypatch.setattr(brew_locator.shutil, "which", lambda _: None)

    assert locate() is None


def test_locate_honors_existing_override(monkeypatch) -> None:
    monkeypatch.setattr(
        brew_locator.os.path, "exists", _existing("/custom/brew", APPLE_SILICON_PATH)
    )

    assert locate("/custom/brew") == BrewLocation(
        path="/custom/brew", architecture=BrewArchitecture.CUSTOM
    )


def test_locate_ignores_missing_override(monkeypatch) -> None:
    monkeypatch.setattr(brew_locator.os.path, "exists", _existing(INTEL_PATH))

    assert locate("/custom/brew").path == INTEL_PATH


def test_classify_path_by_prefix() -> None:
    assert classify_path("/opt/homebrew/bin/brew") is BrewArchitecture.APPLE_SILICON
    assert classify_path("/usr/local/bin/brew") is BrewArchitecture.INTEL
    assert classify_path("/nix/store/brew") is BrewArchitecture.CUSTOM
