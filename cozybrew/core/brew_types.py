from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Mapping


class BrewArchitecture(Enum):
    """Install variant of a located `brew` binary."""

    APPLE_SILICON = "apple_silicon"
    INTEL = "intel"
    CUSTOM = "custom"


@dataclass(frozen=True, slots=True)
class BrewLocation:
    """A resolved `brew` executable.

    Attributes:
        path: Absolute path to the executable.
        architecture: Install variant. For `CUSTOM` the path itself is the
            variant payload.
    """

    path: str
    architecture: BrewArchitecture


@dataclass(frozen=True, slots=True)
class CommandResult:
    """Captured outcome of one external process run."""

    stdout: str = ""
    stderr: str = ""
    exit_code: int = 0

    @property
    def succeeded(self) -> bool:
        return self.exit_code == 0

    @property
    def diagnostic_text(self) -> str:
        """Text to show the user: stderr, or stdout when stderr is empty."""
        return self.stderr if self.stderr else self.stdout


class PackageKind(Enum):
    FORMULA = "formula"
    CASK = "cask"


@dataclass(frozen=True, slots=True)
class InstalledVersion:
    """One install record of a package (multi-version installs carry several)."""

    version: str
    installed_on_request: bool = False
    installed_as_dependency: bool = False


@dataclass(frozen=True, slots=True)
class FormulaRecord:
    """A build-from-source package as reported by `brew ... --json=v2`.

    Attributes:
        identity: Stable id (falls back to `name`).
        name: Short formula name (e.g. "wget").
        full_name: Tap-qualified name (falls back to `name`).
        installed: Install records, or None when the field is absent.
    """

    identity: str
    name: str
    full_name: str
    desc: str | None = None
    homepage: str | None = None
    version: str | None = None
    installed: tuple[InstalledVersion, ...] | None = None
    dependencies: tuple[str, ...] | None = None
    build_dependencies: tuple[str, ...] | None = None
    conflicts_with: tuple[str, ...] | None = None
    pinned: bool | None = None
    outdated: bool | None = None
    deprecated: bool | None = None
    deprecation_reason: str | None = None
    disabled: bool | None = None
    disable_reason: str | None = None


@dataclass(frozen=True, slots=True)
class CaskRecord:
    """A binary-distribution package as reported by `brew ... --json=v2`.

    Attributes:
        identity: Stable id (id -> token -> first display name -> "").
        token: Cask token (e.g. "visual-studio-code").
        name: Display name; the first alias when upstream sends a list.
        full_name: Tap-qualified name (falls back to `name`).
    """

    identity: str
    token: str
    name: str
    full_name: str
    desc: str | None = None
    homepage: str | None = None
    version: str | None = None
    installed: tuple[InstalledVersion, ...] | None = None
    outdated: bool | None = None
    deprecated: bool | None = None
    deprecation_reason: str | None = None
    disabled: bool | None = None
    disable_reason: str | None = None
    url: str | None = None
    appcast: str | None = None


@dataclass(frozen=True, slots=True)
class Package:
    """Unified view of a formula or cask.

    This is the only package type handed out of the core. Instances are
    rebuilt on every refresh.
    """

    identity: str
    name: str
    full_name: str
    kind: PackageKind
    desc: str | None = None
    homepage: str | None = None
    version: str | None = None
    is_installed: bool = False
    is_outdated: bool = False
    is_deprecated: bool = False


@dataclass(frozen=True, slots=True)
class Tap:
    """A registered third-party repository of package definitions."""

    identity: str
    name: str
    user: str = ""
    repo: str = ""
    path: str = ""
    remote: str | None = None
    official: bool | None = None
    custom_remote: bool | None = None
    pinned: bool | None = None


class Flow(Enum):
    """Logical read flows published by the controller."""

    INSTALLED = "installed"
    OUTDATED = "outdated"
    TAPS = "taps"
    SEARCH = "search"


class FlowStatus(Enum):
    IDLE = "idle"
    LOADING = "loading"
    READY = "ready"
    FAILED = "failed"


def _idle_flows() -> Mapping[Flow, FlowStatus]:
    return MappingProxyType({flow: FlowStatus.IDLE for flow in Flow})


@dataclass(frozen=True, slots=True)
class BrewState:
    """Immutable snapshot of everything the controller publishes.

    The controller replaces the whole snapshot on every change, so a reader
    never sees a half-applied update.
    """

    installed_packages: tuple[Package, ...] = ()
    outdated_packages: tuple[Package, ...] = ()
    search_results: tuple[Package, ...] = ()
    taps: tuple[Tap, ...] = ()
    is_loading: bool = False
    last_error: str | None = None
    is_backend_available: bool = False
    backend_path: str | None = None
    flow_status: Mapping[Flow, FlowStatus] = field(default_factory=_idle_flows)
