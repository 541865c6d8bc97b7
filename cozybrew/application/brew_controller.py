import asyncio
import os
from dataclasses import replace
from types import MappingProxyType
from typing import Any, Awaitable, Callable, Sequence

from logly import logger
from PySide6.QtCore import QObject, Signal

from cozybrew.config import BrewSettings, load_settings
from cozybrew.core.brew_json_parser import (
    PackageDecodeError,
    decode_packages,
    decode_taps,
    mark_outdated,
    parse_json_payload,
    split_envelope,
    tap_section,
)
from cozybrew.core.brew_types import (
    BrewState,
    CommandResult,
    Flow,
    FlowStatus,
    Package,
    PackageKind,
)
from cozybrew.infra.brew_cache import BrewCache, CacheDecodeError, CacheKey
from cozybrew.infra.brew_installer import install_homebrew
from cozybrew.infra.brew_locator import locate
from cozybrew.infra.brew_process import (
    BrewProcess,
    BrewProcessError,
    OutputCallback,
    OutputSink,
)

from .errors import (
    BrewControllerError,
    BrewNotAvailableError,
    InstallFailedError,
    UninstallFailedError,
    UpdateFailedError,
    UpgradeFailedError,
)

_NO_SEARCH_MATCHES = "no formulae or casks found"


def build_package_args(subcommand: str, package: Package) -> list[str]:
    """Builds `<subcommand> [--cask] <full name>` for a single package."""
    args = [subcommand]
    if package.kind is PackageKind.CASK:
        args.append("--cask")
    args.append(package.full_name)
    return args


class BrewController(QObject):
    """Owns the published Homebrew state and runs every `brew` operation.

    Read flows serve cached data first, then replace it with a live fetch.
    Write flows run the mutation and re-sync through the read flows; they
    never edit the published package lists themselves.
    """

    state_changed = Signal(object)  # BrewState
    log = Signal(str)
    error = Signal(str)
    busy_changed = Signal(bool)
    job_started = Signal(str)
    job_finished = Signal(str, int)  # label, returncode

    def __init__(
        self,
        settings: BrewSettings | None = None,
        brew_path: str | None = None,
        cache: BrewCache | None = None,
        parent: QObject | None = None,
    ):
        """Initializes the controller and resolves the `brew` backend once.

        Args:
            settings: Resolved settings; loaded from the environment if omitted.
            brew_path: Explicit `brew` path that skips auto-detection.
            cache: Result cache; built from `settings` if omitted.
            parent: Optional Qt parent object.
        """
        super().__init__(parent)
        self._settings = settings or load_settings()
        self._cache = cache or BrewCache(
            self._settings.cache_dir,
            default_ttl=self._settings.cache_ttl,
            ttl_by_key=self._settings.cache_ttl_by_key,
        )
        self._explicit_path = brew_path
        self._process: BrewProcess | None = None
        self._state = BrewState()
        self._job_ids: dict[Flow, int] = {flow: 0 for flow in Flow}
        self._in_flight = 0

        self.relocate()

    @property
    def state(self) -> BrewState:
        """The current published snapshot."""
        return self._state

    @property
    def cache(self) -> BrewCache:
        return self._cache

    def relocate(self) -> str | None:
        """Re-resolves the `brew` executable and republishes availability.

        Returns:
            The resolved path, or None if Homebrew is not available.
        """
        if self._explicit_path is not None:
            path: str | None = self._explicit_path
            available = os.path.exists(self._explicit_path)
        else:
            location = locate(self._settings.brew_path)
            path = location.path if location else None
            available = location is not None

        self._process = (
            BrewProcess(path, env=self._settings.brew_env) if available and path else None
        )
        logger.info(f"brew backend available={available} path={path}")
        self._publish(is_backend_available=available, backend_path=path)
        return path if available else None

    # ---- publishing

    def _publish(self, **changes: Any) -> None:
        self._state = replace(self._state, **changes)
        self.state_changed.emit(self._state)

    def _with_flow(self, flow: Flow, status: FlowStatus) -> MappingProxyType:
        return MappingProxyType({**self._state.flow_status, flow: status})

    def _next_job(self, flow: Flow) -> int:
        self._job_ids[flow] += 1
        return self._job_ids[flow]

    def _is_current(self, flow: Flow, job_id: int) -> bool:
        return self._job_ids[flow] == job_id

    def _enter_busy(self, label: str) -> None:
        self._in_flight += 1
        self.job_started.emit(label)
        if self._in_flight == 1:
            self.busy_changed.emit(True)

    def _leave_busy(self, label: str, returncode: int) -> None:
        self._in_flight -= 1
        self.job_finished.emit(label, returncode)
        if self._in_flight == 0:
            self.busy_changed.emit(False)

    def _begin_flow(self, flow: Flow, label: str) -> None:
        self._enter_busy(label)
        self.log.emit(f"$ {label}")
        self._publish(
            is_loading=True,
            last_error=None,
            flow_status=self._with_flow(flow, FlowStatus.LOADING),
        )

    def _end_flow(
        self, flow: Flow, job_id: int, label: str, status: FlowStatus, returncode: int
    ) -> None:
        changes: dict[str, Any] = {"is_loading": self._in_flight > 1}
        if self._is_current(flow, job_id):
            changes["flow_status"] = self._with_flow(flow, status)
        self._publish(**changes)
        self._leave_busy(label, returncode)

    def _report_failure(self, message: str) -> None:
        logger.error(message)
        self._publish(last_error=message)
        self.error.emit(f"[error] {message}")

    def _fail_unavailable(self, flow: Flow) -> None:
        self._next_job(flow)
        self._report_failure(BrewNotAvailableError.message)
        self._publish(flow_status=self._with_flow(flow, FlowStatus.FAILED))

    # ---- cache access

    async def _load_cached(self, key: CacheKey) -> Any | None:
        try:
            return await asyncio.to_thread(self._cache.load, key)
        except CacheDecodeError as e:
            logger.warning(f"{e}; discarding entry")
        except OSError as e:
            logger.warning(f"Cache read failed key={key.value}: {e}")
            return None
        await asyncio.to_thread(self._cache.remove, key)
        return None

    async def _save_cached(self, key: CacheKey, value: Any) -> None:
        try:
            await asyncio.to_thread(self._cache.save, key, value)
        except (OSError, TypeError) as e:
            logger.warning(f"Cache write failed key={key.value}: {e}")

    async def _load_cached_packages(
        self, formulae_key: CacheKey, casks_key: CacheKey
    ) -> list[Package] | None:
        """Decodes both cached sections; None when neither is cached."""
        packages: list[Package] = []
        found = False
        for key, kind in ((formulae_key, PackageKind.FORMULA), (casks_key, PackageKind.CASK)):
            section = await self._load_cached(key)
            if section is None:
                continue
            try:
                packages.extend(decode_packages(section, kind))
            except PackageDecodeError as e:
                logger.warning(f"Cached section unusable key={key.value}: {e}")
                await asyncio.to_thread(self._cache.remove, key)
                continue
            found = True
        return packages if found else None

    # ---- read flows

    async def _run_read(self, args: Sequence[str]) -> CommandResult:
        # relocate() may have dropped the backend while the flow was waiting.
        process = self._process
        if process is None:
            raise BrewProcessError(["brew", *args], FileNotFoundError("brew is not available"))
        return await process.run(args)

    async def _refresh_packages(
        self,
        flow: Flow,
        args: Sequence[str],
        formulae_key: CacheKey,
        casks_key: CacheKey,
        field_name: str,
        outdated_listing: bool = False,
    ) -> None:
        if self._process is None:
            self._fail_unavailable(flow)
            return

        label = f"brew {' '.join(args)}"
        job_id = self._next_job(flow)
        self._begin_flow(flow, label)
        status, returncode = FlowStatus.FAILED, 1
        try:
            cached = await self._load_cached_packages(formulae_key, casks_key)
            if cached is not None and outdated_listing:
                cached = mark_outdated(cached)
            if cached is not None and self._is_current(flow, job_id):
                self._publish(**{field_name: tuple(cached)})

            result = await self._run_read(args)
            if not result.succeeded:
                returncode = result.exit_code
                if self._is_current(flow, job_id):
                    self._report_failure(result.diagnostic_text)
                return

            formulae, casks = split_envelope(parse_json_payload(result.stdout))
            packages = decode_packages(formulae or [], PackageKind.FORMULA)
            packages += decode_packages(casks or [], PackageKind.CASK)
            if outdated_listing:
                packages = mark_outdated(packages)
            if self._is_current(flow, job_id):
                self._publish(**{field_name: tuple(packages)})
                self.log.emit(f"[loaded] {len(packages)} packages")
                await self._save_cached(formulae_key, formulae or [])
                await self._save_cached(casks_key, casks or [])
            status, returncode = FlowStatus.READY, 0
        except (BrewProcessError, PackageDecodeError) as e:
            if self._is_current(flow, job_id):
                self._report_failure(f"Failed to run {label}: {e}")
        finally:
            self._end_flow(flow, job_id, label, status, returncode)

    async def refresh_installed(self) -> None:
        """Loads installed formulae and casks via `brew list --json=v2`."""
        await self._refresh_packages(
            Flow.INSTALLED,
            ["list", "--json=v2"],
            CacheKey.INSTALLED_FORMULAE,
            CacheKey.INSTALLED_CASKS,
            "installed_packages",
        )

    async def refresh_outdated(self) -> None:
        """Loads upgradable packages via `brew outdated --json=v2`."""
        await self._refresh_packages(
            Flow.OUTDATED,
            ["outdated", "--json=v2"],
            CacheKey.OUTDATED_FORMULAE,
            CacheKey.OUTDATED_CASKS,
            "outdated_packages",
            outdated_listing=True,
        )

    async def refresh_taps(self) -> None:
        """Loads registered taps via `brew tap --json`."""
        if self._process is None:
            self._fail_unavailable(Flow.TAPS)
            return

        args = ["tap", "--json"]
        label = f"brew {' '.join(args)}"
        job_id = self._next_job(Flow.TAPS)
        self._begin_flow(Flow.TAPS, label)
        status, returncode = FlowStatus.FAILED, 1
        try:
            cached = await self._load_cached(CacheKey.TAPS)
            if cached is not None:
                try:
                    stale = decode_taps(cached)
                except PackageDecodeError as e:
                    logger.warning(f"Cached taps unusable: {e}")
                    await asyncio.to_thread(self._cache.remove, CacheKey.TAPS)
                else:
                    if self._is_current(Flow.TAPS, job_id):
                        self._publish(taps=tuple(stale))

            result = await self._run_read(args)
            if not result.succeeded:
                returncode = result.exit_code
                if self._is_current(Flow.TAPS, job_id):
                    self._report_failure(result.diagnostic_text)
                return

            section = tap_section(parse_json_payload(result.stdout))
            taps = decode_taps(section)
            if self._is_current(Flow.TAPS, job_id):
                self._publish(taps=tuple(taps))
                self.log.emit(f"[loaded] {len(taps)} taps")
                await self._save_cached(CacheKey.TAPS, section)
            status, returncode = FlowStatus.READY, 0
        except (BrewProcessError, PackageDecodeError) as e:
            if self._is_current(Flow.TAPS, job_id):
                self._report_failure(f"Failed to run {label}: {e}")
        finally:
            self._end_flow(Flow.TAPS, job_id, label, status, returncode)

    async def refresh_all(self) -> None:
        """Refreshes installed packages, outdated packages and taps concurrently."""
        await asyncio.gather(
            self.refresh_installed(), self.refresh_outdated(), self.refresh_taps()
        )

    async def search(self, query: str) -> None:
        """Searches formulae and casks via `brew search --json=v2`.

        Search is never cached. An empty query clears the results.
        """
        q = query.strip()
        if not q:
            # Any search still in flight is superseded by the cleared results.
            self._next_job(Flow.SEARCH)
            self._publish(
                search_results=(),
                flow_status=self._with_flow(Flow.SEARCH, FlowStatus.IDLE),
            )
            return
        if self._process is None:
            self._publish(search_results=())
            self._fail_unavailable(Flow.SEARCH)
            return

        args = ["search", "--json=v2", q]
        label = f"brew search {q}"
        job_id = self._next_job(Flow.SEARCH)
        self._begin_flow(Flow.SEARCH, label)
        status, returncode = FlowStatus.FAILED, 1
        try:
            result = await self._run_read(args)
            if not result.succeeded:
                returncode = result.exit_code
                if not self._is_current(Flow.SEARCH, job_id):
                    return
                # brew exits 1 when nothing matches; that is an empty result, not a failure.
                if _NO_SEARCH_MATCHES in result.diagnostic_text.lower():
                    self.log.emit("WARN  No matches found.")
                    self._publish(search_results=())
                    status, returncode = FlowStatus.READY, 0
                    return
                self._publish(search_results=())
                self._report_failure(result.diagnostic_text)
                return

            formulae, casks = split_envelope(parse_json_payload(result.stdout))
            packages = decode_packages(formulae or [], PackageKind.FORMULA)
            packages += decode_packages(casks or [], PackageKind.CASK)
            if self._is_current(Flow.SEARCH, job_id):
                self._publish(search_results=tuple(packages))
            status, returncode = FlowStatus.READY, 0
        except (BrewProcessError, PackageDecodeError) as e:
            if self._is_current(Flow.SEARCH, job_id):
                self._publish(search_results=())
                self._report_failure(f"Failed to run {label}: {e}")
        finally:
            self._end_flow(Flow.SEARCH, job_id, label, status, returncode)

    # ---- write flows

    async def _mutate(
        self,
        args: list[str],
        error_cls: type[BrewControllerError],
        on_output: OutputCallback | OutputSink | None,
        refreshers: Sequence[Callable[[], Awaitable[None]]],
    ) -> None:
        if self._process is None:
            self._report_failure(BrewNotAvailableError.message)
            raise BrewNotAvailableError()

        label = f"brew {' '.join(args)}"
        user_sink = (
            on_output
            if on_output is None or isinstance(on_output, OutputSink)
            else OutputSink(on_output)
        )

        def forward(line: str) -> None:
            self.log.emit(line)
            if user_sink is not None:
                user_sink(line)

        self._enter_busy(label)
        self.log.emit(f"$ {label}")
        self._publish(is_loading=True)
        returncode = 1
        try:
            try:
                result = await self._process.run(args, on_output=forward)
            except BrewProcessError as e:
                failure = error_cls(str(e))
                self._report_failure(str(failure))
                raise failure from e

            returncode = result.exit_code
            if not result.succeeded:
                failure = error_cls(result.diagnostic_text)
                self._report_failure(str(failure))
                raise failure

            for refresh in refreshers:
                await refresh()
        finally:
            self._publish(is_loading=self._in_flight > 1)
            self._leave_busy(label, returncode)

    async def install(
        self, package: Package, on_output: OutputCallback | OutputSink | None = None
    ) -> None:
        """Installs `package`, then refreshes the installed list.

        Raises:
            BrewNotAvailableError: If Homebrew is not available.
            InstallFailedError: If `brew install` fails.
        """
        await self._mutate(
            build_package_args("install", package),
            InstallFailedError,
            on_output,
            [self.refresh_installed],
        )

    async def uninstall(
        self, package: Package, on_output: OutputCallback | OutputSink | None = None
    ) -> None:
        """Uninstalls `package`, then refreshes the installed list."""
        await self._mutate(
            build_package_args("uninstall", package),
            UninstallFailedError,
            on_output,
            [self.refresh_installed],
        )

    async def upgrade(
        self, package: Package, on_output: OutputCallback | OutputSink | None = None
    ) -> None:
        """Upgrades `package`, then refreshes the installed and outdated lists."""
        await self._mutate(
            build_package_args("upgrade", package),
            UpgradeFailedError,
            on_output,
            [self.refresh_installed, self.refresh_outdated],
        )

    async def upgrade_all(
        self, on_output: OutputCallback | OutputSink | None = None
    ) -> None:
        """Upgrades every outdated package via bare `brew upgrade`."""
        await self._mutate(
            ["upgrade"],
            UpgradeFailedError,
            on_output,
            [self.refresh_installed, self.refresh_outdated],
        )

    async def update(self, on_output: OutputCallback | OutputSink | None = None) -> None:
        """Fetches the newest package definitions via `brew update`."""
        await self._mutate(["update"], UpdateFailedError, on_output, [self.refresh_outdated])

    # ---- maintenance

    async def clear_cache(self) -> None:
        """Drops every cached response; the next refresh goes straight to `brew`."""
        await asyncio.to_thread(self._cache.clear_all)
        self.log.emit("[info] cache cleared")

    async def homebrew_prefix(self) -> str | None:
        """Returns `brew --prefix` for the current backend.

        Returns:
            The installation root, or None if Homebrew is unavailable, the
            command fails or it prints nothing.
        """
        process = self._process
        if process is None:
            return None
        try:
            result = await process.run(["--prefix"])
        except BrewProcessError as e:
            logger.warning(f"brew --prefix failed: {e}")
            return None
        if not result.succeeded:
            logger.warning(f"brew --prefix failed exit_code={result.exit_code}")
            return None
        return result.stdout.strip() or None

    async def install_backend(
        self, on_output: OutputCallback | OutputSink | None = None
    ) -> CommandResult:
        """Runs the Homebrew installer, then re-resolves the backend on success.

        Returns:
            The installer result. A spawn failure is reported as exit code 1
            with the error text on stderr.
        """
        label = "install homebrew"
        self._enter_busy(label)
        returncode = 1
        try:
            try:
                result = await install_homebrew(on_output)
            except BrewProcessError as e:
                result = CommandResult(stderr=str(e), exit_code=1)
            returncode = result.exit_code
        finally:
            self._leave_busy(label, returncode)

        if result.succeeded:
            self.relocate()
        else:
            self._report_failure(result.diagnostic_text)
        return result
