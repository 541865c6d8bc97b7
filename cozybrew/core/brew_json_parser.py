from dataclasses import replace
from typing import Any, Callable, TypeVar

from logly import logger

from .brew_output import extract_first_json_value
from .brew_types import (
    CaskRecord,
    FormulaRecord,
    InstalledVersion,
    Package,
    PackageKind,
    Tap,
)

_T = TypeVar("_T")


class PackageDecodeError(ValueError):
    """Raised when `brew` JSON output cannot be mapped onto the package model."""


def _optional_text(item: dict, key: str) -> str | None:
    """Reads an optional text field, coercing plain numbers to strings."""
    value = item.get(key)
    if value is None:
        return None
    if isinstance(value, str):
        return value
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    raise PackageDecodeError(f"field {key!r} must be a string, got {type(value).__name__}")


def _optional_flag(item: dict, key: str) -> bool | None:
    value = item.get(key)
    if value is None or isinstance(value, bool):
        return value
    raise PackageDecodeError(f"field {key!r} must be a boolean, got {type(value).__name__}")


def _optional_names(item: dict, key: str) -> tuple[str, ...] | None:
    value = item.get(key)
    if value is None:
        return None
    if not isinstance(value, list):
        raise PackageDecodeError(f"field {key!r} must be a list")
    return tuple(str(v) for v in value if isinstance(v, str))


def _installed_versions(item: dict) -> tuple[InstalledVersion, ...] | None:
    """Reads the install records of a package.

    `installed` is a list of objects for formulae; casks report a bare version
    string instead. `brew outdated` omits `installed` and sends
    `installed_versions` as a list of strings.
    """
    value = item.get("installed")
    if value is None and isinstance(item.get("installed_versions"), list):
        value = [{"version": v} for v in item["installed_versions"]]
    if value is None:
        return None
    if isinstance(value, str):
        return (InstalledVersion(version=value),)
    if not isinstance(value, list):
        raise PackageDecodeError("field 'installed' must be a list")

    versions: list[InstalledVersion] = []
    for entry in value:
        if isinstance(entry, str):
            versions.append(InstalledVersion(version=entry))
            continue
        if not isinstance(entry, dict):
            raise PackageDecodeError("install record must be an object")
        versions.append(
            InstalledVersion(
                version=_optional_text(entry, "version") or "",
                installed_on_request=bool(_optional_flag(entry, "installed_on_request")),
                installed_as_dependency=bool(
                    _optional_flag(entry, "installed_as_dependency")
                ),
            )
        )
    return tuple(versions)


def _version(item: dict) -> str | None:
    return _optional_text(item, "version") or _optional_text(item, "current_version")


def decode_formula(item: Any) -> FormulaRecord:
    """Decodes one entry of the `formulae` section.

    Args:
        item: A parsed JSON value.

    Returns:
        The decoded record. `identity` falls back to `name` and `full_name`
        falls back to `name` when upstream omits them.

    Raises:
        PackageDecodeError: If the entry is not an object, has no name, or a
            field has the wrong JSON type.
    """
    if not isinstance(item, dict):
        raise PackageDecodeError("formula entry must be an object")
    name = _optional_text(item, "name")
    if not name:
        raise PackageDecodeError("formula entry has no name")

    return FormulaRecord(
        identity=_optional_text(item, "id") or name,
        name=name,
        full_name=_optional_text(item, "full_name") or name,
        desc=_optional_text(item, "desc"),
        homepage=_optional_text(item, "homepage"),
        version=_version(item),
        installed=_installed_versions(item),
        dependencies=_optional_names(item, "dependencies"),
        build_dependencies=_optional_names(item, "build_dependencies"),
        conflicts_with=_optional_names(item, "conflicts_with"),
        pinned=_optional_flag(item, "pinned"),
        outdated=_optional_flag(item, "outdated"),
        deprecated=_optional_flag(item, "deprecated"),
        deprecation_reason=_optional_text(item, "deprecation_reason"),
        disabled=_optional_flag(item, "disabled"),
        disable_reason=_optional_text(item, "disable_reason"),
    )


def _cask_display_name(item: dict) -> str:
    """Returns the cask display name; a list of aliases yields its first entry."""
    value = item.get("name")
    if isinstance(value, list):
        for alias in value:
            if isinstance(alias, str):
                return alias
        return ""
    return _optional_text(item, "name") or ""


def decode_cask(item: Any) -> CaskRecord:
    """Decodes one entry of the `casks` section.

    Identity falls back through id, token, the first display-name alias and
    finally the empty string, so a missing id never fails the decode.

    Raises:
        PackageDecodeError: If the entry is not an object or a field has the
            wrong JSON type.
    """
    if not isinstance(item, dict):
        raise PackageDecodeError("cask entry must be an object")

    token = _optional_text(item, "token")
    name = _cask_display_name(item)

    return CaskRecord(
        identity=_optional_text(item, "id") or token or name,
        token=token or name,
        name=name,
        full_name=_optional_text(item, "full_name") or name,
        desc=_optional_text(item, "desc"),
        homepage=_optional_text(item, "homepage"),
        version=_version(item),
        installed=_installed_versions(item),
        outdated=_optional_flag(item, "outdated"),
        deprecated=_optional_flag(item, "deprecated"),
        deprecation_reason=_optional_text(item, "deprecation_reason"),
        disabled=_optional_flag(item, "disabled"),
        disable_reason=_optional_text(item, "disable_reason"),
        url=_optional_text(item, "url"),
        appcast=_optional_text(item, "appcast"),
    )


def package_from_formula(record: FormulaRecord) -> Package:
    return Package(
        identity=record.identity,
        name=record.name,
        full_name=record.full_name,
        kind=PackageKind.FORMULA,
        desc=record.desc,
        homepage=record.homepage,
        version=record.version,
        is_installed=bool(record.installed),
        is_outdated=bool(record.outdated),
        is_deprecated=bool(record.deprecated),
    )


def package_from_cask(record: CaskRecord) -> Package:
    return Package(
        identity=record.identity,
        name=record.name,
        full_name=record.full_name,
        kind=PackageKind.CASK,
        desc=record.desc,
        homepage=record.homepage,
        version=record.version,
        is_installed=bool(record.installed),
        is_outdated=bool(record.outdated),
        is_deprecated=bool(record.deprecated),
    )


def _decode_each(items: Any, label: str, decode: Callable[[Any], _T]) -> list[_T]:
    """Decodes every entry of a section, skipping entries that fail.

    Raises:
        PackageDecodeError: If the section itself is not a list.
    """
    if not isinstance(items, list):
        raise PackageDecodeError(f"{label} section must be a list")

    decoded: list[_T] = []
    for index, item in enumerate(items):
        try:
            decoded.append(decode(item))
        except PackageDecodeError as e:
            logger.warning(f"Skipping malformed {label} entry index={index}: {e}")
    return decoded


def mark_outdated(packages: list[Package]) -> list[Package]:
    """Flags packages taken from `brew outdated`, whose records omit `outdated`."""
    return [replace(p, is_outdated=True) for p in packages]


def decode_packages(items: Any, kind: PackageKind) -> list[Package]:
    """Decodes one section of a package envelope into unified packages.

    A malformed entry is logged and skipped; the remaining entries still
    decode.

    Args:
        items: The `formulae` or `casks` list.
        kind: Which record shape the section holds.

    Returns:
        Unified packages in upstream order.
    """
    if kind is PackageKind.FORMULA:
        return [
            package_from_formula(r) for r in _decode_each(items, "formula", decode_formula)
        ]
    return [package_from_cask(r) for r in _decode_each(items, "cask", decode_cask)]


def split_envelope(payload: Any) -> tuple[list | None, list | None]:
    """Splits a `{formulae?, casks?}` envelope into its two sections.

    Returns:
        `(formulae, casks)`; a missing or null section is None.

    Raises:
        PackageDecodeError: If the payload is not an object or a present
            section is not a list.
    """
    if not isinstance(payload, dict):
        raise PackageDecodeError("package envelope must be an object")

    sections: list[list | None] = []
    for key in ("formulae", "casks"):
        section = payload.get(key)
        if section is not None and not isinstance(section, list):
            raise PackageDecodeError(f"envelope section {key!r} must be a list")
        sections.append(section)
    return sections[0], sections[1]


def decode_package_envelope(payload: Any) -> list[Package]:
    """Decodes a whole envelope: formulae first, then casks."""
    formulae, casks = split_envelope(payload)
    return decode_packages(formulae or [], PackageKind.FORMULA) + decode_packages(
        casks or [], PackageKind.CASK
    )


def parse_json_payload(text: str) -> Any:
    """Parses the JSON payload out of `brew` stdout.

    Raises:
        PackageDecodeError: If the text holds no JSON value.
    """
    data = extract_first_json_value(text)
    if data is None:
        raise PackageDecodeError("brew output contains no JSON payload")
    return data


def parse_package_envelope(text: str) -> list[Package]:
    """Parses `brew list|outdated|search --json=v2` stdout into packages."""
    return decode_package_envelope(parse_json_payload(text))


def decode_tap(item: Any) -> Tap:
    """Decodes one tap entry.

    `user` and `repo` fall back to the halves of a `user/repo` name.

    Raises:
        PackageDecodeError: If the entry is not an object or has no name.
    """
    if not isinstance(item, dict):
        raise PackageDecodeError("tap entry must be an object")
    name = _optional_text(item, "name")
    if not name:
        raise PackageDecodeError("tap entry has no name")

    user, _, repo = name.partition("/")
    custom_remote = _optional_flag(item, "custom_remote")
    if custom_remote is None:
        custom_remote = _optional_flag(item, "customRemote")

    return Tap(
        identity=_optional_text(item, "id") or name,
        name=name,
        user=_optional_text(item, "user") or user,
        repo=_optional_text(item, "repo") or repo,
        path=_optional_text(item, "path") or "",
        remote=_optional_text(item, "remote"),
        official=_optional_flag(item, "official"),
        custom_remote=custom_remote,
        pinned=_optional_flag(item, "pinned"),
    )


def tap_section(payload: Any) -> list:
    """Returns the tap list from `{"taps": [...]}` or a bare list.

    Raises:
        PackageDecodeError: If neither shape matches.
    """
    if isinstance(payload, list):
        return payload
    if isinstance(payload, dict) and isinstance(payload.get("taps"), list):
        return payload["taps"]
    raise PackageDecodeError("tap payload must be a list or an object with 'taps'")


def decode_taps(items: Any) -> list[Tap]:
    """Decodes a tap list, skipping malformed entries."""
    return _decode_each(items, "tap", decode_tap)


def parse_tap_list(text: str) -> list[Tap]:
    """Parses `brew tap --json` stdout into taps."""
    return decode_taps(tap_section(parse_json_payload(text)))
