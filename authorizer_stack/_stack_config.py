"""Resolve raw stack inputs into a validated deployment configuration.

Resolution is a pure function over :class:`RawStackInputs`: it applies the
defaults, parses text values, checks every field and either returns a
:class:`DeploymentConfiguration` or raises a single :class:`ConfigError`
listing all violations.

Examples
--------
>>> config = resolve_configuration(
...     RawStackInputs(
...         client_id="a",
...         client_secret="b",
...         issuer_url="https://issuer",
...         reload_interval="10s",
...     )
... )
>>> config.reload_interval.total_seconds()
10.0
"""

from __future__ import annotations

import datetime as dt
import logging
import re
from dataclasses import dataclass
from urllib.parse import urlparse

from authorizer_stack._stack_errors import ConfigError
from authorizer_stack._stack_models import (
    DeploymentConfiguration,
    DeploymentEnvironment,
    LocalPackage,
    PackageSource,
    RawStackInputs,
    RemotePackage,
    Secret,
)

logger = logging.getLogger(__name__)

LOGGING_LEVELS = ("debug", "info", "warn", "error")
MIN_RELOAD_INTERVAL = dt.timedelta(seconds=1)
MAX_RELOAD_INTERVAL = dt.timedelta(minutes=1)

SEMVER_PATTERN = re.compile(
    r"^(0|[1-9]\d*)\.(0|[1-9]\d*)\.(0|[1-9]\d*)"
    r"(?:-((?:0|[1-9]\d*|\d*[a-zA-Z-][0-9a-zA-Z-]*)"
    r"(?:\.(?:0|[1-9]\d*|\d*[a-zA-Z-][0-9a-zA-Z-]*))*))?"
    r"(?:\+([0-9a-zA-Z-]+(?:\.[0-9a-zA-Z-]+)*))?$"
)
_DURATION_PATTERN = re.compile(r"^[+-]?(?:(?:\d+(?:\.\d*)?|\.\d+)(?:ns|us|µs|μs|ms|s|m|h))+$")
_DURATION_PART = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|μs|ms|s|m|h)")
# Nanoseconds per unit.
_DURATION_UNITS = {
    "ns": 1,
    "us": 1_000,
    "µs": 1_000,
    "μs": 1_000,
    "ms": 1_000_000,
    "s": 1_000_000_000,
    "m": 60 * 1_000_000_000,
    "h": 3600 * 1_000_000_000,
}


@dataclass(frozen=True, slots=True)
class StackDefaults:
    """Default values applied to unset inputs."""

    logging_level: str = "info"
    reload_interval: dt.timedelta = dt.timedelta(seconds=10)
    s3_bucket_name: str = "cloudentity-aws-api-gateway-authorizer"
    s3_authorizer_prefix: str = "cloudentity-aws-authorizer-v2-"
    s3_sync_prefix: str = "cloudentity-aws-authorizer-v2-sync-"
    authorizer_zip: str = "dist/authorizer.zip"
    sync_zip: str = "dist/sync.zip"
    stack_name: str = "CloudentityAWSAuthorizer"


def parse_bool(value: str | bool | None, *, default: bool = False) -> bool:
    """Parse a boolean flag given as text or ``bool``.

    Examples
    --------
    >>> parse_bool("YES")
    True
    >>> parse_bool(None)
    False
    """
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if not value.strip():
        return default
    return value.strip().lower() in ("true", "1", "yes")


def parse_duration(value: str) -> dt.timedelta:
    """Parse a Go-style duration string such as ``"10s"`` or ``"1m30s"``.

    Raises
    ------
    ValueError
        If ``value`` does not follow the duration grammar.

    Examples
    --------
    >>> parse_duration("1m30s").total_seconds()
    90.0
    >>> parse_duration("1500ms").total_seconds()
    1.5
    """
    text = value.strip()
    if text in ("0", "+0", "-0"):
        return dt.timedelta(0)
    if not _DURATION_PATTERN.match(text):
        msg = f"unparseable duration {value!r}"
        raise ValueError(msg)
    nanoseconds = sum(
        float(amount) * _DURATION_UNITS[unit]
        for amount, unit in _DURATION_PART.findall(text)
    )
    try:
        total = dt.timedelta(microseconds=nanoseconds / 1_000)
    except OverflowError as exc:
        msg = f"unparseable duration {value!r}"
        raise ValueError(msg) from exc
    return -total if text.startswith("-") else total


def format_duration(value: dt.timedelta) -> str:
    """Format a duration in the shortest whole-unit form.

    Examples
    --------
    >>> format_duration(dt.timedelta(seconds=10))
    '10s'
    >>> format_duration(dt.timedelta(minutes=1))
    '1m'
    """
    if value % dt.timedelta(minutes=1) == dt.timedelta(0) and value:
        return f"{value // dt.timedelta(minutes=1)}m"
    if value % dt.timedelta(seconds=1) == dt.timedelta(0):
        return f"{value // dt.timedelta(seconds=1)}s"
    return f"{value // dt.timedelta(milliseconds=1)}ms"


def is_semver(value: str) -> bool:
    """Return whether ``value`` follows semantic-version 2.0 grammar.

    Examples
    --------
    >>> is_semver("1.2.3-rc.1")
    True
    >>> is_semver("v1.2")
    False
    """
    return SEMVER_PATTERN.match(value) is not None


def _issuer_url_problem(value: str) -> str | None:
    """Describe why ``value`` is not a usable issuer URL, if it is not."""
    parsed = urlparse(value)
    if parsed.scheme not in ("http", "https"):
        return f"must be an http or https URL, got {value!r}"
    if not parsed.netloc:
        return f"must include a host, got {value!r}"
    return None


def _text(value: str | None) -> str | None:
    """Strip ``value`` and map blank strings to ``None``."""
    if value is None:
        return None
    stripped = value.strip()
    return stripped or None


def _parse_reload_interval(
    value: str | dt.timedelta | None,
    defaults: StackDefaults,
    violations: list[tuple[str, str]],
) -> dt.timedelta:
    if isinstance(value, dt.timedelta):
        interval = value
    elif (text := _text(value)) is None:
        interval = dt.timedelta(0)
    else:
        try:
            interval = parse_duration(text)
        except ValueError as exc:
            violations.append(("reloadInterval", str(exc)))
            return defaults.reload_interval
    # A zero interval counts as unset.
    if not interval:
        logger.debug("reloadInterval unset, using %s", format_duration(defaults.reload_interval))
        return defaults.reload_interval
    return interval


def _select_package(
    zip_path: str | None,
    *,
    fetch_remote: bool,
    bucket_name: str,
    object_prefix: str,
    version: str | None,
    fallback_zip: str,
) -> PackageSource:
    if zip_path is not None:
        return LocalPackage(path=zip_path)
    if fetch_remote:
        return RemotePackage(
            bucket_name=bucket_name,
            object_prefix=object_prefix,
            version=version or "",
        )
    return LocalPackage(path=fallback_zip)


def _validate(config: DeploymentConfiguration, violations: list[tuple[str, str]]) -> None:
    """Append a violation for every field that breaks its constraint."""
    if not config.client_id:
        violations.append(("clientID", "is required and must not be empty"))
    if not config.client_secret.reveal().strip():
        violations.append(("clientSecret", "is required and must not be empty"))
    if not config.issuer_url:
        violations.append(("issuerURL", "is required and must not be empty"))
    elif problem := _issuer_url_problem(config.issuer_url):
        violations.append(("issuerURL", problem))
    if config.version is not None and not is_semver(config.version):
        violations.append(
            ("version", f"must be a semantic version, got {config.version!r}")
        )
    if config.logging_level not in LOGGING_LEVELS:
        violations.append(
            (
                "loggingLevel",
                f"must be one of {', '.join(LOGGING_LEVELS)}, "
                f"got {config.logging_level!r}",
            )
        )
    if not MIN_RELOAD_INTERVAL <= config.reload_interval <= MAX_RELOAD_INTERVAL:
        violations.append(
            (
                "reloadInterval",
                "must be between 1s and 1m, "
                f"got {format_duration(config.reload_interval)}",
            )
        )
    remote_units = [
        unit
        for unit, source in (
            ("authorizer", config.authorizer_package),
            ("sync", config.sync_package),
        )
        if isinstance(source, RemotePackage) and not source.version
    ]
    if remote_units:
        violations.append(
            (
                "version",
                f"is required when the {' and '.join(remote_units)} "
                "package is fetched from the bucket",
            )
        )


def resolve_configuration(
    raw: RawStackInputs,
    defaults: StackDefaults | None = None,
) -> DeploymentConfiguration:
    """Resolve raw inputs into a validated :class:`DeploymentConfiguration`.

    Parameters
    ----------
    raw : RawStackInputs
        Inputs gathered from CLI, context file and environment.
    defaults : StackDefaults | None, optional
        Defaults for unset inputs (default: :class:`StackDefaults`).

    Returns
    -------
    DeploymentConfiguration
        Normalised configuration; resolving ``config.as_raw()`` again
        returns an equal value.

    Raises
    ------
    ConfigError
        If any field is missing, malformed or out of range.
    """
    defaults = defaults or StackDefaults()
    violations: list[tuple[str, str]] = []

    version = _text(raw.version)
    bucket_name = _text(raw.s3_bucket_name)
    authorizer_prefix = _text(raw.s3_authorizer_prefix)
    sync_prefix = _text(raw.s3_sync_prefix)
    # Any bucket setting opts units without a zip into the bucket; with none
    # given they fall back to the local build output.
    fetch_remote = any(
        value is not None
        for value in (version, bucket_name, authorizer_prefix, sync_prefix)
    )
    bucket_name = bucket_name or defaults.s3_bucket_name
    authorizer_prefix = authorizer_prefix or defaults.s3_authorizer_prefix
    sync_prefix = sync_prefix or defaults.s3_sync_prefix

    config = DeploymentConfiguration(
        authorizer_package=_select_package(
            _text(raw.authorizer_zip),
            fetch_remote=fetch_remote,
            bucket_name=bucket_name,
            object_prefix=authorizer_prefix,
            version=version,
            fallback_zip=defaults.authorizer_zip,
        ),
        sync_package=_select_package(
            _text(raw.sync_zip),
            fetch_remote=fetch_remote,
            bucket_name=bucket_name,
            object_prefix=sync_prefix,
            version=version,
            fallback_zip=defaults.sync_zip,
        ),
        manually_create_authorizer=parse_bool(raw.manually_create_authorizer),
        client_id=_text(raw.client_id) or "",
        client_secret=Secret(raw.client_secret or ""),
        issuer_url=_text(raw.issuer_url) or "",
        vpc_id=_text(raw.vpc_id),
        version=version,
        logging_level=_text(raw.logging_level) or defaults.logging_level,
        reload_interval=_parse_reload_interval(raw.reload_interval, defaults, violations),
        analytics_enabled=parse_bool(raw.analytics_enabled),
        inject_context=parse_bool(raw.inject_context),
        enforcement_allow_unknown=parse_bool(raw.enforcement_allow_unknown),
        http_client_root_ca=raw.http_client_root_ca or None,
        http_client_insecure_skip_verify=parse_bool(raw.http_client_insecure_skip_verify),
        s3_bucket_name=bucket_name,
        s3_authorizer_prefix=authorizer_prefix,
        s3_sync_prefix=sync_prefix,
        stack_name=_text(raw.stack_name) or defaults.stack_name,
        environment=DeploymentEnvironment(
            account=_text(raw.account),
            region=_text(raw.region),
        ),
    )

    _validate(config, violations)
    if violations:
        raise ConfigError(violations)

    logger.debug(
        "Resolved configuration for stack %s (client %s)",
        config.stack_name,
        config.client_id,
    )
    return config
