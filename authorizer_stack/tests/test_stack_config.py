"""Unit tests for configuration resolution."""

from __future__ import annotations

import dataclasses
import datetime as dt
import logging

import pytest

from authorizer_stack._stack_config import (
    StackDefaults,
    format_duration,
    is_semver,
    parse_bool,
    parse_duration,
    resolve_configuration,
)
from authorizer_stack._stack_errors import ConfigError
from authorizer_stack._stack_models import LocalPackage, RawStackInputs, RemotePackage


def test_resolve_configuration_applies_defaults(raw_inputs: RawStackInputs) -> None:
    config = resolve_configuration(raw_inputs)

    assert config.logging_level == "info", "Logging level should default to info"
    assert config.reload_interval == dt.timedelta(seconds=10), "Reload should default to 10s"
    assert config.manually_create_authorizer is False, "Auto-binding is the default"
    assert config.vpc_id is None, "No network should be reused by default"
    assert config.stack_name == "CloudentityAWSAuthorizer", "Default stack name expected"
    assert config.s3_bucket_name == "cloudentity-aws-api-gateway-authorizer"
    assert config.s3_authorizer_prefix == "cloudentity-aws-authorizer-v2-"
    assert config.s3_sync_prefix == "cloudentity-aws-authorizer-v2-sync-"
    assert config.authorizer_package == LocalPackage("dist/authorizer.zip"), (
        "Authorizer package should fall back to the local build output"
    )
    assert config.sync_package == LocalPackage("dist/sync.zip"), (
        "Sync package should fall back to the local build output"
    )


def test_resolve_configuration_uses_custom_defaults(raw_inputs: RawStackInputs) -> None:
    defaults = StackDefaults(logging_level="warn", stack_name="Staging")
    config = resolve_configuration(raw_inputs, defaults)
    assert config.logging_level == "warn", "Custom default logging level should apply"
    assert config.stack_name == "Staging", "Custom default stack name should apply"


def test_resolve_configuration_strips_and_parses_values(raw_inputs: RawStackInputs) -> None:
    raw = dataclasses.replace(
        raw_inputs,
        client_id="  padded  ",
        vpc_id="vpc-0abc",
        reload_interval="1500ms",
        manually_create_authorizer="TRUE",
        analytics_enabled=True,
        inject_context="yes",
        enforcement_allow_unknown="0",
        logging_level="debug",
        account="123456789012",
        region="eu-central-1",
    )
    config = resolve_configuration(raw)

    assert config.client_id == "padded", "Client id should be stripped"
    assert config.vpc_id == "vpc-0abc", "VPC id should be kept"
    assert config.reload_interval == dt.timedelta(milliseconds=1500)
    assert config.manually_create_authorizer is True, "TRUE should parse as true"
    assert config.analytics_enabled is True
    assert config.inject_context is True, "yes should parse as true"
    assert config.enforcement_allow_unknown is False, "0 should parse as false"
    assert config.environment.account == "123456789012"
    assert config.environment.region == "eu-central-1"


def test_local_zip_wins_over_remote_settings(raw_inputs: RawStackInputs) -> None:
    raw = dataclasses.replace(
        raw_inputs,
        authorizer_zip="build/authorizer.zip",
        version="2.0.0",
    )
    config = resolve_configuration(raw)

    assert config.authorizer_package == LocalPackage("build/authorizer.zip"), (
        "Explicit zip should select a local package"
    )
    assert isinstance(config.sync_package, RemotePackage), (
        "Sync unit should be fetched when a version is set and no zip is given"
    )


def test_remote_package_key_contains_version(raw_inputs: RawStackInputs) -> None:
    config = resolve_configuration(dataclasses.replace(raw_inputs, version="1.2.3"))

    assert isinstance(config.authorizer_package, RemotePackage)
    assert isinstance(config.sync_package, RemotePackage)
    assert config.authorizer_package.object_key == "cloudentity-aws-authorizer-v2-1.2.3.zip"
    assert config.sync_package.object_key == "cloudentity-aws-authorizer-v2-sync-1.2.3.zip"
    assert "1.2.3" in config.sync_package.object_key, "Object key should carry the version"


def test_remote_package_without_version_is_rejected(raw_inputs: RawStackInputs) -> None:
    raw = dataclasses.replace(raw_inputs, s3_bucket_name="my-releases")
    with pytest.raises(ConfigError) as excinfo:
        resolve_configuration(raw)
    assert excinfo.value.field == "version", "Missing version should be reported"
    assert "authorizer and sync" in excinfo.value.reason


@pytest.mark.parametrize(
    ("override", "field"),
    [
        ({"client_id": ""}, "clientID"),
        ({"client_id": "   "}, "clientID"),
        ({"client_secret": None}, "clientSecret"),
        ({"client_secret": "  "}, "clientSecret"),
        ({"issuer_url": ""}, "issuerURL"),
        ({"issuer_url": "not a url"}, "issuerURL"),
        ({"issuer_url": "ftp://issuer.example.test"}, "issuerURL"),
        ({"issuer_url": "https://"}, "issuerURL"),
        ({"version": "v1.2"}, "version"),
        ({"logging_level": "trace"}, "loggingLevel"),
        ({"reload_interval": "soon"}, "reloadInterval"),
        ({"reload_interval": "10"}, "reloadInterval"),
        ({"reload_interval": "99999999999h"}, "reloadInterval"),
        ({"reload_interval": "9" * 400 + "s"}, "reloadInterval"),
        ({"reload_interval": "500ms"}, "reloadInterval"),
        ({"reload_interval": "61s"}, "reloadInterval"),
        ({"reload_interval": "2m"}, "reloadInterval"),
    ],
)
def test_resolve_configuration_reports_invalid_field(
    raw_inputs: RawStackInputs,
    override: dict[str, str | None],
    field: str,
) -> None:
    with pytest.raises(ConfigError) as excinfo:
        resolve_configuration(dataclasses.replace(raw_inputs, **override))
    assert excinfo.value.fields() == (field,), f"Only {field} should be reported"


@pytest.mark.parametrize("interval", ["0", "0s", "0ms", dt.timedelta(0)])
def test_zero_reload_interval_uses_default(
    raw_inputs: RawStackInputs,
    interval: str | dt.timedelta,
) -> None:
    config = resolve_configuration(dataclasses.replace(raw_inputs, reload_interval=interval))
    assert config.reload_interval == dt.timedelta(seconds=10), (
        "A zero interval should fall back to the 10s default"
    )


@pytest.mark.parametrize("interval", ["1s", "60s", "1m", "1m0s", "30s"])
def test_reload_interval_bounds_are_inclusive(
    raw_inputs: RawStackInputs,
    interval: str,
) -> None:
    config = resolve_configuration(dataclasses.replace(raw_inputs, reload_interval=interval))
    assert dt.timedelta(seconds=1) <= config.reload_interval <= dt.timedelta(minutes=1)


def test_resolve_configuration_collects_every_violation() -> None:
    raw = RawStackInputs(logging_level="loud", reload_interval="5m")
    with pytest.raises(ConfigError) as excinfo:
        resolve_configuration(raw)

    assert set(excinfo.value.fields()) == {
        "clientID",
        "clientSecret",
        "issuerURL",
        "loggingLevel",
        "reloadInterval",
    }, "All violations should be collected"
    assert str(excinfo.value).startswith("invalid stack configuration: ")


@pytest.mark.parametrize(
    "override",
    [
        {},
        {"version": "1.2.3", "region": "us-west-2"},
        {"authorizer_zip": "a.zip", "version": "3.1.0-rc.1", "reload_interval": "1500ms"},
        {"sync_zip": "s.zip", "authorizer_zip": "a.zip", "vpc_id": "vpc-1"},
        {
            "manually_create_authorizer": "true",
            "http_client_root_ca": "-----BEGIN CERTIFICATE-----",
            "http_client_insecure_skip_verify": True,
            "stack_name": "Prod",
        },
    ],
)
def test_resolve_configuration_is_idempotent(
    raw_inputs: RawStackInputs,
    override: dict[str, object],
) -> None:
    config = resolve_configuration(dataclasses.replace(raw_inputs, **override))
    again = resolve_configuration(config.as_raw())
    assert again == config, "Resolving a resolved configuration should change nothing"


def test_client_secret_is_never_exposed(
    raw_inputs: RawStackInputs,
    caplog: pytest.LogCaptureFixture,
) -> None:
    caplog.set_level(logging.DEBUG)
    config = resolve_configuration(raw_inputs)

    assert config.client_secret.reveal() == "s3cr3t-value"
    assert "s3cr3t-value" not in repr(config), "Secret must not appear in repr"
    assert "s3cr3t-value" not in repr(raw_inputs), "Secret must not appear in raw repr"
    assert "s3cr3t-value" not in caplog.text, "Secret must not be logged"

    with pytest.raises(ConfigError) as excinfo:
        resolve_configuration(dataclasses.replace(raw_inputs, issuer_url=""))
    assert "s3cr3t-value" not in str(excinfo.value), "Secret must not appear in errors"


@pytest.mark.parametrize(
    ("value", "expected"),
    [
        ("true", True),
        ("Yes", True),
        ("1", True),
        ("false", False),
        ("no", False),
        ("", False),
        (None, False),
        (True, True),
    ],
)
def test_parse_bool(value: str | bool | None, expected: bool) -> None:
    assert parse_bool(value) is expected, f"{value!r} should parse as {expected}"


def test_parse_bool_default() -> None:
    assert parse_bool(None, default=True) is True
    assert parse_bool("  ", default=True) is True


@pytest.mark.parametrize(
    ("text", "seconds"),
    [
        ("10s", 10.0),
        ("1m", 60.0),
        ("1m30s", 90.0),
        ("1h", 3600.0),
        ("1.5s", 1.5),
        ("250ms", 0.25),
        ("0", 0.0),
        ("-2s", -2.0),
    ],
)
def test_parse_duration(text: str, seconds: float) -> None:
    assert parse_duration(text).total_seconds() == seconds


@pytest.mark.parametrize(
    "text",
    ["", "10", "s", "ten seconds", "1d", "99999999999h", "1" + "0" * 400 + "s"],
)
def test_parse_duration_rejects_malformed_text(text: str) -> None:
    with pytest.raises(ValueError, match="unparseable duration"):
        parse_duration(text)


@pytest.mark.parametrize(
    ("value", "expected"),
    [
        (dt.timedelta(seconds=10), "10s"),
        (dt.timedelta(seconds=60), "1m"),
        (dt.timedelta(seconds=90), "90s"),
        (dt.timedelta(milliseconds=1500), "1500ms"),
        (dt.timedelta(0), "0s"),
    ],
)
def test_format_duration(value: dt.timedelta, expected: str) -> None:
    assert format_duration(value) == expected


@pytest.mark.parametrize(
    ("value", "expected"),
    [
        ("1.2.3", True),
        ("0.0.1-alpha.1+build.5", True),
        ("1.2", False),
        ("v1.2.3", False),
        ("01.2.3", False),
    ],
)
def test_is_semver(value: str, expected: bool) -> None:
    assert is_semver(value) is expected
