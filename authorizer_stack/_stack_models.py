"""Data models for authorizer stack configuration.

These models form the contract between the input resolution step, the
configuration resolver and the topology planner. All of them are frozen so a
resolved configuration cannot change after validation.

Examples
--------
>>> source = RemotePackage(
...     bucket_name="cloudentity-aws-api-gateway-authorizer",
...     object_prefix="cloudentity-aws-authorizer-v2-sync-",
...     version="1.2.3",
... )
>>> source.object_key
'cloudentity-aws-authorizer-v2-sync-1.2.3.zip'
"""

from __future__ import annotations

import datetime as dt
from dataclasses import dataclass, field


@dataclass(frozen=True, slots=True)
class Secret:
    """Opaque wrapper for a sensitive string.

    ``repr`` and ``str`` never include the wrapped value; use :meth:`reveal`
    only where the value is handed to the deployable unit.

    Examples
    --------
    >>> str(Secret("s3cr3t"))
    '******'
    """

    value: str = field(repr=False)

    def __str__(self) -> str:
        return "******"

    def __bool__(self) -> bool:
        return bool(self.value)

    def reveal(self) -> str:
        """Return the wrapped value."""
        return self.value


@dataclass(frozen=True, slots=True)
class LocalPackage:
    """Deployable unit shipped from a local zip file."""

    path: str


@dataclass(frozen=True, slots=True)
class RemotePackage:
    """Deployable unit fetched from the versioned package bucket.

    Attributes
    ----------
    bucket_name
        Base bucket name; the planner appends the deployment region.
    object_prefix
        Unit-specific object name prefix.
    version
        Semantic version of the release; empty when unset.
    """

    bucket_name: str
    object_prefix: str
    version: str

    @property
    def object_key(self) -> str:
        """Return the object name holding the unit's zip file."""
        return f"{self.object_prefix}{self.version}.zip"


type PackageSource = LocalPackage | RemotePackage


@dataclass(frozen=True, slots=True)
class DeploymentEnvironment:
    """Target account and region; either may be left to the renderer."""

    account: str | None = None
    region: str | None = None


@dataclass(frozen=True, slots=True)
class RawStackInputs:
    """Raw inputs gathered from CLI, context file and environment.

    Every field is optional here; defaults and validation are applied by
    :func:`authorizer_stack._stack_config.resolve_configuration`. Boolean
    flags accept text (``"true"``) or ``bool`` and the reload interval
    accepts a duration string (``"10s"``) or a ``timedelta``.
    """

    sync_zip: str | None = None
    authorizer_zip: str | None = None
    manually_create_authorizer: str | bool | None = None
    client_id: str | None = None
    client_secret: str | None = field(default=None, repr=False)
    issuer_url: str | None = None
    vpc_id: str | None = None
    version: str | None = None
    logging_level: str | None = None
    reload_interval: str | dt.timedelta | None = None
    analytics_enabled: str | bool | None = None
    inject_context: str | bool | None = None
    enforcement_allow_unknown: str | bool | None = None
    http_client_root_ca: str | None = None
    http_client_insecure_skip_verify: str | bool | None = None
    s3_bucket_name: str | None = None
    s3_authorizer_prefix: str | None = None
    s3_sync_prefix: str | None = None
    stack_name: str | None = None
    account: str | None = None
    region: str | None = None


@dataclass(frozen=True, slots=True)
class DeploymentConfiguration:
    """Validated, normalised configuration consumed by the planner.

    Attributes
    ----------
    authorizer_package, sync_package : PackageSource
        Where each deployable unit's code comes from.
    manually_create_authorizer : bool
        Skip auto-binding the authorizer to API Gateway when true.
    client_id, issuer_url : str
        Identity provider client and issuer.
    client_secret : Secret
        Identity provider client secret.
    vpc_id : str | None
        Existing network to reuse; a new one is planned when ``None``.
    version : str | None
        Release version used for bucket-fetched packages.
    logging_level : str
        One of ``debug``, ``info``, ``warn``, ``error``.
    reload_interval : datetime.timedelta
        How often the sync unit runs, within one to sixty seconds.
    analytics_enabled, inject_context, enforcement_allow_unknown : bool
        Feature flags passed to the deployable units.
    http_client_root_ca : str | None
        Extra root CA for the units' HTTP client.
    http_client_insecure_skip_verify : bool
        Disable TLS verification in the units' HTTP client.
    s3_bucket_name, s3_authorizer_prefix, s3_sync_prefix : str
        Package bucket naming.
    stack_name : str
        Name of the stack handed to the renderer.
    environment : DeploymentEnvironment
        Target account and region.
    """

    authorizer_package: PackageSource
    sync_package: PackageSource
    manually_create_authorizer: bool
    client_id: str
    client_secret: Secret
    issuer_url: str
    vpc_id: str | None
    version: str | None
    logging_level: str
    reload_interval: dt.timedelta
    analytics_enabled: bool
    inject_context: bool
    enforcement_allow_unknown: bool
    http_client_root_ca: str | None
    http_client_insecure_skip_verify: bool
    s3_bucket_name: str
    s3_authorizer_prefix: str
    s3_sync_prefix: str
    stack_name: str
    environment: DeploymentEnvironment = field(default_factory=DeploymentEnvironment)

    def as_raw(self) -> RawStackInputs:
        """Return raw inputs that resolve back to this configuration."""

        def _zip(source: PackageSource) -> str | None:
            return source.path if isinstance(source, LocalPackage) else None

        return RawStackInputs(
            sync_zip=_zip(self.sync_package),
            authorizer_zip=_zip(self.authorizer_package),
            manually_create_authorizer=self.manually_create_authorizer,
            client_id=self.client_id,
            client_secret=self.client_secret.reveal(),
            issuer_url=self.issuer_url,
            vpc_id=self.vpc_id,
            version=self.version,
            logging_level=self.logging_level,
            reload_interval=self.reload_interval,
            analytics_enabled=self.analytics_enabled,
            inject_context=self.inject_context,
            enforcement_allow_unknown=self.enforcement_allow_unknown,
            http_client_root_ca=self.http_client_root_ca,
            http_client_insecure_skip_verify=self.http_client_insecure_skip_verify,
            s3_bucket_name=self.s3_bucket_name,
            s3_authorizer_prefix=self.s3_authorizer_prefix,
            s3_sync_prefix=self.s3_sync_prefix,
            stack_name=self.stack_name,
            account=self.environment.account,
            region=self.environment.region,
        )
