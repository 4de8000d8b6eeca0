"""Derive the authorizer stack resource plan from a resolved configuration.

The planner first settles every sub-decision (package sources, trigger,
authorizer binding, network) as a tagged strategy and only then assembles
the resource nodes, so a failing decision never leaves a partial plan.

Examples
--------
>>> import datetime as dt
>>> select_trigger(dt.timedelta(seconds=10)).offsets
(0, 10, 20, 30, 40, 50)
>>> select_trigger(dt.timedelta(minutes=1)).name
'direct'
"""

from __future__ import annotations

import datetime as dt
import logging
import types
from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from typing import ClassVar

from authorizer_stack._stack_config import MAX_RELOAD_INTERVAL, MIN_RELOAD_INTERVAL
from authorizer_stack._stack_errors import PlanError
from authorizer_stack._stack_models import (
    DeploymentConfiguration,
    DeploymentEnvironment,
    LocalPackage,
    PackageSource,
    RemotePackage,
)

logger = logging.getLogger(__name__)

EFS_ACCESS_POINT_PATH = "/ceauthconfig"
EFS_MOUNT_PATH = "/mnt" + EFS_ACCESS_POINT_PATH
POSIX_ID = "1001"
TRIGGER_INTERVAL = dt.timedelta(minutes=1)
FUNCTION_MEMORY_MB = 128
FUNCTION_TIMEOUT_SECONDS = 10
MAX_HEAP_MB = int(FUNCTION_MEMORY_MB * 0.75)
SYNC_MESSAGE_BODY = "Sync"
REGION_TOKEN = "${AWS::Region}"

READ_ONLY_GRANTS = (
    {
        "actions": ("apigateway:GET",),
        "resources": (
            "arn:aws:apigateway:*::/restapis/*/deployments/*",
            "arn:aws:apigateway:*::/restapis/*/resources",
            "arn:aws:apigateway:*::/restapis/*/authorizers",
            "arn:aws:apigateway:*::/restapis/*/stages",
            "arn:aws:apigateway:*::/restapis",
        ),
    },
)
AUTO_BIND_GRANTS = (
    {"actions": ("lambda:AddPermission",), "resources": ("*",)},
    {
        "actions": ("apigateway:PATCH",),
        "resources": ("arn:aws:apigateway:*::/restapis/*/resources/*/methods/*",),
    },
    {
        "actions": ("apigateway:POST",),
        "resources": ("arn:aws:apigateway:*::/restapis/*/authorizers",),
    },
)


@dataclass(frozen=True, slots=True)
class Ref:
    """Reference to an attribute of another node in the plan."""

    node_id: str
    attribute: str = "id"


@dataclass(frozen=True, slots=True)
class ResourceNode:
    """A single logical resource and the nodes it depends on."""

    id: str
    kind: str
    properties: Mapping[str, object] = field(default_factory=dict)
    depends_on: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class DirectTrigger:
    """Scheduler invokes the sync function once per trigger interval."""

    name: ClassVar[str] = "direct"


@dataclass(frozen=True, slots=True)
class FanOutTrigger:
    """Scheduler starts a chain of delayed queue messages each interval."""

    interval_seconds: int
    offsets: tuple[int, ...]

    name: ClassVar[str] = "fan-out"

    @property
    def chain_length(self) -> int:
        return len(self.offsets)


type TriggerStrategy = DirectTrigger | FanOutTrigger


@dataclass(frozen=True, slots=True)
class AutoBind:
    """Sync function may register itself as an API Gateway authorizer."""

    name: ClassVar[str] = "auto-bind"


@dataclass(frozen=True, slots=True)
class ManualBind:
    """Operator binds the authorizer out-of-band."""

    name: ClassVar[str] = "manual-bind"


type BindingStrategy = AutoBind | ManualBind


@dataclass(frozen=True, slots=True)
class NewNetwork:
    """An isolated network is created for this deployment."""

    name: ClassVar[str] = "new"


@dataclass(frozen=True, slots=True)
class ExistingNetwork:
    """An existing network is looked up by id."""

    vpc_id: str

    name: ClassVar[str] = "existing"


type NetworkStrategy = NewNetwork | ExistingNetwork


@dataclass(frozen=True, slots=True)
class PlanStrategies:
    """The strategy chosen for each sub-decision."""

    authorizer_package: PackageSource
    sync_package: PackageSource
    trigger: TriggerStrategy
    binding: BindingStrategy
    network: NetworkStrategy


def iter_refs(value: object) -> Iterator[Ref]:
    """Yield every :class:`Ref` nested inside ``value``."""
    if isinstance(value, Ref):
        yield value
    elif isinstance(value, Mapping):
        for item in value.values():
            yield from iter_refs(item)
    elif isinstance(value, (list, tuple)):
        for item in value:
            yield from iter_refs(item)


@dataclass(frozen=True, slots=True)
class ResourcePlan:
    """Ordered, acyclic set of resource nodes for one deployment.

    Nodes appear in dependency order: every dependency and reference names
    an earlier node.

    Raises
    ------
    PlanError
        If node ids repeat or a node depends on a later or unknown node.
    """

    stack_name: str
    environment: DeploymentEnvironment
    strategies: PlanStrategies
    nodes: tuple[ResourceNode, ...]

    def __post_init__(self) -> None:
        seen: set[str] = set()
        for node in self.nodes:
            if node.id in seen:
                raise PlanError("graph", f"duplicate node id {node.id!r}")
            referenced = {ref.node_id for ref in iter_refs(node.properties)}
            for dependency in (*node.depends_on, *sorted(referenced)):
                if dependency not in seen:
                    raise PlanError(
                        "graph",
                        f"{node.id!r} depends on {dependency!r}, "
                        "which is not planned before it",
                    )
            seen.add(node.id)

    def node(self, node_id: str) -> ResourceNode:
        """Return the node called ``node_id``."""
        for node in self.nodes:
            if node.id == node_id:
                return node
        msg = f"no node {node_id!r} in plan"
        raise KeyError(msg)

    def nodes_of(self, kind: str) -> tuple[ResourceNode, ...]:
        """Return the nodes of ``kind`` in plan order."""
        return tuple(node for node in self.nodes if node.kind == kind)

    def permission_grants(self) -> frozenset[tuple[str, str]]:
        """Return every ``(action, resource)`` pair granted by policy nodes."""
        grants: set[tuple[str, str]] = set()
        for policy in self.nodes_of("policy"):
            for statement in policy.properties["statements"]:
                grants.update(
                    (action, resource)
                    for action in statement["actions"]
                    for resource in statement["resources"]
                )
        return frozenset(grants)

    def chain_offsets(self) -> tuple[int, ...]:
        """Return the delay of each chained queue send, in chain order."""
        return tuple(
            node.properties["delay_seconds"] for node in self.nodes_of("queue_send_task")
        )


def _freeze(value: object) -> object:
    """Return a read-only copy of nested mappings and lists."""
    if isinstance(value, Mapping):
        return types.MappingProxyType({key: _freeze(item) for key, item in value.items()})
    if isinstance(value, (list, tuple)):
        return tuple(_freeze(item) for item in value)
    return value


def _node(
    node_id: str,
    kind: str,
    properties: Mapping[str, object],
    *,
    after: tuple[str, ...] = (),
) -> ResourceNode:
    """Build a read-only node whose dependencies include everything it references."""
    referenced = (ref.node_id for ref in iter_refs(properties))
    depends_on = tuple(dict.fromkeys((*after, *referenced)))
    return ResourceNode(
        id=node_id,
        kind=kind,
        properties=_freeze(properties),
        depends_on=depends_on,
    )


def _format_bool(value: bool) -> str:
    return "true" if value else "false"


def package_strategy_name(source: PackageSource) -> str:
    """Return ``"local"`` or ``"remote"`` for a package source."""
    return "local" if isinstance(source, LocalPackage) else "remote"


def select_package(decision: str, source: PackageSource) -> PackageSource:
    """Check that ``source`` can be planned for the unit named by ``decision``."""
    if isinstance(source, RemotePackage):
        if not source.version:
            raise PlanError(
                decision, "version is required for a package fetched from the bucket"
            )
        if not source.bucket_name or not source.object_prefix:
            raise PlanError(decision, "bucket name and object prefix must be set")
    elif not source.path:
        raise PlanError(decision, "local package path is empty")
    return source


def select_trigger(reload_interval: dt.timedelta) -> TriggerStrategy:
    """Choose how the sync function is invoked for ``reload_interval``.

    Intervals of a full trigger interval use the scheduler directly; shorter
    ones fan out ``floor(60 / seconds)`` delayed messages per tick.
    """
    if not MIN_RELOAD_INTERVAL <= reload_interval <= MAX_RELOAD_INTERVAL:
        raise PlanError(
            "trigger", f"reload interval {reload_interval} is outside 1s to 1m"
        )
    if reload_interval >= TRIGGER_INTERVAL:
        return DirectTrigger()
    seconds = int(reload_interval.total_seconds())
    count = int(TRIGGER_INTERVAL.total_seconds()) // seconds
    return FanOutTrigger(
        interval_seconds=seconds,
        offsets=tuple(index * seconds for index in range(count)),
    )


def select_binding(manually_create_authorizer: bool) -> BindingStrategy:
    return ManualBind() if manually_create_authorizer else AutoBind()


def select_network(vpc_id: str | None) -> NetworkStrategy:
    return ExistingNetwork(vpc_id=vpc_id) if vpc_id else NewNetwork()


def _network_node(network: NetworkStrategy) -> ResourceNode:
    if isinstance(network, ExistingNetwork):
        return _node("VPC", "network_reference", {"vpc_id": network.vpc_id})
    return _node("VPC", "network", {"isolated": True})


def _file_system_nodes() -> list[ResourceNode]:
    file_system = _node(
        "AuthorizerConfigurationFileSystem",
        "file_system",
        {"network": Ref("VPC"), "removal_policy": "destroy"},
    )
    access_point = _node(
        "EFSAccessPoint",
        "file_system_access_point",
        {
            "file_system": Ref(file_system.id),
            "path": EFS_ACCESS_POINT_PATH,
            "create_acl": {
                "owner_uid": POSIX_ID,
                "owner_gid": POSIX_ID,
                "permissions": "750",
            },
            "posix_user": {"uid": POSIX_ID, "gid": POSIX_ID},
            "removal_policy": "destroy",
        },
    )
    return [file_system, access_point]


def _package_node(
    node_id: str,
    source: PackageSource,
    environment: DeploymentEnvironment,
) -> ResourceNode:
    if isinstance(source, LocalPackage):
        return _node(node_id, "asset", {"path": source.path})
    region = environment.region or REGION_TOKEN
    return _node(
        node_id,
        "bucket_object",
        {
            "bucket": f"{source.bucket_name}-{region}",
            "key": source.object_key,
            "version": source.version,
        },
    )


def _unit_environment(config: DeploymentConfiguration) -> dict[str, object]:
    """Environment shared by both deployable units."""
    return {
        "ACP_CLIENT_ID": config.client_id,
        "ACP_CLIENT_SECRET": config.client_secret,
        "ACP_ISSUER_URL": config.issuer_url,
        "LOGGING_LEVEL": config.logging_level,
        "ANALYTICS_ENABLED": _format_bool(config.analytics_enabled),
        "HTTP_CLIENT_ROOT_CA": config.http_client_root_ca or "",
        "HTTP_CLIENT_INSECURE_SKIP_VERIFY": _format_bool(
            config.http_client_insecure_skip_verify
        ),
        "AWS_LOCAL_CONFIGURATION": EFS_MOUNT_PATH,
        "MAX_HEAP": str(MAX_HEAP_MB),
    }


def _function_properties(package_id: str, environment: dict[str, object]) -> dict[str, object]:
    return {
        "code": Ref(package_id),
        "handler": "bootstrap",
        "runtime": "provided.al2023",
        "memory_size_mb": FUNCTION_MEMORY_MB,
        "timeout_seconds": FUNCTION_TIMEOUT_SECONDS,
        "environment": environment,
        "network": Ref("VPC"),
        "file_system": {"access_point": Ref("EFSAccessPoint"), "mount_path": EFS_MOUNT_PATH},
    }


def _authorizer_function(config: DeploymentConfiguration) -> ResourceNode:
    environment = _unit_environment(config)
    environment["INJECT_CONTEXT"] = _format_bool(config.inject_context)
    environment["ENFORCEMENT_ALLOW_UNKNOWN"] = _format_bool(
        config.enforcement_allow_unknown
    )
    return _node(
        "AuthorizerLambda",
        "function",
        _function_properties("AuthorizerPackage", environment),
    )


def _sync_function(
    config: DeploymentConfiguration,
    binding: BindingStrategy,
) -> ResourceNode:
    environment = _unit_environment(config)
    environment["AWS_AUTHORIZER_ARN"] = Ref("AuthorizerLambda", "arn")
    environment["AWS_AUTOBIND_AUTHORIZER"] = _format_bool(isinstance(binding, AutoBind))
    properties = _function_properties("SyncPackage", environment)
    properties["reserved_concurrent_executions"] = 1
    return _node("SyncLambda", "function", properties)


def _sync_policy(binding: BindingStrategy) -> ResourceNode:
    statements = READ_ONLY_GRANTS
    if isinstance(binding, AutoBind):
        statements = READ_ONLY_GRANTS + AUTO_BIND_GRANTS
    return _node(
        "SyncLambdaPolicy",
        "policy",
        {"role": Ref("SyncLambda", "role"), "statements": statements},
    )


def _trigger_nodes(trigger: TriggerStrategy) -> list[ResourceNode]:
    if isinstance(trigger, DirectTrigger):
        return [
            _node(
                "Run Sync Lambda",
                "schedule_rule",
                {
                    "rate_minutes": TRIGGER_INTERVAL // dt.timedelta(minutes=1),
                    "target": Ref("SyncLambda", "arn"),
                },
            )
        ]

    dead_letter_queue = _node(
        "DeadLetterQueue",
        "queue",
        {"retention_period_seconds": 60, "removal_policy": "destroy"},
    )
    queue = _node(
        "SQSQueue",
        "queue",
        {
            "visibility_timeout_seconds": 30,
            "dead_letter_queue": {
                "queue": Ref(dead_letter_queue.id, "arn"),
                "max_receive_count": 1,
            },
            "removal_policy": "destroy",
        },
    )
    event_source = _node(
        "SyncLambdaQueueEventSource",
        "event_source",
        {"queue": Ref(queue.id, "arn"), "function": Ref("SyncLambda"), "batch_size": 1},
    )
    sends = [
        _node(
            f"Send Delayed SQS Trigger Message - {offset} seconds",
            "queue_send_task",
            {
                "queue": Ref(queue.id, "url"),
                "message_body": SYNC_MESSAGE_BODY,
                "delay_seconds": offset,
            },
        )
        for offset in trigger.offsets
    ]
    state_machine = _node(
        "Sync Looper",
        "state_machine",
        {
            "chain": tuple(Ref(send.id) for send in sends),
            "removal_policy": "destroy",
        },
    )
    rule = _node(
        "Run Step Function",
        "schedule_rule",
        {
            "rate_minutes": TRIGGER_INTERVAL // dt.timedelta(minutes=1),
            "target": Ref(state_machine.id, "arn"),
            "removal_policy": "destroy",
        },
    )
    return [dead_letter_queue, queue, event_source, *sends, state_machine, rule]


def plan_topology(config: DeploymentConfiguration) -> ResourcePlan:
    """Build the resource plan for ``config``.

    Parameters
    ----------
    config : DeploymentConfiguration
        Resolved configuration.

    Returns
    -------
    ResourcePlan
        Complete, dependency-ordered plan.

    Raises
    ------
    PlanError
        If any sub-decision cannot be resolved; no plan is returned.
    """
    strategies = PlanStrategies(
        authorizer_package=select_package("authorizer_package", config.authorizer_package),
        sync_package=select_package("sync_package", config.sync_package),
        trigger=select_trigger(config.reload_interval),
        binding=select_binding(config.manually_create_authorizer),
        network=select_network(config.vpc_id),
    )

    nodes = [
        _network_node(strategies.network),
        *_file_system_nodes(),
        _package_node("AuthorizerPackage", strategies.authorizer_package, config.environment),
        _authorizer_function(config),
        _package_node("SyncPackage", strategies.sync_package, config.environment),
        _sync_function(config, strategies.binding),
        _sync_policy(strategies.binding),
        *_trigger_nodes(strategies.trigger),
    ]
    plan = ResourcePlan(
        stack_name=config.stack_name,
        environment=config.environment,
        strategies=strategies,
        nodes=tuple(nodes),
    )

    logger.info(
        "Planned %d resources for %s: trigger=%s binding=%s network=%s",
        len(plan.nodes),
        plan.stack_name,
        strategies.trigger.name,
        strategies.binding.name,
        strategies.network.name,
    )
    return plan
