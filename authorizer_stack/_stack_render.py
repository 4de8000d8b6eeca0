"""Serialise resource plans and export plan metadata.

The plan document is the artifact handed to the external renderer and kept
alongside CI runs, so secret values are replaced with a placeholder before
anything is written.

Examples
--------
>>> from pathlib import Path
>>> write_plan(Path("/tmp/stack-plan.yaml"), plan)  # doctest: +SKIP
"""

from __future__ import annotations

import json
from collections import abc as cabc
from pathlib import Path

import yaml

from authorizer_stack._stack_models import LocalPackage, PackageSource, Secret
from authorizer_stack._stack_plan import (
    ExistingNetwork,
    FanOutTrigger,
    PlanStrategies,
    Ref,
    ResourcePlan,
    package_strategy_name,
)

REDACTED = "<redacted>"


def mask_secret(value: str, stream: cabc.Callable[[str], object] = print) -> None:
    """Emit GitHub Action secret masking command.

    Parameters
    ----------
    value : str
        Secret value to mask.
    stream : Callable[[str], object], optional
        Output stream for the masking command (defaults to ``print``).

    Examples
    --------
    >>> mask_secret("s3cr3t")
    ::add-mask::s3cr3t
    """
    if value:
        stream(f"::add-mask::{value}")


def append_github_output(output_file: Path, outputs: cabc.Mapping[str, str]) -> None:
    """Append ``key=value`` outputs to a ``GITHUB_OUTPUT`` file.

    Multiline values use the heredoc form with a delimiter absent from the
    value.
    """
    output_file.parent.mkdir(parents=True, exist_ok=True)
    with output_file.open("a", encoding="utf-8") as handle:
        for key, value in outputs.items():
            if "\n" not in value and "\r" not in value:
                handle.write(f"{key}={value}\n")
                continue
            delimiter = "EOF"
            counter = 0
            while delimiter in value:
                counter += 1
                delimiter = f"EOF_{counter}"
            handle.write(f"{key}<<{delimiter}\n{value}\n{delimiter}\n")


def _to_document(value: object) -> object:
    """Convert plan values into plain JSON/YAML-compatible data."""
    if isinstance(value, Secret):
        return REDACTED
    if isinstance(value, Ref):
        return {"ref": value.node_id, "attribute": value.attribute}
    if isinstance(value, cabc.Mapping):
        return {str(key): _to_document(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_to_document(item) for item in value]
    return value


def _package_document(source: PackageSource) -> dict[str, object]:
    if isinstance(source, LocalPackage):
        return {"strategy": "local", "path": source.path}
    return {
        "strategy": "remote",
        "bucket_name": source.bucket_name,
        "object_prefix": source.object_prefix,
        "version": source.version,
    }


def _strategies_document(strategies: PlanStrategies) -> dict[str, object]:
    trigger: dict[str, object] = {"strategy": strategies.trigger.name}
    if isinstance(strategies.trigger, FanOutTrigger):
        trigger["interval_seconds"] = strategies.trigger.interval_seconds
        trigger["offsets"] = list(strategies.trigger.offsets)
    network: dict[str, object] = {"strategy": strategies.network.name}
    if isinstance(strategies.network, ExistingNetwork):
        network["vpc_id"] = strategies.network.vpc_id
    return {
        "authorizer_package": _package_document(strategies.authorizer_package),
        "sync_package": _package_document(strategies.sync_package),
        "trigger": trigger,
        "binding": {"strategy": strategies.binding.name},
        "network": network,
    }


def plan_document(plan: ResourcePlan) -> dict[str, object]:
    """Return a serialisable document describing ``plan``.

    Secret values are replaced with ``"<redacted>"``.
    """
    return {
        "stack_name": plan.stack_name,
        "environment": {
            "account": plan.environment.account,
            "region": plan.environment.region,
        },
        "strategies": _strategies_document(plan.strategies),
        "resources": [
            {
                "id": node.id,
                "kind": node.kind,
                "depends_on": list(node.depends_on),
                "properties": _to_document(node.properties),
            }
            for node in plan.nodes
        ],
    }


def write_plan(path: Path, plan: ResourcePlan) -> None:
    """Write the plan document as YAML (``.yaml``/``.yml``) or JSON.

    Parameters
    ----------
    path : Path
        Destination file; parent directories are created.
    plan : ResourcePlan
        Plan to serialise.
    """
    document = plan_document(plan)
    path.parent.mkdir(parents=True, exist_ok=True)
    if path.suffix in (".yaml", ".yml"):
        text = yaml.safe_dump(document, sort_keys=False)
    else:
        text = json.dumps(document, indent=2) + "\n"
    path.write_text(text, encoding="utf-8")


def plan_summary(plan: ResourcePlan) -> dict[str, str]:
    """Return flat strategy outputs for CI consumers."""
    strategies = plan.strategies
    chain_length = (
        strategies.trigger.chain_length
        if isinstance(strategies.trigger, FanOutTrigger)
        else 0
    )
    return {
        "stack_name": plan.stack_name,
        "trigger_strategy": strategies.trigger.name,
        "sync_chain_length": str(chain_length),
        "binding_strategy": strategies.binding.name,
        "network_strategy": strategies.network.name,
        "authorizer_package_strategy": package_strategy_name(strategies.authorizer_package),
        "sync_package_strategy": package_strategy_name(strategies.sync_package),
        "resource_count": str(len(plan.nodes)),
    }
