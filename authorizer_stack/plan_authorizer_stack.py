#!/usr/bin/env -S uv run python
# /// script
# requires-python = ">=3.13"
# dependencies = ["cyclopts>=2.9", "plumbum", "pyyaml"]
# ///
"""Plan the Cloudentity AWS authorizer stack.

This script:
- resolves stack inputs from CLI arguments, the ``cdk.json`` context and
  environment variables;
- validates them and selects the resource topology;
- writes the redacted plan document and exports a summary to
  $GITHUB_OUTPUT; and
- optionally hands the plan to an external renderer command.
"""

from __future__ import annotations

import logging
import os
import sys
from collections import abc as cabc
from pathlib import Path
from typing import Annotated

from cyclopts import App, Parameter

from authorizer_stack._input_resolution import InputResolution, load_context, resolve_input
from authorizer_stack._renderer_command import hand_off_plan
from authorizer_stack._stack_config import format_duration, resolve_configuration
from authorizer_stack._stack_errors import StackError
from authorizer_stack._stack_models import DeploymentConfiguration, RawStackInputs
from authorizer_stack._stack_plan import ResourcePlan, plan_topology
from authorizer_stack._stack_render import (
    append_github_output,
    mask_secret,
    plan_summary,
    write_plan,
)

app = App(help="Plan the Cloudentity AWS authorizer stack.")

DEFAULT_CONTEXT_FILE = Path("cdk.json")
DEFAULT_PLAN_FILE = Path("stack-plan.yaml")

FLAG_FIELDS = frozenset(
    {
        "manually_create_authorizer",
        "analytics_enabled",
        "inject_context",
        "enforcement_allow_unknown",
        "http_client_insecure_skip_verify",
    }
)

INPUT_RESOLUTIONS: dict[str, InputResolution] = {
    "sync_zip": InputResolution(context_key="syncZip"),
    "authorizer_zip": InputResolution(context_key="authorizerZip"),
    "manually_create_authorizer": InputResolution(context_key="manuallyCreateAuthorizer"),
    "client_id": InputResolution(context_key="clientID"),
    # The secret is read from the environment only, never from cdk.json.
    "client_secret": InputResolution(env_keys=("ACP_CLIENT_SECRET",)),
    "issuer_url": InputResolution(context_key="issuerURL"),
    "vpc_id": InputResolution(context_key="vpcID"),
    "version": InputResolution(context_key="version"),
    "logging_level": InputResolution(context_key="loggingLevel"),
    "reload_interval": InputResolution(context_key="reloadInterval"),
    "analytics_enabled": InputResolution(context_key="analyticsEnabled"),
    "inject_context": InputResolution(context_key="injectContext"),
    "enforcement_allow_unknown": InputResolution(context_key="enforcementAllowUnknown"),
    "http_client_root_ca": InputResolution(context_key="httpClientRootCA"),
    "http_client_insecure_skip_verify": InputResolution(
        context_key="httpClientInsecureSkipVerify"
    ),
    "s3_bucket_name": InputResolution(context_key="s3BucketName"),
    "s3_authorizer_prefix": InputResolution(context_key="s3AuthorizerPrefix"),
    "s3_sync_prefix": InputResolution(context_key="s3SyncPrefix"),
    "stack_name": InputResolution(context_key="stackName"),
    "account": InputResolution(
        context_key="account",
        env_keys=("CDK_DEPLOY_ACCOUNT", "CDK_DEFAULT_ACCOUNT"),
    ),
    "region": InputResolution(
        context_key="region",
        env_keys=("CDK_DEPLOY_REGION", "CDK_DEFAULT_REGION"),
    ),
}


def gather_raw_inputs(
    cli: RawStackInputs,
    context: cabc.Mapping[str, object],
    env: cabc.Mapping[str, str] | None = None,
) -> RawStackInputs:
    """Fill unset CLI values from the context mapping and environment.

    CLI values win over context values, which win over environment values.
    """
    values: dict[str, object] = {}
    for name, resolution in INPUT_RESOLUTIONS.items():
        value = resolve_input(getattr(cli, name), resolution, context, env)
        if isinstance(value, bool) and name not in FLAG_FIELDS:
            value = str(value).lower()
        values[name] = value
    return RawStackInputs(**values)


def _report(config: DeploymentConfiguration, plan: ResourcePlan, output: Path) -> None:
    summary = plan_summary(plan)
    print(f"Planned stack '{plan.stack_name}' ({summary['resource_count']} resources)")
    print(f"  Reload interval: {format_duration(config.reload_interval)}")
    print(f"  Trigger: {summary['trigger_strategy']}", end="")
    if summary["trigger_strategy"] == "fan-out":
        print(f" ({summary['sync_chain_length']} chained sends)")
    else:
        print()
    print(f"  Authorizer binding: {summary['binding_strategy']}")
    print(f"  Network: {summary['network_strategy']}")
    print(f"  Authorizer package: {summary['authorizer_package_strategy']}")
    print(f"  Sync package: {summary['sync_package_strategy']}")
    print(f"  Plan written to {output}")


@app.command()
def main(
    sync_zip: Annotated[str | None, Parameter()] = None,
    authorizer_zip: Annotated[str | None, Parameter()] = None,
    manually_create_authorizer: Annotated[bool | None, Parameter()] = None,
    client_id: Annotated[str | None, Parameter()] = None,
    client_secret: Annotated[str | None, Parameter()] = None,
    issuer_url: Annotated[str | None, Parameter()] = None,
    vpc_id: Annotated[str | None, Parameter()] = None,
    version: Annotated[str | None, Parameter()] = None,
    logging_level: Annotated[str | None, Parameter()] = None,
    reload_interval: Annotated[str | None, Parameter()] = None,
    analytics_enabled: Annotated[bool | None, Parameter()] = None,
    inject_context: Annotated[bool | None, Parameter()] = None,
    enforcement_allow_unknown: Annotated[bool | None, Parameter()] = None,
    http_client_root_ca: Annotated[str | None, Parameter()] = None,
    http_client_insecure_skip_verify: Annotated[bool | None, Parameter()] = None,
    s3_bucket_name: Annotated[str | None, Parameter()] = None,
    s3_authorizer_prefix: Annotated[str | None, Parameter()] = None,
    s3_sync_prefix: Annotated[str | None, Parameter()] = None,
    stack_name: Annotated[str | None, Parameter()] = None,
    account: Annotated[str | None, Parameter()] = None,
    region: Annotated[str | None, Parameter()] = None,
    context_file: Annotated[Path | None, Parameter()] = None,
    output: Annotated[Path | None, Parameter()] = None,
    github_output: Annotated[Path | None, Parameter()] = None,
    renderer: Annotated[str | None, Parameter()] = None,
) -> int:
    """Plan the authorizer stack and write the plan document.

    Inputs not given on the command line are read from the ``context``
    object of ``--context-file`` (default ``cdk.json``), then from the
    environment (``ACP_CLIENT_SECRET``, ``CDK_DEPLOY_*``/``CDK_DEFAULT_*``).
    """
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")

    cli = RawStackInputs(
        sync_zip=sync_zip,
        authorizer_zip=authorizer_zip,
        manually_create_authorizer=manually_create_authorizer,
        client_id=client_id,
        client_secret=client_secret,
        issuer_url=issuer_url,
        vpc_id=vpc_id,
        version=version,
        logging_level=logging_level,
        reload_interval=reload_interval,
        analytics_enabled=analytics_enabled,
        inject_context=inject_context,
        enforcement_allow_unknown=enforcement_allow_unknown,
        http_client_root_ca=http_client_root_ca,
        http_client_insecure_skip_verify=http_client_insecure_skip_verify,
        s3_bucket_name=s3_bucket_name,
        s3_authorizer_prefix=s3_authorizer_prefix,
        s3_sync_prefix=s3_sync_prefix,
        stack_name=stack_name,
        account=account,
        region=region,
    )
    plan_file = output or Path(os.environ.get("STACK_PLAN_FILE", DEFAULT_PLAN_FILE))
    github_output = github_output or (
        Path(os.environ["GITHUB_OUTPUT"]) if os.environ.get("GITHUB_OUTPUT") else None
    )
    renderer = renderer or os.environ.get("STACK_RENDERER") or None

    try:
        context = load_context(context_file or DEFAULT_CONTEXT_FILE)
        config = resolve_configuration(gather_raw_inputs(cli, context))
        plan = plan_topology(config)
    except StackError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 1

    if os.environ.get("GITHUB_ACTIONS") == "true":
        mask_secret(config.client_secret.reveal())

    write_plan(plan_file, plan)
    _report(config, plan, plan_file)

    if github_output is not None:
        append_github_output(github_output, plan_summary(plan))

    if renderer:
        print(f"\n--- Handing plan to renderer: {renderer} ---")
        try:
            stdout = hand_off_plan(renderer, plan_file, config)
        except StackError as exc:
            print(f"error: {exc}", file=sys.stderr)
            return 1
        if stdout:
            print(stdout)

    return 0


if __name__ == "__main__":  # pragma: no cover - CLI entrypoint
    raise SystemExit(app())
