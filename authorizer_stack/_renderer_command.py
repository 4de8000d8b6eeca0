"""Hand a written plan to the external renderer command."""

from __future__ import annotations

import os
import shlex
from dataclasses import dataclass
from pathlib import Path

from plumbum import local
from plumbum.commands.processes import CommandNotFound, ProcessExecutionError

from authorizer_stack._stack_errors import RendererCommandError
from authorizer_stack._stack_models import DeploymentConfiguration


@dataclass(slots=True)
class CommandContext:
    """Execution options for :func:`run_command`."""

    env: dict[str, str] | None = None
    timeout: int | None = None


def run_command(
    command: str,
    *args: str,
    context: CommandContext | None = None,
) -> str:
    """Execute an external command and return its standard output.

    Examples
    --------
    >>> run_command("printf", "hello")
    'hello'
    """

    ctx = context or CommandContext()
    try:
        bound = local[command][list(args)]
        _, stdout, _ = bound.run(env=ctx.env, timeout=ctx.timeout)
    except CommandNotFound as exc:
        msg = f"Renderer command {command!r} not found"
        raise RendererCommandError(msg) from exc
    except ProcessExecutionError as exc:
        msg = f"Command {command!r} failed: {exc.stderr.strip()}"
        raise RendererCommandError(msg) from exc
    return stdout


def build_renderer_env(config: DeploymentConfiguration) -> dict[str, str]:
    """Construct the environment for the renderer process.

    The client secret travels only through ``ACP_CLIENT_SECRET`` because the
    plan document carries a redacted placeholder.

    Examples
    --------
    >>> build_renderer_env(config)["ACP_CLIENT_SECRET"]  # doctest: +SKIP
    's3cr3t'
    """

    env = os.environ.copy()
    env["ACP_CLIENT_SECRET"] = config.client_secret.reveal()
    if config.environment.account:
        env["CDK_DEPLOY_ACCOUNT"] = config.environment.account
    if config.environment.region:
        env["CDK_DEPLOY_REGION"] = config.environment.region
    return env


def hand_off_plan(
    renderer: str,
    plan_file: Path,
    config: DeploymentConfiguration,
    *,
    timeout: int | None = None,
) -> str:
    """Run ``renderer`` with ``plan_file`` appended to its arguments.

    Parameters
    ----------
    renderer : str
        Command line of the renderer, split with shell quoting rules.
    plan_file : Path
        Plan document written by :func:`write_plan`.
    config : DeploymentConfiguration
        Configuration the plan was built from.
    timeout : int | None, optional
        Seconds to wait before giving up.

    Returns
    -------
    str
        The renderer's standard output.

    Raises
    ------
    RendererCommandError
        If the command is empty, missing or exits non-zero.
    """
    parts = shlex.split(renderer)
    if not parts:
        msg = "Renderer command must not be empty"
        raise RendererCommandError(msg)
    command, *args = parts
    return run_command(
        command,
        *args,
        str(plan_file),
        context=CommandContext(env=build_renderer_env(config), timeout=timeout),
    )
