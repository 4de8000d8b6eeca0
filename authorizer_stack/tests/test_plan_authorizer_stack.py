"""Unit tests for the plan_authorizer_stack CLI."""

from __future__ import annotations

import json
from pathlib import Path

import pytest
import yaml

from authorizer_stack._stack_errors import RendererCommandError
from authorizer_stack._stack_models import DeploymentConfiguration, RawStackInputs
from authorizer_stack.plan_authorizer_stack import gather_raw_inputs, main

ENV_KEYS = (
    "ACP_CLIENT_SECRET",
    "CDK_DEPLOY_ACCOUNT",
    "CDK_DEFAULT_ACCOUNT",
    "CDK_DEPLOY_REGION",
    "CDK_DEFAULT_REGION",
    "GITHUB_ACTIONS",
    "GITHUB_OUTPUT",
    "STACK_PLAN_FILE",
    "STACK_RENDERER",
)


@pytest.fixture
def workdir(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> Path:
    """Run in a clean directory holding a ``cdk.json`` context file."""
    for key in ENV_KEYS:
        monkeypatch.delenv(key, raising=False)
    monkeypatch.setenv("ACP_CLIENT_SECRET", "s3cr3t-value")
    monkeypatch.chdir(tmp_path)
    context = {
        "clientID": "context-client",
        "issuerURL": "https://tenant.example.test/tenant/system",
        "reloadInterval": "10s",
        "manuallyCreateAuthorizer": True,
    }
    (tmp_path / "cdk.json").write_text(
        json.dumps({"app": "go mod download && go run main.go", "context": context}),
        encoding="utf-8",
    )
    return tmp_path


def test_gather_raw_inputs_merges_sources() -> None:
    cli = RawStackInputs(client_id="cli-client")
    context = {
        "clientID": "context-client",
        "issuerURL": "https://issuer.example.test",
        "analyticsEnabled": True,
        "version": True,
    }
    env = {"ACP_CLIENT_SECRET": "from-env", "CDK_DEFAULT_REGION": "us-east-2"}

    raw = gather_raw_inputs(cli, context, env)

    assert raw.client_id == "cli-client", "CLI should override context"
    assert raw.issuer_url == "https://issuer.example.test", "Context should fill gaps"
    assert raw.client_secret == "from-env", "Secret should come from the environment"
    assert raw.region == "us-east-2", "Default region should be used as fallback"
    assert raw.analytics_enabled is True, "Flags keep JSON booleans"
    assert raw.version == "true", "Text fields receive booleans as text"


def test_gather_raw_inputs_never_reads_secret_from_context() -> None:
    raw = gather_raw_inputs(RawStackInputs(), {"clientSecret": "leaked"}, env={})
    assert raw.client_secret is None, "Secret must not be read from the context file"


def test_main_writes_plan_and_outputs(
    workdir: Path,
    capsys: pytest.CaptureFixture[str],
) -> None:
    plan_file = workdir / "out" / "stack-plan.yaml"
    github_output = workdir / "github_output"

    exit_code = main(output=plan_file, github_output=github_output)

    assert exit_code == 0, "Valid configuration should succeed"
    document = yaml.safe_load(plan_file.read_text(encoding="utf-8"))
    assert document["strategies"]["binding"] == {"strategy": "manual-bind"}
    assert "s3cr3t-value" not in plan_file.read_text(encoding="utf-8")
    outputs = github_output.read_text(encoding="utf-8")
    assert "trigger_strategy=fan-out\n" in outputs
    assert "sync_chain_length=6\n" in outputs
    stdout = capsys.readouterr().out
    assert "Planned stack 'CloudentityAWSAuthorizer'" in stdout
    assert "::add-mask::" not in stdout, "Masking is only emitted inside GitHub Actions"
    assert "s3cr3t-value" not in stdout


def test_main_cli_values_override_context(workdir: Path) -> None:
    plan_file = workdir / "plan.json"
    exit_code = main(
        client_id="cli-client",
        reload_interval="1m",
        manually_create_authorizer=False,
        output=plan_file,
    )

    assert exit_code == 0
    document = json.loads(plan_file.read_text(encoding="utf-8"))
    sync = next(r for r in document["resources"] if r["id"] == "SyncLambda")
    assert sync["properties"]["environment"]["ACP_CLIENT_ID"] == "cli-client"
    assert document["strategies"]["trigger"] == {"strategy": "direct"}
    assert document["strategies"]["binding"] == {"strategy": "auto-bind"}


def test_main_defaults_plan_file(workdir: Path) -> None:
    assert main() == 0
    assert (workdir / "stack-plan.yaml").is_file(), "Plan should default to stack-plan.yaml"


def test_main_masks_secret_in_github_actions(
    monkeypatch: pytest.MonkeyPatch,
    workdir: Path,
    capsys: pytest.CaptureFixture[str],
) -> None:
    monkeypatch.setenv("GITHUB_ACTIONS", "true")
    assert main(output=workdir / "plan.yaml") == 0
    assert "::add-mask::s3cr3t-value" in capsys.readouterr().out


def test_main_reports_configuration_errors(
    monkeypatch: pytest.MonkeyPatch,
    workdir: Path,
    capsys: pytest.CaptureFixture[str],
) -> None:
    monkeypatch.delenv("ACP_CLIENT_SECRET")
    plan_file = workdir / "plan.yaml"

    exit_code = main(logging_level="trace", output=plan_file)

    assert exit_code == 1, "Invalid configuration should fail"
    stderr = capsys.readouterr().err
    assert stderr.startswith("error: invalid stack configuration: ")
    assert "clientSecret" in stderr
    assert "loggingLevel" in stderr
    assert not plan_file.exists(), "No plan should be written on failure"


def test_main_reports_malformed_context_file(
    workdir: Path,
    capsys: pytest.CaptureFixture[str],
) -> None:
    (workdir / "broken.json").write_text("{", encoding="utf-8")
    assert main(context_file=workdir / "broken.json") == 1
    assert "contextFile" in capsys.readouterr().err


def test_main_hands_plan_to_renderer(
    monkeypatch: pytest.MonkeyPatch,
    workdir: Path,
    capsys: pytest.CaptureFixture[str],
) -> None:
    calls: list[tuple[str, Path, DeploymentConfiguration]] = []

    def fake_hand_off(renderer: str, plan_file: Path, config: DeploymentConfiguration) -> str:
        calls.append((renderer, plan_file, config))
        return "Stack synthesised"

    monkeypatch.setattr(
        "authorizer_stack.plan_authorizer_stack.hand_off_plan",
        fake_hand_off,
    )
    plan_file = workdir / "plan.yaml"

    assert main(output=plan_file, renderer="cdk synth") == 0

    renderer, handed_file, config = calls[0]
    assert renderer == "cdk synth"
    assert handed_file == plan_file, "Written plan should be handed off"
    assert config.client_secret.reveal() == "s3cr3t-value"
    assert "Stack synthesised" in capsys.readouterr().out


def test_main_reports_renderer_failure(
    monkeypatch: pytest.MonkeyPatch,
    workdir: Path,
    capsys: pytest.CaptureFixture[str],
) -> None:
    def failing_hand_off(renderer: str, plan_file: Path, config: DeploymentConfiguration) -> str:
        raise RendererCommandError("Command 'cdk' failed: boom")

    monkeypatch.setattr(
        "authorizer_stack.plan_authorizer_stack.hand_off_plan",
        failing_hand_off,
    )
    monkeypatch.setenv("STACK_RENDERER", "cdk synth")

    assert main(output=workdir / "plan.yaml") == 1
    assert "error: Command 'cdk' failed: boom" in capsys.readouterr().err


def test_main_reports_oversized_reload_interval(
    workdir: Path,
    capsys: pytest.CaptureFixture[str],
) -> None:
    assert main(reload_interval="99999999999h", output=workdir / "plan.yaml") == 1, (
        "An oversized duration should fail with an error, not a traceback"
    )
    assert "reloadInterval: unparseable duration" in capsys.readouterr().err
