from __future__ import annotations

import sys
from pathlib import Path

import pytest

from authorizer_stack._stack_models import RawStackInputs


def pytest_configure() -> None:
    project_root = Path(__file__).resolve().parents[2]
    if str(project_root) not in sys.path:
        sys.path.insert(0, str(project_root))


@pytest.fixture
def raw_inputs() -> RawStackInputs:
    """Return the minimal raw inputs that resolve successfully."""
    return RawStackInputs(
        client_id="authorizer-client",
        client_secret="s3cr3t-value",
        issuer_url="https://tenant.example.test/tenant/system",
    )
