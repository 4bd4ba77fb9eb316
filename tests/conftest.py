"""
Job Application Tracker Test Configuration

Shared fixtures for all tests.
"""
import os
import sys

import pytest
from sqlalchemy.orm import Session

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from common import config as config_module
from common.scope import OwnerScope
from modules.applications import derived
from modules.applications.database import get_engine
from modules.applications.models import Base


# =============================================================================
# FIXTURES: Configuration
# =============================================================================

@pytest.fixture(autouse=True)
def default_config(monkeypatch, tmp_path):
    """Every test starts from built-in defaults, not the developer's YAML or env."""
    for key in list(os.environ):
        if key.startswith("CONFIG__"):
            monkeypatch.delenv(key, raising=False)
    monkeypatch.delenv("JOBTRACK_DB_PATH", raising=False)
    monkeypatch.setenv("CONFIG_PATH", str(tmp_path / "missing.yml"))
    config_module.reload_config()
    derived.set_calculator(None)
    yield config_module.get_config()
    config_module._config = None
    derived.set_calculator(None)


# =============================================================================
# FIXTURES: Database
# =============================================================================

@pytest.fixture
def engine():
    eng = get_engine(":memory:")
    Base.metadata.create_all(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session(engine):
    with Session(engine) as s:
        yield s


# =============================================================================
# FIXTURES: Owners
# =============================================================================

@pytest.fixture
def alice() -> OwnerScope:
    return OwnerScope("alice")


@pytest.fixture
def bob() -> OwnerScope:
    return OwnerScope("bob")
