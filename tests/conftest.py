import pytest

from kin_engine import RelationStore

KIN_ENV_VARS = (
    "KIN_RELATIONS_PATH",
    "KIN_REQUIRE_RELATIONS",
    "KIN_ALLOW_DEFINE",
    "KIN_STRICT",
    "KIN_LOG_LEVEL",
)


@pytest.fixture
def store():
    """A fresh store holding only the built-in relations."""
    return RelationStore.seeded()


@pytest.fixture
def clean_env(monkeypatch, tmp_path):
    """Run from an empty directory with no KIN_* variables set."""
    for name in KIN_ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)
    return tmp_path
