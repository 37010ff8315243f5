import pytest

import ohllama_config


@pytest.fixture
def home(tmp_path, monkeypatch):
    monkeypatch.setenv("HOME", str(tmp_path))
    for name in ("OHLLAMA_URL", "OHLLAMA_PORT", "OHLLAMA_MODEL", "OHLLAMA_TIMEOUT"):
        monkeypatch.delenv(name, raising=False)
    return tmp_path


@pytest.fixture
def paths(home):
    paths = ohllama_config.resolve_paths({"HOME": str(home)})
    ohllama_config.setup(paths)
    return paths
