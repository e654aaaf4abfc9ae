# tests/unit/test_config.py

import pytest

from tilebridge.config import BridgeConfig, get_config, set_config

def test_defaults():
    config = BridgeConfig()
    assert config.npartitions == 4
    assert config.scheduler == "threads"
    assert config.wire_compression == "none"

@pytest.mark.parametrize("changes", [
    {"npartitions": 0},
    {"scheduler": "cluster"},
    {"wire_compression": "zstd"},
    {"memory_safety_factor": 0.5}
])
def test_validation(changes):
    with pytest.raises(ValueError):
        BridgeConfig(**changes)

def test_from_env(monkeypatch):
    monkeypatch.setenv("TILEBRIDGE_NPARTITIONS", "8")
    monkeypatch.setenv("TILEBRIDGE_WIRE_COMPRESSION", "gzip")
    monkeypatch.delenv("TILEBRIDGE_SCHEDULER", raising=False)

    config = BridgeConfig.from_env(BridgeConfig(scheduler="sync"))
    assert config.npartitions == 8
    assert config.wire_compression == "gzip"
    assert config.scheduler == "sync"

def test_from_env_invalid(monkeypatch):
    monkeypatch.setenv("TILEBRIDGE_SCHEDULER", "everywhere")
    with pytest.raises(ValueError):
        BridgeConfig.from_env()

def test_set_config_returns_previous():
    current = get_config()
    replacement = current.evolve(npartitions=9)

    previous = set_config(replacement)
    try:
        assert previous is current
        assert get_config().npartitions == 9
    finally:
        set_config(previous)

def test_set_config_type():
    with pytest.raises(TypeError):
        set_config({"npartitions": 2})

def test_evolve_is_a_copy():
    config = BridgeConfig()
    assert config.evolve(scheduler="sync") is not config
    assert config.scheduler == "threads"

