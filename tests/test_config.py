"""Tests for EngineConfig."""

import pytest

from resourcegraph import EngineConfig, RetryPolicy
from resourcegraph.executors import DEFAULT_WORKERS


def test_defaults():
    config = EngineConfig()
    assert config.effective_executor == "threaded"
    assert config.effective_concurrency_limit == DEFAULT_WORKERS["threaded"]
    assert config.effective_retry == RetryPolicy()
    assert config.effective_refresh is False
    assert config.effective_prune is False
    assert config.input_timeout is None


def test_sequential_executor_defaults_to_one_worker():
    assert EngineConfig(executor="sequential").effective_concurrency_limit == 1


def test_merge_prefers_own_values():
    base = EngineConfig(concurrency_limit=2, refresh=True, prune=True)
    override = EngineConfig(concurrency_limit=8, prune=False)

    merged = override.merge_with(base)

    assert merged.concurrency_limit == 8
    assert merged.refresh is True
    assert merged.prune is False
    assert merged.executor is None


def test_merge_with_none_copies():
    config = EngineConfig(concurrency_limit=3)
    merged = config.merge_with(None)
    assert merged == config
    assert merged is not config


def test_from_env(monkeypatch):
    monkeypatch.setenv("RESOURCEGRAPH_CONCURRENCY", "4")
    monkeypatch.setenv("RESOURCEGRAPH_EXECUTOR", " Sequential ")
    monkeypatch.setenv("RESOURCEGRAPH_MAX_RETRIES", "1")
    monkeypatch.setenv("RESOURCEGRAPH_REFRESH", "yes")
    monkeypatch.setenv("RESOURCEGRAPH_PRUNE", "0")

    config = EngineConfig.from_env()

    assert config.concurrency_limit == 4
    assert config.executor == "sequential"
    assert config.retry.max_retries == 1
    assert config.refresh is True
    assert config.prune is False


def test_from_env_leaves_missing_values_unset(monkeypatch):
    for name in ("CONCURRENCY", "EXECUTOR", "MAX_RETRIES", "REFRESH", "PRUNE"):
        monkeypatch.delenv(f"RESOURCEGRAPH_{name}", raising=False)
    assert EngineConfig.from_env() == EngineConfig()


def test_from_env_rejects_non_integer(monkeypatch):
    monkeypatch.setenv("RESOURCEGRAPH_CONCURRENCY", "many")
    with pytest.raises(ValueError, match="RESOURCEGRAPH_CONCURRENCY"):
        EngineConfig.from_env()
