"""Tests for configuration loading."""

from stepgraph.config import load_config
from stepgraph.events import InMemoryEventSink, get_event_sink
from stepgraph.events.redis import RedisEventSink


def test_load_config_from_env(tmp_path, monkeypatch):
    config_path = tmp_path / "stepgraph.yaml"
    config_path.write_text(
        """
engine:
  max_concurrent_executions: 5
  default_timeout: 2000
  enable_checkpoints: false
events:
  backend: redis
  redis:
    host: testhost
    port: 1234
log_level: DEBUG
"""
    )
    monkeypatch.setenv("STEPGRAPH_CONFIG", str(config_path))

    config = load_config()
    assert config.engine.max_concurrent_executions == 5
    assert config.engine.default_timeout == 2000
    assert config.engine.enable_checkpoints is False
    assert config.engine.max_loop_iterations == 1000
    assert config.events.backend == "redis"
    assert config.events.redis.host == "testhost"
    assert config.events.redis.port == 1234
    assert config.log_level == "DEBUG"


def test_defaults_when_no_file(tmp_path, monkeypatch):
    monkeypatch.setenv("STEPGRAPH_CONFIG", str(tmp_path / "missing.yaml"))
    monkeypatch.delenv("STEPGRAPH_DATABASE_URL", raising=False)
    config = load_config()
    assert config.events.backend == "inmemory"
    assert config.engine.default_timeout == 3_600_000
    assert config.engine.event_publish_timeout == 5.0
    assert config.database_url is None


def test_database_url_env_override(tmp_path, monkeypatch):
    config_path = tmp_path / "stepgraph.yaml"
    config_path.write_text("database_url: sqlite://from-file.db\n")
    monkeypatch.setenv("STEPGRAPH_CONFIG", str(config_path))
    monkeypatch.setenv("STEPGRAPH_DATABASE_URL", "sqlite://from-env.db")
    assert load_config().database_url == "sqlite://from-env.db"


def test_get_event_sink_uses_config(tmp_path, monkeypatch):
    config_path = tmp_path / "stepgraph.yaml"
    config_path.write_text(
        """
events:
  backend: redis
  redis:
    host: confighost
    port: 6380
"""
    )
    monkeypatch.setenv("STEPGRAPH_CONFIG", str(config_path))
    monkeypatch.delenv("STEPGRAPH_EVENTS", raising=False)

    sink = get_event_sink()
    assert isinstance(sink, RedisEventSink)
    assert sink.host == "confighost"
    assert sink.port == 6380


def test_get_event_sink_builds_fresh_instances(tmp_path, monkeypatch):
    monkeypatch.setenv("STEPGRAPH_CONFIG", str(tmp_path / "missing.yaml"))
    monkeypatch.delenv("STEPGRAPH_EVENTS", raising=False)
    first = get_event_sink()
    second = get_event_sink("inmemory")
    assert isinstance(first, InMemoryEventSink)
    assert first is not second
