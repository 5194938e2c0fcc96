from __future__ import annotations

from pathlib import Path

import pytest

from ingestion.core.settings import DEFAULT_SOURCES_YAML, IngestionSettings
from ingestion.core.source_config import SourceConfiguration
from ingestion.core.source_registry import load_sources_yaml
from ingestion.core.value_objects import SourceType

from conftest import make_source


def test_valid_rss_source():
    assert make_source().validate_config().is_valid


def test_validation_collects_errors():
    cfg = SourceConfiguration(source_id="", source_type=SourceType.SOCIAL_MEDIA, name="x" * 256)
    result = cfg.validate_config()
    assert not result.is_valid
    assert result.errors == [
        "Source id is required",
        "Source name must be at most 255 characters",
        "Source type social_media requires credentials",
    ]


def test_url_must_be_http():
    cfg = make_source(url="ftp://example.com/feed")
    assert cfg.validate_config().errors == ["Invalid source url: ftp://example.com/feed"]


def test_pdf_needs_no_url():
    cfg = SourceConfiguration(source_id="whitepapers", source_type=SourceType.PDF, name="Whitepapers")
    assert cfg.validate_config().is_valid


def test_activate_deactivate_are_copies():
    cfg = make_source()
    off = cfg.deactivate()
    assert cfg.is_active and not off.is_active
    assert off.activate().is_active


def test_dict_never_carries_credentials():
    cfg = make_source(credentials={"token": "secret"})
    data = cfg.to_dict()
    assert "credentials" not in data
    assert "secret" not in str(data)
    restored = SourceConfiguration.from_dict(data, credentials={"token": "secret"})
    assert restored == cfg


SOURCES = """
sources:
  low_feed:
    enabled: true
    type: rss
    priority: low
    url: https://low.example.com/rss
  high_feed:
    enabled: true
    type: RSS
    name: High Feed
    priority: high
    url: https://high.example.com/rss
    max_items: 10
  off_feed:
    enabled: false
    type: web
    url: https://off.example.com/
  wiki:
    enabled: true
    type: wikipedia
    priority: medium
    url: https://en.wikipedia.org/wiki/Ethereum
    credentials_env:
      token: WIKI_TOKEN
"""


def _write(tmp_path: Path, text: str) -> Path:
    path = tmp_path / "sources.yaml"
    path.write_text(text, encoding="utf-8")
    return path


def test_load_sources_orders_by_priority_and_skips_disabled(tmp_path):
    registry = load_sources_yaml(_write(tmp_path, SOURCES), environ={"WIKI_TOKEN": "abc"})
    enabled = registry.enabled_sources()

    assert [s.source_id for s in enabled] == ["high_feed", "wiki", "low_feed"]
    high = enabled[0]
    assert high.name == "High Feed"
    assert high.source_type == SourceType.RSS
    assert high.config == {"url": "https://high.example.com/rss", "max_items": 10}
    assert enabled[1].credentials == {"token": "abc"}
    assert enabled[2].name == "low_feed"
    assert registry.get("off_feed") is not None
    assert not registry.get("off_feed").is_active


def test_missing_credential_env_leaves_none(tmp_path):
    registry = load_sources_yaml(_write(tmp_path, SOURCES), environ={})
    assert registry.get("wiki").credentials is None
    assert not registry.get("wiki").validate_config().is_valid


def test_invalid_yaml_shape(tmp_path):
    with pytest.raises(ValueError):
        load_sources_yaml(_write(tmp_path, "- just\n- a list\n"))


def test_bundled_sources_yaml_loads():
    registry = load_sources_yaml(DEFAULT_SOURCES_YAML, environ={})
    for source in registry.enabled_sources():
        assert source.validate_config().is_valid, source.source_id


def test_settings_defaults():
    s = IngestionSettings.from_env({})
    assert s.pipeline_concurrency == 8
    assert s.breaker_failure_threshold == 5
    assert s.database_url is None
    assert s.sources_yaml == DEFAULT_SOURCES_YAML


def test_settings_from_env():
    s = IngestionSettings.from_env(
        {
            "COINLENS_PIPELINE_CONCURRENCY": "4",
            "COINLENS_RETRY_MAX_ATTEMPTS": "2",
            "COINLENS_RENDERING_SERVICE_URL": "https://render.example",
            "COINLENS_SOURCES_YAML": "/etc/coinlens/sources.yaml",
            "DATABASE_URL": "sqlite:///ingest.db",
        }
    )
    assert s.pipeline_concurrency == 4
    assert s.retry_max_attempts == 2
    assert s.rendering_service_url == "https://render.example"
    assert s.sources_yaml == Path("/etc/coinlens/sources.yaml")
    assert s.database_url == "sqlite:///ingest.db"


def test_settings_reject_bad_values():
    with pytest.raises(ValueError):
        IngestionSettings.from_env({"COINLENS_PIPELINE_CONCURRENCY": "0"})


def test_env_file_loading(tmp_path):
    from app.core.env import ENV_FILE_VAR, load_env_if_present, parse_env_line

    env_file = tmp_path / "ingest.env"
    env_file.write_text(
        "# comment\n"
        "export COINLENS_PIPELINE_CONCURRENCY=4\n"
        "DATABASE_URL='sqlite:///x.db'\n"
        "COINLENS_RETRY_MAX_ATTEMPTS=9\n"
        "not a pair\n",
        encoding="utf-8",
    )
    environ = {ENV_FILE_VAR: str(env_file), "COINLENS_RETRY_MAX_ATTEMPTS": "2"}

    assert load_env_if_present(environ=environ) == [env_file]
    assert environ["COINLENS_PIPELINE_CONCURRENCY"] == "4"
    assert environ["DATABASE_URL"] == "sqlite:///x.db"
    # existing values win
    assert environ["COINLENS_RETRY_MAX_ATTEMPTS"] == "2"

    assert parse_env_line("=value") is None
    assert parse_env_line('KEY="a=b"') == ("KEY", "a=b")


def test_env_file_missing_is_ignored(tmp_path):
    from app.core.env import ENV_FILE_VAR, load_env_if_present

    environ = {ENV_FILE_VAR: str(tmp_path / "absent.env")}
    assert load_env_if_present(environ=environ) == []
    assert environ == {ENV_FILE_VAR: str(tmp_path / "absent.env")}
