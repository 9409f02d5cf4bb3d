import json

import pytest

from service import config_schema
from service.config_schema import ConfigError

CONFIG_YAML = """
timezone: Europe/London
jobs:
  - id: ngo_ingest
    module: modules.job_aggregator.main
    summary: Refresh the NGO board
    trigger:
      cron: "0 */6 * * *"
    timeout_sec: "900"
    coalesce: "yes"
    kwargs:
      niche_id: ngo
  - module: modules.job_aggregator.main
    trigger:
      daily_time: ["06:00", "18:30"]
    kwargs:
      niche_id: climate
"""


def _job(**overrides):
    job = {"id": "j", "module": "modules.job_aggregator.main", "trigger": {"interval": {"hours": 6}}}
    job.update(overrides)
    return job


def test_load_yaml_applies_defaults(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text(CONFIG_YAML, encoding="utf-8")

    cfg = config_schema.load_config(str(path))
    config_schema.validate(cfg)

    first, second = cfg["jobs"]
    assert cfg["timezone"] == "Europe/London"
    assert first["timeout_sec"] == 900
    assert first["coalesce"] is True
    assert second["id"] == "modules.job_aggregator.main"


def test_config_path_env_and_empty_default(tmp_path, monkeypatch):
    assert config_schema.load_config()["jobs"] == []

    path = tmp_path / "config.json"
    path.write_text(json.dumps({"jobs": [_job()]}), encoding="utf-8")
    monkeypatch.setenv("CONFIG_PATH", str(path))
    monkeypatch.setenv("TZ", "UTC")
    cfg = config_schema.load_config()
    assert [j["id"] for j in cfg["jobs"]] == ["j"]
    assert cfg["timezone"] == "UTC"


def test_unreadable_files_raise(tmp_path):
    with pytest.raises(ConfigError, match="not found"):
        config_schema.load_config(str(tmp_path / "missing.yaml"))

    bad = tmp_path / "bad.yaml"
    bad.write_text("jobs: [unclosed", encoding="utf-8")
    with pytest.raises(ConfigError, match="Invalid YAML"):
        config_schema.load_config(str(bad))

    top = tmp_path / "list.json"
    top.write_text("[]", encoding="utf-8")
    with pytest.raises(ConfigError, match="must be an object"):
        config_schema.load_config(str(top))


@pytest.mark.parametrize(
    "job,message",
    [
        (_job(module=""), "'module' is required"),
        (_job(trigger=None), "'trigger' is required"),
        (_job(trigger={}), "exactly one trigger"),
        (_job(trigger={"cron": "0 * * * *", "interval": {"hours": 1}}), "exactly one trigger"),
        (_job(trigger={"interval": {"hours": "often"}}), "must be an integer"),
        (_job(trigger={"daily_time": "6pm"}), "HH:MM"),
        (_job(trigger={"daily_time": ["24:00"]}), "out of range"),
        (_job(trigger={"date": {"run_at": "  "}}), "ISO-8601"),
        (_job(max_instances=0), "must be >= 1"),
        (_job(coalesce="maybe"), "must be a boolean"),
        (_job(kwargs=["niche_id"]), "'kwargs' must be a dict"),
        (_job(summary=5), "'summary' must be a string"),
    ],
)
def test_validate_rejects(job, message):
    with pytest.raises(ConfigError, match=message):
        config_schema.validate({"jobs": [job]})


def test_duplicate_ids_rejected():
    with pytest.raises(ConfigError, match="Duplicate job id 'j'"):
        config_schema.validate({"jobs": [_job(), _job()]})


def test_validate_requires_jobs_list():
    with pytest.raises(ConfigError, match="'jobs'"):
        config_schema.validate({})
    with pytest.raises(ConfigError, match="must be a list"):
        config_schema.validate({"jobs": {}})
