import json

import pytest

from core.config import Config
from core.exceptions import ConfigurationError
from data.models import JobResult
from progress_tracker import ProgressTracker


def test_progress_records_only_completed_exports(tmp_path):
    progress = ProgressTracker(str(tmp_path / "progress.json"))

    progress.record_result(JobResult(id="a", outcome="Completed"))
    progress.record_result(JobResult(id="b", outcome="Failed", reason="timeout"))
    progress.record_result(JobResult(id="a", outcome="Completed"))

    assert progress.load_progress()["exported_conversation_ids"] == ["a"]
    assert progress.get_stats()["total_exported"] == 1
    assert progress.filter_pending(["a", "b", "c"]) == ["b", "c"]


def test_corrupt_progress_file_is_treated_as_empty(tmp_path):
    path = tmp_path / "progress.json"
    path.write_text("{not json", encoding="utf-8")

    assert ProgressTracker(str(path)).filter_pending(["a"]) == ["a"]


def test_config_defaults_without_settings_file(tmp_path):
    config = Config(config_dir=str(tmp_path))

    assert config.download_wait_budget == 15.0
    assert config.settle_delay == 3.0
    assert config.inter_job_delay == 2.0
    assert config.poll_interval == 0.2
    assert config.scope_selector == "0"
    assert config.close_worker_after_job is False
    assert config.validate_config() == []


def test_settings_file_overrides_nested_values(tmp_path):
    (tmp_path / "settings.json").write_text(json.dumps({"batch": {"settle_delay": 1}}), encoding="utf-8")
    config = Config(config_dir=str(tmp_path))

    assert config.settle_delay == 1.0
    assert config.download_wait_budget == 15.0


def test_invalid_settings_file_raises(tmp_path):
    (tmp_path / "settings.json").write_text("[1, 2", encoding="utf-8")
    with pytest.raises(ConfigurationError):
        Config(config_dir=str(tmp_path))


def test_validate_reports_bad_values(tmp_path):
    config = Config(config_dir=str(tmp_path))
    config.update_setting("download.conflict_policy", "prompt")
    config.update_setting("download.poll_interval", 0)

    issues = config.validate_config()

    assert len(issues) == 2


def test_save_settings_round_trips_updates(tmp_path):
    config = Config(config_dir=str(tmp_path))
    config.update_setting("gemini.scope_selector", "3")
    config.save_settings()

    assert Config(config_dir=str(tmp_path)).scope_selector == "3"
