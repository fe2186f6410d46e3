"""
Tests for the structured job event logger.
"""

import json
import logging

from imgcache.utils.structured_logger import StructuredLogger, create_job_logger


def test_json_lines_are_written(tmp_path):
    base, jobs = create_job_logger(log_dir=tmp_path, enable_json=True)
    jobs.job_succeeded(7, removed=12, duration_s=0.12345)
    jobs.job_failed(8, "boom", attempt=2, terminal=False)
    base.close()

    (log_file,) = tmp_path.glob("imgcache_*.jsonl")
    entries = [json.loads(line) for line in log_file.read_text().splitlines()]

    assert [e["event"] for e in entries] == ["job_succeeded", "job_failed"]
    assert entries[0]["job_id"] == 7
    assert entries[0]["duration_s"] == 0.123
    assert entries[0]["session_id"] == entries[1]["session_id"]
    assert entries[1]["level"] == "WARNING"
    assert entries[1]["terminal"] is False


def test_json_disabled_without_directory(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    logger = StructuredLogger("imgcache.test", log_dir=None, enable_json=True)
    logger.info("job_started", job_id=1)
    logger.close()

    assert list(tmp_path.rglob("*.jsonl")) == []


def test_console_message_format(caplog):
    logger = StructuredLogger("imgcache.test.console", enable_json=False)
    with caplog.at_level(logging.INFO, logger="imgcache.test.console"):
        logger.info("job_enqueued", job_id=1, kind="periodic")

    assert "[job_enqueued] job_id=1 kind=periodic" in caplog.text
