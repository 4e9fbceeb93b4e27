# tests/test_config.py
import json
import logging

from scanhub.core.config import Config
from scanhub.core.logging_config import (
    JSONFormatter,
    clear_log_context,
    get_component_logger,
    set_log_context,
)


def test_from_env(monkeypatch):
    monkeypatch.setenv("SCANHUB_MESSAGING_BROKER_TYPE", "kafka")
    monkeypatch.setenv("SCANHUB_MESSAGING_SCAN_TOPIC", "scan-jobs")
    monkeypatch.setenv("SCANHUB_OCC_MAX_RETRIES", "4")
    monkeypatch.setenv("SCANHUB_CLEANUP_COMMENT_MIRROR", "true")
    monkeypatch.setenv("SCANHUB_ARCHIVE_PASSWORD", "malware")

    config = Config.from_env()

    assert config.messaging.broker_type == "kafka"
    assert config.messaging.scan_topic == "scan-jobs"
    assert config.storage.occ_max_retries == 4
    assert config.social.cleanup_comment_mirror is True
    assert config.storage.archive_password == "malware"


def test_production_validation():
    config = Config(environment="production")
    issues = config.validate()

    assert any("JWT secret" in issue for issue in issues)
    assert any("CORS" in issue for issue in issues)


def test_to_dict_has_no_secrets():
    config = Config()
    config.api.jwt_secret = "s3cret"
    assert "s3cret" not in json.dumps(config.to_dict())


def test_json_log_lines_carry_context(caplog):
    logger = get_component_logger("pipeline")
    set_log_context(request_id="req-1")
    try:
        with caplog.at_level(logging.INFO, logger="scanhub.pipeline"):
            logger.info("File stored", data={"sha256": "ab"})
        line = json.loads(JSONFormatter().format(caplog.records[-1]))
    finally:
        clear_log_context()

    assert line["component"] == "pipeline"
    assert line["data"] == {"sha256": "ab"}
    assert line["context"] == {"request_id": "req-1"}
