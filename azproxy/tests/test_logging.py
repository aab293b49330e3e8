import logging

from azproxy.config.settings import settings
from azproxy.observability.logging import format_event, log_event
from azproxy.util.logger import LOG_FILE_NAME, _file_handler, _normalize_level


def test_normalize_level_accepts_names_case_insensitively():
    assert _normalize_level("debug") == logging.DEBUG
    assert _normalize_level(" Warning ") == logging.WARNING
    assert _normalize_level("") == logging.INFO
    assert _normalize_level("chatty") == logging.INFO


def test_file_handler_writes_into_configured_directory(tmp_path, monkeypatch):
    monkeypatch.setattr(settings, "log_file_max_bytes", 4096)
    monkeypatch.setattr(settings, "log_file_backup_count", 2)
    log_dir = tmp_path / "nested" / "logs"

    handler = _file_handler(log_dir, logging.INFO, logging.Formatter("%(message)s"))
    assert handler is not None
    try:
        assert handler.maxBytes == 4096
        assert handler.backupCount == 2
        handler.emit(logging.makeLogRecord({"msg": "hello", "levelno": logging.INFO}))
        handler.flush()
    finally:
        handler.close()

    assert (log_dir / LOG_FILE_NAME).read_text(encoding="utf-8") == "hello\n"


def test_file_handler_skipped_when_directory_unusable(tmp_path):
    blocker = tmp_path / "not-a-dir"
    blocker.write_text("x", encoding="utf-8")

    assert _file_handler(blocker / "logs", logging.INFO, logging.Formatter()) is None


def test_format_event_renders_key_value_pairs():
    line = format_event("request_summary", url="/chat/completions", message_count=2, tools="none")
    assert line == "event=request_summary url='/chat/completions' message_count=2 tools='none'"
    assert format_event("ping") == "event=ping"


def test_log_event_emits_single_info_line(proxy_logs):
    log_event("request_summary", model="gpt-4o", message_count=1)

    records = [r for r in proxy_logs if r.getMessage().startswith("event=")]
    assert len(records) == 1
    assert records[0].levelno == logging.INFO
    assert records[0].getMessage() == "event=request_summary model='gpt-4o' message_count=1"
