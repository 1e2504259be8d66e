import json
import re
import logging
from datetime import datetime

from utils import (
    JsonFormatter,
    decode_payload,
    format_address,
    format_timestamp,
    normalize_level,
    render_line,
    setup_logging,
)


def test_format_timestamp_millis():
    dt = datetime(2024, 1, 1, 12, 0, 0, 123456)
    assert format_timestamp(dt) == "2024-01-01 12:00:00.123"


def test_format_timestamp_pads_millis():
    dt = datetime(2024, 1, 1, 12, 0, 5, 7000)
    assert format_timestamp(dt) == "2024-01-01 12:00:05.007"


def test_format_address():
    assert format_address(("127.0.0.1", 54321)) == "127.0.0.1:54321"
    assert format_address(("::1", 8080, 0, 0)) == "[::1]:8080"


def test_decode_payload_replaces_invalid_bytes():
    assert decode_payload(b"hello") == "hello"
    assert decode_payload(b"ab\xffcd") == "ab\ufffdcd"


def test_render_line_example():
    dt = datetime(2024, 1, 1, 12, 0, 0, 123000)
    line = render_line("127.0.0.1:54321", "hello", dt)
    assert line == "[2024-01-01 12:00:00.123] Received from 127.0.0.1:54321: hello\n"


def test_normalize_level():
    assert normalize_level("dbg") == logging.DEBUG
    assert normalize_level("warning") == logging.WARNING
    assert normalize_level(None) == logging.INFO
    assert normalize_level("nonsense") == logging.INFO


def test_json_formatter_includes_extras():
    record = logging.LogRecord("packet_logger", logging.INFO, __file__, 1,
                               "Received %d bytes", (5,), None)
    record.src = "127.0.0.1:1"
    record.size = 5
    out = json.loads(JsonFormatter().format(record))
    assert out["msg"] == "Received 5 bytes"
    assert out["level"] == "INFO"
    assert out["src"] == "127.0.0.1:1"
    assert out["size"] == 5
    assert "event" not in out
    assert re.match(r"^\d{4}-\d{2}-\d{2} \d{2}:\d{2}:\d{2}\.\d{3}$", out["when"])


def test_setup_logging_splits_streams(capsys, restore_logging):
    setup_logging("INFO")
    log = logging.getLogger("packet_logger")
    log.info("status line")
    log.debug("hidden")
    log.error("bad thing")
    captured = capsys.readouterr()
    assert "status line" in captured.out
    assert "bad thing" not in captured.out
    assert "bad thing" in captured.err
    assert "hidden" not in captured.out + captured.err


def test_setup_logging_blackbox_file(tmp_path, restore_logging):
    path = tmp_path / "diag" / "bb.log"
    setup_logging("INFO", logfile=str(path))
    logging.getLogger("packet_logger").debug("debug goes to file", extra={"event": "x"})
    for h in logging.getLogger().handlers:
        h.flush()
    lines = [json.loads(line) for line in path.read_text(encoding="utf-8").splitlines()]
    assert any(entry["msg"] == "debug goes to file" and entry["event"] == "x" for entry in lines)
