
# utils.py
"""
Helpers shared by the packet logger: rendering and logging setup.
"""
import os
import sys
import json
import logging
from datetime import datetime
from logging.handlers import RotatingFileHandler

# Rendering helpers ---------------------------------------------------------------------

"""Render a local-time timestamp as YYYY-MM-DD HH:MM:SS.mmm."""
def format_timestamp(dt: datetime | None = None) -> str:
    dt = dt or datetime.now()
    return f"{dt.strftime('%Y-%m-%d %H:%M:%S')}.{dt.microsecond // 1000:03d}"

"""Render a socket address tuple as host:port ([host]:port for IPv6)."""
def format_address(addr) -> str:
    host, port = addr[0], addr[1]
    if ":" in host:
        return f"[{host}]:{port}"
    return f"{host}:{port}"

"""Bytes -> text, invalid sequences replaced with U+FFFD."""
def decode_payload(data: bytes) -> str:
    return data.decode("utf-8", errors="replace")

def render_line(src: str, text: str, dt: datetime | None = None) -> str:
    return f"[{format_timestamp(dt)}] Received from {src}: {text}\n"

# Logging helpers  -----------------------------------------------------------------------

# record attributes copied into blackbox entries when a log call sets them
PACKET_FIELDS = ("event", "src", "size", "metrics")

class JsonFormatter(logging.Formatter):
    """One JSON object per record; `when` is the capture-style local timestamp."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "when": format_timestamp(datetime.fromtimestamp(record.created)),
            "level": record.levelname,
            "msg": record.getMessage(),
        }
        entry.update({k: getattr(record, k) for k in PACKET_FIELDS if hasattr(record, k)})
        if record.exc_info:
            entry["exc"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False, default=str)


class _BelowLevel(logging.Filter):
    def __init__(self, level: int) -> None:
        super().__init__()
        self.level = level

    def filter(self, record: logging.LogRecord) -> bool:
        return record.levelno < self.level


def normalize_level(level: str | None) -> int:
    norm = (level or "INFO").upper()
    if norm == "DBG":
        norm = "DEBUG"
    return getattr(logging, norm, logging.INFO)

def setup_logging(level: str = "INFO", blackbox: bool = False, logfile: str | None = None):
    lvl = normalize_level(level)

    for h in list(logging.root.handlers):
        logging.root.removeHandler(h)

    logging.root.setLevel(logging.DEBUG)
    fmt = logging.Formatter("%(asctime)s [%(levelname)s] %(message)s", datefmt="%H:%M:%S")

    # status lines -> stdout, warnings and errors -> stderr
    out = logging.StreamHandler(sys.stdout)
    out.setLevel(lvl)
    out.addFilter(_BelowLevel(logging.WARNING))
    out.setFormatter(fmt)
    logging.root.addHandler(out)

    err = logging.StreamHandler(sys.stderr)
    err.setLevel(max(lvl, logging.WARNING))
    err.setFormatter(fmt)
    logging.root.addHandler(err)

    # Blackbox JSON file
    if blackbox or logfile:
        path = logfile or "logs/packet_logger.blackbox.log"
        parent = os.path.dirname(path)
        if parent:
            os.makedirs(parent, exist_ok=True)
        fh = RotatingFileHandler(path, maxBytes=5 * 1024 * 1024, backupCount=3)
        fh.setLevel(logging.DEBUG)
        fh.setFormatter(JsonFormatter())
        logging.root.addHandler(fh)
        logging.getLogger("packet_logger").info("Blackbox logging enabled -> %s", path)
