import logging
import socket

import pytest

from packet_logger import Config, PacketLogger


@pytest.fixture
def restore_logging():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    for h in list(root.handlers):
        if h not in handlers:
            root.removeHandler(h)
            h.close()
    for h in handlers:
        if h not in root.handlers:
            root.addHandler(h)
    root.setLevel(level)


@pytest.fixture
def capture_path(tmp_path):
    return tmp_path / "udp_packets.log"


@pytest.fixture
def make_logger(capture_path):
    opened = []

    def _make(**listen):
        cfg = Config()
        cfg.listen.port = 0
        for k, v in listen.items():
            setattr(cfg.listen, k, v)
        cfg.output.path = str(capture_path)
        plog = PacketLogger(cfg)
        plog.open()
        opened.append(plog)
        return plog

    yield _make
    for plog in opened:
        plog.close()


@pytest.fixture
def sender():
    s = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    s.bind(("127.0.0.1", 0))
    yield s
    s.close()
