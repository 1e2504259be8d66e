#!/usr/bin/env python3

"""
    packet_logger.py  - UDP datagram capture to a line-oriented log file.

    Features:
    - Optional YAML/JSON config, CLI overrides
    - Bind one UDP socket and receive datagrams in a blocking loop
    - One log line per datagram, written and fsync'ed before the next receive
    - Lossy text rendering of payloads (invalid bytes -> U+FFFD)
    - Receive errors logged and ignored; write errors fatal or ignored by policy
    - Console logging (INFO/DBG) and optional blackbox JSON file logging with rotation
"""
from __future__ import annotations
import argparse
import json
import logging
import os
import signal
import socket
import sys
import threading
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, TextIO
from utils import decode_payload, format_address, render_line, setup_logging

# third-party deps
try:
    import yaml
except Exception as e:
    print("ERROR: One of the third-party deps is not installed.", file=sys.stderr)
    raise

WRITE_POLICIES = ("fatal", "continue")

# --------------------------- Config ---------------------------
"""
    Address to listen on + receive buffer size. Datagrams larger than
    buffer_size are truncated by the kernel.
"""
@dataclass
class ListenCfg:
    host: str = "127.0.0.1"
    port: int = 8080
    buffer_size: int = 1500


@dataclass
class OutputCfg:
    path: str = "udp_packets.log"
    fsync: bool = True
    on_write_error: str = "fatal"


@dataclass
class LogCfg:
    level: str = "INFO"
    blackbox: bool = False
    file: Optional[str] = None


@dataclass
class Config:
    listen: ListenCfg = field(default_factory=ListenCfg)
    output: OutputCfg = field(default_factory=OutputCfg)
    logging: LogCfg = field(default_factory=LogCfg)


def _section(cls, raw: Dict[str, Any], name: str):
    try:
        return cls(**(raw.get(name) or {}))
    except TypeError as e:
        raise ValueError(f"Bad '{name}' section: {e}") from e


def _as_int(value, name: str) -> int:
    if isinstance(value, bool):
        raise ValueError(f"{name} must be an integer, got {value!r}")
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValueError(f"{name} must be an integer, got {value!r}") from None


def validate_config(cfg: Config) -> Config:
    cfg.listen.port = _as_int(cfg.listen.port, "listen.port")
    cfg.listen.buffer_size = _as_int(cfg.listen.buffer_size, "listen.buffer_size")
    if not 0 <= cfg.listen.port <= 65535:
        raise ValueError(f"listen.port {cfg.listen.port} outside [0, 65535]")
    if cfg.listen.buffer_size < 1:
        raise ValueError("listen.buffer_size must be >= 1")
    if cfg.output.on_write_error not in WRITE_POLICIES:
        raise ValueError(f"output.on_write_error must be one of {WRITE_POLICIES}, "
                         f"got '{cfg.output.on_write_error}'")
    if not cfg.output.path:
        raise ValueError("output.path must not be empty")
    return cfg


def load_config(path: Optional[str] = None) -> Config:
    raw: Dict[str, Any] = {}
    if path:
        with open(path, "r", encoding="utf-8") as f:
            if path.endswith(".json"):
                raw = json.load(f)
            else:
                raw = yaml.safe_load(f) or {}
    if not isinstance(raw, dict):
        raise ValueError("config root must be a mapping")
    cfg = Config(
        listen=_section(ListenCfg, raw, "listen"),
        output=_section(OutputCfg, raw, "output"),
        logging=_section(LogCfg, raw, "logging"),
    )
    return validate_config(cfg)



# --------------------------- Packet Logger ---------------------------
"""
    Owns the bound socket and the capture file.
    recv -> render -> write -> flush/fsync, strictly in that order.
"""
class PacketLogger:
    def __init__(self, cfg: Config) -> None:
        self.cfg = cfg
        self.log = logging.getLogger("packet_logger")
        self.sock: Optional[socket.socket] = None
        self.out: Optional[TextIO] = None

        # metrics
        self.metrics = {
            "recv": 0,
            "bytes": 0,
            "recv_errors": 0,
            "write_errors": 0,
        }
        self._shutdown = threading.Event()

    @property
    def address(self):
        if self.sock is None:
            return (self.cfg.listen.host, self.cfg.listen.port)
        return self.sock.getsockname()

    # ---- Lifecycle ----
    def open(self) -> None:
        host, port = self.cfg.listen.host, self.cfg.listen.port
        family = socket.AF_INET6 if ":" in host else socket.AF_INET
        sock = socket.socket(family, socket.SOCK_DGRAM)
        try:
            sock.bind((host, port))
        except OSError:
            sock.close()
            raise
        try:
            # "w" truncates whatever a previous run left behind
            self.out = open(self.cfg.output.path, "w", encoding="utf-8", newline="")
        except OSError:
            sock.close()
            raise
        self.sock = sock
        self.log.info("UDP Listener started on %s", format_address(self.address))
        self.log.info("Incoming packets will be logged to '%s'", self.cfg.output.path)

    def stop(self) -> None:
        self._shutdown.set()

    def close(self) -> None:
        if self.sock is None and self.out is None:
            return
        sock, out = self.sock, self.out
        self.sock, self.out = None, None
        if sock is not None:
            sock.close()
        if out is not None:
            try:
                out.close()
            except OSError as e:
                # unflushed tail of a failed write
                self.log.warning("Couldn't close '%s' cleanly: %s", self.cfg.output.path, e)
        m = self.metrics
        self.log.info("Packet logger stopped: recv=%s bytes=%s recv_errors=%s write_errors=%s",
                      m["recv"], m["bytes"], m["recv_errors"], m["write_errors"],
                      extra={"event": "stopped", "metrics": dict(m)})

    def __enter__(self) -> "PacketLogger":
        self.open()
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    # ---- Capture ----
    def persist(self, line: str) -> None:
        self.out.write(line)
        self.out.flush()
        if self.cfg.output.fsync:
            os.fsync(self.out.fileno())

    def handle_one(self) -> bool:
        try:
            data, addr = self.sock.recvfrom(self.cfg.listen.buffer_size)
        except OSError as e:
            self.metrics["recv_errors"] += 1
            self.log.error("Error receiving packet: %s", e, extra={"event": "recv_error"})
            return False

        src = format_address(addr)
        text = decode_payload(data)
        try:
            self.persist(render_line(src, text))
        except OSError as e:
            if self.cfg.output.on_write_error == "fatal":
                raise
            self.metrics["write_errors"] += 1
            self.log.error("Couldn't write packet from %s to '%s': %s", src, self.cfg.output.path, e,
                           extra={"event": "write_error", "src": src})
            return False

        self.metrics["recv"] += 1
        self.metrics["bytes"] += len(data)
        self.log.info("Received %d bytes from %s: %s", len(data), src, text,
                      extra={"event": "packet", "src": src, "size": len(data)})
        return True

    def run(self) -> None:
        while not self._shutdown.is_set():
            self.handle_one()

# --------------------------- Main ---------------------
def parse_args(argv=None):
    p = argparse.ArgumentParser(description="Capture UDP datagrams to a log file")
    p.add_argument("--config", "-c", help="Path to YAML/JSON config")
    p.add_argument("--host", help="Bind address (default: 127.0.0.1)")
    p.add_argument("--port", type=int, help="UDP port to listen on (default: 8080)")
    p.add_argument("--log-file", help="Capture file, truncated on start (default: udp_packets.log)")
    p.add_argument("--buffer-size", type=int, help="Receive buffer size in bytes (default: 1500)")
    p.add_argument("--log-level", help="Console log level (INFO, DBG, ...)")
    return p.parse_args(argv)


def apply_overrides(cfg: Config, args) -> Config:
    if args.host is not None:
        cfg.listen.host = args.host
    if args.port is not None:
        cfg.listen.port = args.port
    if args.buffer_size is not None:
        cfg.listen.buffer_size = args.buffer_size
    if args.log_file is not None:
        cfg.output.path = args.log_file
    if args.log_level is not None:
        cfg.logging.level = args.log_level
    return validate_config(cfg)


def main(argv=None):
    args = parse_args(argv)
    try:
        cfg = apply_overrides(load_config(args.config), args)
    except Exception as e:
        print(f"Failed to load config: {e}", file=sys.stderr)
        sys.exit(2)

    setup_logging(cfg.logging.level, blackbox=cfg.logging.blackbox, logfile=cfg.logging.file)
    log = logging.getLogger("packet_logger")
    plog = PacketLogger(cfg)

    try:
        plog.open()
    except OSError as e:
        log.critical("Couldn't start listener on %s:%s -> '%s': %s",
                     cfg.listen.host, cfg.listen.port, cfg.output.path, e)
        sys.exit(1)

    def _sig_handler(signum, frame):
        log.info("Received signal %s, shutting down ...", signum)
        plog.stop()
        sys.exit(0)

    signal.signal(signal.SIGINT, _sig_handler)
    signal.signal(signal.SIGTERM, _sig_handler)

    try:
        plog.run()
    except OSError as e:
        log.critical("Couldn't write to '%s': %s", cfg.output.path, e)
        sys.exit(1)
    finally:
        plog.close()


if __name__ == "__main__":
    main()
