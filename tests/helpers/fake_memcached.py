"""Stand-in for the memcached binary used by lifecycle tests.

Honours the parts of memcached that mctest relies on:
- ``-l``/``-p`` bind address, ``-P`` PID file (left behind on exit)
- a ``server listening`` line on stderr once the socket accepts
- the text protocol subset ``set``/``get``/``delete``/``version``/``quit``

Extra switches drive failure scenarios:
- ``--stall-once PATH``: if PATH exists, delete it, write our PID to
  ``PATH.pid`` and hang without ever becoming ready
- ``--stall-always``: hang without ever becoming ready
- ``--exit-code N``: print an error and exit with N before becoming ready
- ``--exit-after S``: exit on our own S seconds after becoming ready
- ``--ignore-term``: ignore SIGTERM
- ``--bytewise-marker``: emit the readiness line one byte per write
- ``--delay-listen S``: print the marker S seconds before binding
"""
from __future__ import annotations

import argparse
import os
import signal
import socket
import socketserver
import sys
import threading
import time
from pathlib import Path

MARKER_LINE = "<26 server listening (auto-negotiate)\n"

_store: dict[bytes, tuple[int, bytes]] = {}
_store_lock = threading.Lock()


def _say(text: str, *, bytewise: bool = False) -> None:
    if not bytewise:
        sys.stderr.write(text)
        sys.stderr.flush()
        return
    fd = sys.stderr.fileno()
    for byte in text.encode("utf-8"):
        os.write(fd, bytes([byte]))
        time.sleep(0.001)


def _hang() -> None:
    while True:
        time.sleep(1)


class _Handler(socketserver.StreamRequestHandler):
    def handle(self) -> None:
        while True:
            line = self.rfile.readline()
            if not line:
                return
            parts = line.strip().split()
            if not parts:
                continue
            cmd = parts[0].lower()
            if cmd == b"set" and len(parts) >= 5:
                key, flags, size = parts[1], int(parts[2]), int(parts[4])
                data = self.rfile.read(size + 2)[:size]
                with _store_lock:
                    _store[key] = (flags, data)
                if parts[-1] != b"noreply":
                    self.wfile.write(b"STORED\r\n")
            elif cmd in (b"get", b"gets"):
                out = []
                with _store_lock:
                    for key in parts[1:]:
                        if key in _store:
                            flags, data = _store[key]
                            out.append(b"VALUE %s %d %d\r\n%s\r\n" % (key, flags, len(data), data))
                self.wfile.write(b"".join(out) + b"END\r\n")
            elif cmd == b"delete" and len(parts) >= 2:
                with _store_lock:
                    found = _store.pop(parts[1], None) is not None
                if parts[-1] != b"noreply":
                    self.wfile.write(b"DELETED\r\n" if found else b"NOT_FOUND\r\n")
            elif cmd == b"version":
                self.wfile.write(b"VERSION 0.0.0-fake\r\n")
            elif cmd == b"quit":
                return
            else:
                self.wfile.write(b"ERROR\r\n")
            self.wfile.flush()


class _Server(socketserver.ThreadingTCPServer):
    allow_reuse_address = True
    daemon_threads = True


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(add_help=False)
    parser.add_argument("-l", dest="host", default="127.0.0.1")
    parser.add_argument("-p", dest="port", type=int, default=11211)
    parser.add_argument("-P", dest="pid_file")
    parser.add_argument("--stall-once")
    parser.add_argument("--stall-always", action="store_true")
    parser.add_argument("--exit-code", type=int)
    parser.add_argument("--exit-after", type=float)
    parser.add_argument("--ignore-term", action="store_true")
    parser.add_argument("--bytewise-marker", action="store_true")
    parser.add_argument("--delay-listen", type=float, default=0.0)
    args, _unknown = parser.parse_known_args(argv)

    if ":" in args.host:
        _Server.address_family = socket.AF_INET6

    if args.ignore_term:
        signal.signal(signal.SIGTERM, signal.SIG_IGN)

    if args.pid_file:
        Path(args.pid_file).write_text(f"{os.getpid()}\n", encoding="utf-8")

    _say("slab class   1: chunk size        96 perslab   10922\n")

    if args.exit_code is not None:
        _say(f"failed to listen on TCP port {args.port}: fake failure\n")
        return args.exit_code

    if args.stall_always:
        _hang()
    if args.stall_once:
        stall = Path(args.stall_once)
        if stall.exists():
            stall.unlink()
            Path(f"{stall}.pid").write_text(f"{os.getpid()}\n", encoding="utf-8")
            _hang()

    if args.delay_listen:
        _say(MARKER_LINE, bytewise=args.bytewise_marker)
        time.sleep(args.delay_listen)
        server = _Server((args.host, args.port), _Handler)
    else:
        server = _Server((args.host, args.port), _Handler)
        _say(MARKER_LINE, bytewise=args.bytewise_marker)

    if args.exit_after is not None:
        threading.Timer(args.exit_after, os._exit, args=(0,)).start()

    server.serve_forever()
    return 0


if __name__ == "__main__":
    sys.exit(main())
