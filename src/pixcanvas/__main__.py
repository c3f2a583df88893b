# src/pixcanvas/__main__.py
from __future__ import annotations

import argparse
import dataclasses
import json
import logging
import sys
import time
from typing import List, Optional

from pixcanvas.live.config import read_env_file
from pixcanvas.errors import AuthError, CanvasIOError, MalformedRecord
from pixcanvas.logging_utils import configure_structured_logging, log_event

log = logging.getLogger("pixcanvas.cli")


def _record_json(rec: object) -> str:
    d = dataclasses.asdict(rec)  # type: ignore[arg-type]
    d["type"] = type(rec).__name__
    data = d.get("data")
    if isinstance(data, (bytes, bytearray)):
        d["data"] = len(data)
    return json.dumps(d, sort_keys=True, separators=(",", ":"))


def cmd_live(args: argparse.Namespace) -> int:
    from pixcanvas.live.client import PixelcanvasClient

    client = PixelcanvasClient()
    if args.auth:
        try:
            client.authenticate_me()
        except (AuthError, CanvasIOError) as e:
            log_event(log, "auth_failed", level=logging.ERROR, code=e.code, error=str(e))
            return 2

    client.start()
    try:
        if args.seconds is None:
            while True:
                time.sleep(1.0)
        else:
            time.sleep(max(0.0, float(args.seconds)))
    except KeyboardInterrupt:
        pass
    finally:
        client.close()
    return 0


def cmd_dump(args: argparse.Namespace) -> int:
    from pixcanvas.recording.reader import open_recording

    try:
        with open_recording(args.file, tolerate_truncation=args.tolerant) as rd:
            print(json.dumps(dataclasses.asdict(rd.header), sort_keys=True, separators=(",", ":")))
            for i, rec in enumerate(rd.records()):
                if args.limit is not None and i >= args.limit:
                    break
                print(_record_json(rec))
    except (CanvasIOError, MalformedRecord) as e:
        print(f"error: {e}", file=sys.stderr)
        return 2
    return 0


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(prog="pixcanvas")
    sub = ap.add_subparsers(dest="command", required=True)

    live = sub.add_parser("live", help="connect to the live canvas and log updates")
    live.add_argument("--seconds", type=float, default=None, help="run for N seconds (default: until Ctrl-C)")
    live.add_argument("--auth", action="store_true", help="authenticate the fingerprint first")
    live.set_defaults(func=cmd_live)

    dump = sub.add_parser("dump", help="print a .pixrec recording as JSON lines")
    dump.add_argument("file")
    dump.add_argument("--limit", type=int, default=None)
    dump.add_argument("--tolerant", action="store_true", help="stop quietly at a truncated tail")
    dump.set_defaults(func=cmd_dump)
    return ap


def main(argv: Optional[List[str]] = None) -> int:
    # Load .env early so PIXCANVAS_* vars exist before anything reads them.
    read_env_file()
    configure_structured_logging()

    args = build_parser().parse_args(argv)
    return int(args.func(args))


if __name__ == "__main__":
    raise SystemExit(main())
