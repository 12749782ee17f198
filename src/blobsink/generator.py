"""
Synthetic traffic for a running ingest service: posts a random XML document every
interval and keeps a running success/failure tally on one terminal line.
"""
from __future__ import annotations

import argparse
import os
import queue
import random
import sys
import threading
import time
import uuid
from typing import Optional

import requests
from requests.adapters import HTTPAdapter

WORDS = (
    "lorem ipsum dolor sit amet consectetur adipiscing elit sed do eiusmod tempor "
    "incididunt ut labore et dolore magna aliqua enim ad minim veniam quis nostrud "
    "exercitation ullamco laboris nisi aliquip ex ea commodo consequat"
).split()

MAX_SOCKETS = 40
MAX_FREE_SOCKETS = 10
TIMEOUT_S = 60.0


def _words(n: int, rng: random.Random) -> str:
    return " ".join(rng.choice(WORDS) for _ in range(n))


def _sentence(rng: random.Random) -> str:
    return _words(rng.randint(5, 15), rng).capitalize() + "."


def _paragraph(rng: random.Random) -> str:
    return " ".join(_sentence(rng) for _ in range(rng.randint(3, 7)))


def generate_xml(rng: Optional[random.Random] = None) -> str:
    rng = rng or random.Random()
    lines = ["<doc>", f"  <id>{uuid.uuid4()}</id>", f"  <name>{_words(1, rng)}</name>"]
    lines += [f"  <c{i}>{_words(1, rng)}</c{i}>" for i in range(4)]
    lines.append(f"  <short>{_sentence(rng)}</short>")
    lines += [f"  <a{i}>{_paragraph(rng)}</a{i}>" for i in range(4)]
    lines.append("</doc>")
    return "\n".join(lines)


class TrafficGenerator:
    def __init__(self, url: str, workers: int = 4, timeout: float = TIMEOUT_S, session: Optional[requests.Session] = None):
        self.url = url
        self.timeout = timeout
        self.success = 0
        self.fail = 0
        self._lock = threading.Lock()
        self.session = session or self._build_session()
        self.q: "queue.Queue[str]" = queue.Queue(maxsize=MAX_SOCKETS)
        for _ in range(workers):
            threading.Thread(target=self._worker, daemon=True).start()

    @staticmethod
    def _build_session() -> requests.Session:
        session = requests.Session()
        adapter = HTTPAdapter(pool_connections=MAX_FREE_SOCKETS, pool_maxsize=MAX_SOCKETS)
        session.mount("http://", adapter)
        session.mount("https://", adapter)
        return session

    def submit(self, body: str) -> bool:
        try:
            self.q.put_nowait(body)
            return True
        except queue.Full:
            # receiver is not keeping up; count it as a failure
            self._count(False)
            return False

    def post(self, body: str) -> bool:
        try:
            resp = self.session.post(self.url, data=body.encode("utf-8"), timeout=self.timeout)
            ok = 200 <= resp.status_code < 300
        except requests.RequestException:
            ok = False
        self._count(ok)
        return ok

    def _count(self, ok: bool) -> None:
        with self._lock:
            if ok:
                self.success += 1
            else:
                self.fail += 1

    def _worker(self):
        while True:
            body = self.q.get()
            try:
                self.post(body)
            finally:
                self.q.task_done()

    def status_line(self) -> str:
        with self._lock:
            return f"success: {self.success}, fail: {self.fail}."


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="blobsink-generate", description="Post random XML documents to a receiver.")
    parser.add_argument("-u", "--url", default=os.getenv("URL"), help="URL of the receiver.")
    parser.add_argument(
        "-i", "--interval", type=int, default=int(os.getenv("INTERVAL", "1000")),
        help="Send a request every INTERVAL milliseconds (default 1000).",
    )
    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    if not args.url:
        print("You must specify a URL for the receiver.", file=sys.stderr)
        return 2

    gen = TrafficGenerator(args.url)
    try:
        while True:
            gen.submit(generate_xml())
            sys.stdout.write("\r\033[K" + gen.status_line())
            sys.stdout.flush()
            time.sleep(args.interval / 1000.0)
    except KeyboardInterrupt:
        sys.stdout.write("\n")
    return 0


if __name__ == "__main__":
    sys.exit(main())
