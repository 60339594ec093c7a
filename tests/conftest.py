import asyncio
import json
import os
import stat
import sys

import pytest
from fastapi.testclient import TestClient

from backend.app.config import settings
from backend.app.main import app

# Fake yt-dlp: records its argv, then behaves according to MODE.
STUB_BODY = r'''
import json
import sys

args = sys.argv[1:]
with open(CALLS, "a") as fh:
    fh.write(json.dumps(args) + "\n")
out = args[args.index("-o") + 1]

if MODE == "ok":
    with open(out + ".part", "wb") as fh:
        fh.write(b"partial")
    with open(out, "wb") as fh:
        fh.write(bytes(range(100)))
    sys.stdout.write("[download] Destination: " + out + "\n")
    sys.exit(0)
elif MODE == "empty":
    sys.stderr.write("[debug] nothing to merge\n")
    sys.exit(0)
elif MODE == "bot":
    sys.stderr.write("ERROR: [youtube] abc: Sign in to confirm you're not a bot\n")
    sys.exit(1)
elif MODE == "fail":
    sys.stderr.write("ERROR: Unsupported URL: https://example.com/video\n")
    sys.exit(2)
elif MODE == "noisy":
    for _ in range(64):
        sys.stdout.write("o" * 32768)
        sys.stderr.write("e" * 32768)
    with open(out, "wb") as fh:
        fh.write(b"v" * 10)
    sys.exit(0)
elif MODE == "hang":
    import time
    time.sleep(30)
'''


def read_calls(calls_file):
    if not os.path.exists(calls_file):
        return []
    with open(calls_file) as fh:
        return [json.loads(line) for line in fh if line.strip()]


@pytest.fixture
def uploads_dir(tmp_path):
    path = tmp_path / "uploads"
    path.mkdir()
    return path


@pytest.fixture
def calls_file(tmp_path):
    return tmp_path / "calls.jsonl"


@pytest.fixture
def make_stub(tmp_path, calls_file, monkeypatch):
    """Install a fake yt-dlp executable behaving as ``mode`` and return its path."""

    def _make(mode):
        script = tmp_path / f"yt-dlp-{mode}"
        header = f"#!{sys.executable}\nCALLS = {str(calls_file)!r}\nMODE = {mode!r}\n"
        script.write_text(header + STUB_BODY)
        script.chmod(script.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
        monkeypatch.setattr(settings, "ytdlp_command", str(script))
        return script

    return _make


@pytest.fixture(autouse=True)
def isolated_settings(tmp_path, uploads_dir, monkeypatch):
    monkeypatch.setattr(settings, "uploads_dir", str(uploads_dir))
    monkeypatch.setattr(settings, "cookies_file", str(tmp_path / "cookies.txt"))
    monkeypatch.setattr(settings, "process_timeout", None)
    return settings


@pytest.fixture
def client():
    with TestClient(app) as c:
        yield c


@pytest.fixture
def spawned(monkeypatch):
    """Record (argv, process) for every child started through asyncio."""
    procs = []
    real_exec = asyncio.create_subprocess_exec

    async def spawn(*args, **kwargs):
        proc = await real_exec(*args, **kwargs)
        procs.append((list(args), proc))
        return proc

    monkeypatch.setattr(asyncio, "create_subprocess_exec", spawn)
    return procs


async def wait_for_spawn(procs, attempts=200):
    for _ in range(attempts):
        if procs:
            return
        await asyncio.sleep(0.05)
    raise AssertionError("yt-dlp was never started")
