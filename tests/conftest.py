from __future__ import annotations

import os
import sys
import tempfile
import threading
from pathlib import Path

import pytest


# build_service() reads DOWNLOAD_DIR; keep test runs out of the repo
os.environ.setdefault("DOWNLOAD_DIR", tempfile.mkdtemp(prefix="ytmp3-tests-"))

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from ytmp3.artifacts import ArtifactStore  # noqa: E402
from ytmp3.backends import AttemptTimeout, BackendError  # noqa: E402


class FakeHandle:
    def __init__(self, dest: Path, behaviour: str, payload: str = ""):
        self.dest = dest
        self.behaviour = behaviour
        self.payload = payload
        self.terminated = False
        self.released = threading.Event()

    def wait(self, timeout: float) -> None:
        if self.behaviour == "ok":
            self.dest.write_bytes(self.payload.encode() or b"ID3" + b"\0" * 2048)
            return
        if self.behaviour == "empty":
            self.dest.write_bytes(b"")
            return
        if self.behaviour == "error":
            # a half-written file, like a killed ffmpeg leaves behind
            self.dest.with_suffix(".webm.part").write_bytes(b"partial")
            raise BackendError(self.payload)
        if self.behaviour == "hang":
            self.dest.write_bytes(b"partial")
            if not self.released.wait(timeout):
                raise AttemptTimeout(timeout)
            return
        raise AssertionError(f"unknown behaviour {self.behaviour}")

    def terminate(self) -> None:
        self.terminated = True
        self.released.set()


class FakeBackend:
    """Scripted backend: one behaviour per configuration, e.g. ["error:Sign in", "ok"]."""

    def __init__(self, backend_id: str, script, available: bool = True, timeout: float = 5):
        self.id = backend_id
        self.script = list(script)
        self.available = available
        self.timeout = timeout
        self.probes = 0
        self.started = []
        self.handles = []

    def probe(self) -> bool:
        self.probes += 1
        return self.available

    def configs(self) -> list[dict]:
        return [{"variant": i} for i in range(len(self.script))]

    def start(self, url: str, dest: Path, cfg: dict) -> FakeHandle:
        self.started.append(cfg["variant"])
        behaviour, _, payload = self.script[cfg["variant"]].partition(":")
        handle = FakeHandle(dest, behaviour, payload)
        self.handles.append(handle)
        return handle


@pytest.fixture
def store(tmp_path: Path) -> ArtifactStore:
    return ArtifactStore(tmp_path / "downloads")
