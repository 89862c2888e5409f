"""Fallback orchestration: try every (backend, configuration) in priority order
until one produces a non-empty MP3, stopping early on failures no other tool
could get past."""
import time
import uuid
from enum import Enum
from pathlib import Path
from datetime import datetime, timezone
from dataclasses import dataclass, field, replace

from ytmp3.artifacts import ArtifactStore
from ytmp3.backends import AttemptTimeout, BackendError
from ytmp3.classifier import FailureKind, classify, is_terminal


class AttemptStatus(str, Enum):
    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"
    TIMED_OUT = "timedOut"
    SKIPPED = "skipped"


@dataclass(frozen=True)
class ConversionRequest:
    source_url: str
    request_id: str = field(default_factory=lambda: uuid.uuid4().hex)


@dataclass(frozen=True)
class ConversionAttempt:
    backend_id: str
    config_index: int | None
    started_at: datetime
    outcome: AttemptStatus = AttemptStatus.PENDING
    error_detail: str | None = None
    kind: FailureKind | None = None
    elapsed: float = 0.0

    def label(self) -> str:
        if self.config_index is None:
            return self.backend_id
        return f"{self.backend_id}#{self.config_index}"


@dataclass(frozen=True)
class Success:
    artifact_path: Path
    size_bytes: int
    attempts: tuple = ()


@dataclass(frozen=True)
class Failure:
    kind: FailureKind
    message: str
    attempts: tuple = ()


ConversionOutcome = Success | Failure

_SKIP = object()


def _candidates(backends):
    """Yield (backend, index, config), or (backend, _SKIP, None) for an unavailable backend.

    The probe runs lazily, right before the backend's first configuration, so
    an early success never probes the backends behind it.
    """
    for backend in backends:
        try:
            available = backend.probe()
        except Exception as e:
            print(f"✗ Probe for {backend.id} raised: {e}", flush=True)
            available = False
        if not available:
            yield backend, _SKIP, None
            continue
        for index, cfg in enumerate(backend.configs()):
            yield backend, index, cfg


def _summarize(attempts) -> str:
    parts = []
    for attempt in attempts:
        if attempt.outcome is AttemptStatus.SKIPPED:
            parts.append(f"{attempt.label()}: skipped (unavailable)")
            continue
        detail = (attempt.error_detail or "").strip().splitlines()
        parts.append(f"{attempt.label()}: {attempt.kind.value}: {detail[-1] if detail else attempt.outcome.value}")
    return "; ".join(parts)


class FallbackOrchestrator:
    def __init__(self, backends, store: ArtifactStore):
        self.backends = list(backends)
        self.store = store

    def run(self, request: ConversionRequest) -> ConversionOutcome:
        rid = request.request_id[:8]
        dest = self.store.allocate(request.request_id)
        attempts = ()
        abandoned = set()
        try:
            for backend, index, cfg in _candidates(self.backends):
                if backend.id in abandoned:
                    continue
                if index is _SKIP:
                    print(f"[{rid}] {backend.id} unavailable, skipping", flush=True)
                    attempts += (ConversionAttempt(backend.id, None, datetime.now(timezone.utc), AttemptStatus.SKIPPED, kind=FailureKind.TOOL_UNAVAILABLE),)
                    continue

                attempt = self._attempt(rid, backend, index, cfg, request.source_url, dest)
                attempts += (attempt,)

                if attempt.outcome is AttemptStatus.SUCCESS:
                    final = self.store.publish(dest)
                    return Success(final, self.store.size_of(final), attempts)
                if is_terminal(attempt.kind):
                    print(f"[{rid}] ✗ {attempt.kind.value}, not trying other backends", flush=True)
                    return Failure(attempt.kind, attempt.error_detail or attempt.kind.value, attempts)
                if attempt.kind is FailureKind.TOOL_UNAVAILABLE:
                    abandoned.add(backend.id)
        finally:
            # staging copy is gone after publish(), so this only ever drops partials
            self.store.remove(dest)

        tried = [a for a in attempts if a.outcome is not AttemptStatus.SKIPPED]
        if not tried:
            return Failure(FailureKind.TOOL_UNAVAILABLE, "No extraction backend is available", attempts)
        if all(a.kind is FailureKind.INVALID_INPUT for a in tried):
            # every tool agrees the video itself is gone
            return Failure(FailureKind.INVALID_INPUT, _summarize(attempts), attempts)
        return Failure(FailureKind.ALL_BACKENDS_EXHAUSTED, _summarize(attempts), attempts)

    def _attempt(self, rid: str, backend, index: int, cfg: dict, url: str, dest: Path) -> ConversionAttempt:
        self.store.remove(dest)
        attempt = ConversionAttempt(backend.id, index, datetime.now(timezone.utc))
        print(f"[{rid}] Trying {attempt.label()} {cfg}", flush=True)
        began = time.monotonic()
        handle = None
        try:
            handle = backend.start(url, dest, cfg)
            handle.wait(backend.timeout)
        except AttemptTimeout as e:
            attempt = replace(attempt, outcome=AttemptStatus.TIMED_OUT, error_detail=str(e), kind=FailureKind.TRANSIENT)
        except BackendError as e:
            attempt = replace(attempt, outcome=AttemptStatus.FAILED, error_detail=e.detail, kind=classify(e.detail))
        except OSError as e:
            # executable vanished between probe and start, or similar
            attempt = replace(attempt, outcome=AttemptStatus.FAILED, error_detail=str(e), kind=FailureKind.TOOL_UNAVAILABLE)
        finally:
            if handle is not None:
                handle.terminate()
        elapsed = time.monotonic() - began

        if attempt.outcome is AttemptStatus.PENDING:
            if self.store.size_of(dest) > 0:
                print(f"[{rid}] ✓ Done with {attempt.label()} in {elapsed:.1f}s", flush=True)
                return replace(attempt, outcome=AttemptStatus.SUCCESS, elapsed=elapsed)
            attempt = replace(attempt, outcome=AttemptStatus.FAILED, error_detail="Backend finished without producing a file", kind=FailureKind.UNKNOWN)

        self.store.remove(dest)
        print(f"[{rid}] ✗ {attempt.label()} {attempt.outcome.value} ({attempt.kind.value}): {attempt.error_detail}", flush=True)
        return replace(attempt, elapsed=elapsed)
