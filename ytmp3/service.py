import re
import threading

from ytmp3 import config
from ytmp3.artifacts import ArtifactStore
from ytmp3.backends import build_backends
from ytmp3.classifier import FailureKind
from ytmp3.orchestrator import ConversionRequest, FallbackOrchestrator, Success

YOUTUBE_URL = re.compile(
    r"^(?:https?://)?(?:www\.|m\.|music\.)?"
    r"(?:youtube\.com/(?:watch\?(?:\S*&)?v=|shorts/|embed/|live/|v/)|youtu\.be/)"
    r"([A-Za-z0-9_-]{11})(?![A-Za-z0-9_-])\S*$",
    re.IGNORECASE,
)

STATUS_FOR_KIND = {
    FailureKind.INVALID_INPUT: 400,
    FailureKind.AUTH_REQUIRED: 403,
}

MESSAGES = {
    FailureKind.AUTH_REQUIRED: "This video requires sign-in (age-restricted, private, or bot check) and cannot be converted",
    FailureKind.INVALID_INPUT: "Video unavailable",
    FailureKind.TOOL_UNAVAILABLE: "No conversion backend is available on the server",
    FailureKind.INTERNAL: "Internal error",
}


def extract_video_id(url: str) -> str | None:
    match = YOUTUBE_URL.match((url or "").strip())
    return match.group(1) if match else None


def format_size(size_bytes: int) -> str:
    return f"{size_bytes / (1024 * 1024):.2f}"


class ConversionService:
    def __init__(self, orchestrator: FallbackOrchestrator, store: ArtifactStore, max_concurrent: int | None = None, artifact_ttl: float | None = None):
        self.orchestrator = orchestrator
        self.store = store
        self.slots = threading.BoundedSemaphore(max(1, max_concurrent if max_concurrent is not None else config.MAX_CONCURRENT_CONVERSIONS))
        self.artifact_ttl = artifact_ttl if artifact_ttl is not None else config.ARTIFACT_TTL

    def convert(self, url) -> tuple[dict, int]:
        """Run one conversion and return (json body, http status)."""
        url = (url or "").strip() if isinstance(url, str) else ""
        if not url:
            return {"error": "URL required"}, 400
        if not extract_video_id(url):
            print(f"Invalid YouTube URL provided: {url}", flush=True)
            return {"error": "Invalid YouTube URL"}, 400

        request = ConversionRequest(url)
        print(f"[{request.request_id[:8]}] Received conversion request for {url}", flush=True)
        try:
            reaped = self.store.reap(self.artifact_ttl)
            if reaped:
                print(f"Reaped {reaped} expired artifact(s)", flush=True)
            with self.slots:
                outcome = self.orchestrator.run(request)
        except Exception as e:
            print(f"[{request.request_id[:8]}] ✗ Conversion error: {type(e).__name__}: {e}", flush=True)
            return {"error": MESSAGES[FailureKind.INTERNAL], "kind": FailureKind.INTERNAL.value}, 500

        if isinstance(outcome, Success):
            name = outcome.artifact_path.name
            return {
                "success": True,
                "downloadUrl": f"/download/{name}",
                "fileSize": format_size(outcome.size_bytes),
            }, 200

        if outcome.kind is FailureKind.ALL_BACKENDS_EXHAUSTED:
            message = f"Conversion failed with all methods: {outcome.message}"
        else:
            message = MESSAGES.get(outcome.kind, outcome.message)
        message = message.replace(str(self.store.root), "<downloads>")
        return {"error": message, "kind": outcome.kind.value}, STATUS_FOR_KIND.get(outcome.kind, 500)


def build_service() -> ConversionService:
    store = ArtifactStore(config.DOWNLOAD_DIR)
    return ConversionService(FallbackOrchestrator(build_backends(), store), store)
