from __future__ import annotations

import re

import pytest

from ytmp3.orchestrator import FallbackOrchestrator
from ytmp3.service import ConversionService, extract_video_id, format_size

from .conftest import FakeBackend


def _service(store, *backends) -> ConversionService:
    return ConversionService(FallbackOrchestrator(backends, store), store, max_concurrent=1, artifact_ttl=3600)


@pytest.mark.parametrize(
    "url,video_id",
    [
        ("https://www.youtube.com/watch?v=dQw4w9WgXcQ", "dQw4w9WgXcQ"),
        ("https://youtube.com/watch?feature=share&v=dQw4w9WgXcQ&t=42", "dQw4w9WgXcQ"),
        ("youtu.be/dQw4w9WgXcQ?si=abc", "dQw4w9WgXcQ"),
        ("https://m.youtube.com/shorts/dQw4w9WgXcQ", "dQw4w9WgXcQ"),
        ("https://music.youtube.com/watch?v=dQw4w9WgXcQ&list=RDAMVM", "dQw4w9WgXcQ"),
        ("https://www.youtube.com/embed/dQw4w9WgXcQ", "dQw4w9WgXcQ"),
        ("not-a-url", None),
        ("https://www.youtube.com/watch?v=short", None),
        ("https://vimeo.com/123456789", None),
        ("https://www.youtube.com/watch?v=dQw4w9WgXcQ extra", None),
        ("https://evil.example/youtube.com/watch?v=dQw4w9WgXcQ", None),
    ],
)
def test_extract_video_id(url: str, video_id) -> None:
    assert extract_video_id(url) == video_id


@pytest.mark.parametrize("url", ["not-a-url", "https://vimeo.com/1", "javascript:alert(1)"])
def test_invalid_url_never_reaches_a_backend(store, url: str) -> None:
    a = FakeBackend("a", ["ok"])

    body, status = _service(store, a).convert(url)

    assert status == 400
    assert body == {"error": "Invalid YouTube URL"}
    assert a.probes == 0
    assert a.started == []


@pytest.mark.parametrize("url", [None, "", "   ", 42])
def test_missing_url(store, url) -> None:
    body, status = _service(store, FakeBackend("a", ["ok"])).convert(url)

    assert status == 400
    assert body == {"error": "URL required"}


def test_success_returns_opaque_download_reference(store) -> None:
    a = FakeBackend("a", ["ok:" + "x" * (3 * 1024 * 1024)])

    body, status = _service(store, a).convert("https://www.youtube.com/watch?v=dQw4w9WgXcQ")

    assert status == 200
    assert body["success"] is True
    assert re.fullmatch(r"/download/\d{14}_[0-9a-f]{32}\.mp3", body["downloadUrl"])
    assert body["fileSize"] == "3.00"
    assert str(store.root) not in str(body)


def test_auth_required_maps_to_403(store) -> None:
    a = FakeBackend("a", ["error:Sign in to confirm you're not a bot"])

    body, status = _service(store, a).convert("https://youtu.be/dQw4w9WgXcQ")

    assert status == 403
    assert body["kind"] == "AuthRequired"
    assert "sign-in" in body["error"]


def test_exhausted_maps_to_500_with_aggregate_message(store) -> None:
    a = FakeBackend("a", ["error:HTTP Error 503", "error:HTTP Error 403: Forbidden"])

    body, status = _service(store, a).convert("https://youtu.be/dQw4w9WgXcQ")

    assert status == 500
    assert body["kind"] == "AllBackendsExhausted"
    assert body["error"].startswith("Conversion failed with all methods:")
    assert "a#0" in body["error"] and "a#1" in body["error"]


def test_backend_error_paths_are_scrubbed(store) -> None:
    leaked = f"ERROR: unable to open for writing: {store.staging}/x.webm.part"
    a = FakeBackend("a", ["error:" + leaked])

    body, status = _service(store, a).convert("https://youtu.be/dQw4w9WgXcQ")

    assert status == 500
    assert str(store.root) not in body["error"]
    assert "<downloads>" in body["error"]


def test_video_unavailable_everywhere_maps_to_400(store) -> None:
    gone = "error:ERROR: [youtube] dQw4w9WgXcQ: Video unavailable"
    a = FakeBackend("a", [gone, gone])
    b = FakeBackend("b", [gone])

    body, status = _service(store, a, b).convert("https://youtu.be/dQw4w9WgXcQ")

    assert status == 400
    assert body == {"error": "Video unavailable", "kind": "InvalidInput"}
    assert b.started == [0]


def test_video_unavailable_on_one_backend_only_is_exhausted(store) -> None:
    a = FakeBackend("a", ["error:ERROR: [youtube] dQw4w9WgXcQ: Video unavailable"])
    b = FakeBackend("b", ["error:HTTP Error 503"])

    body, status = _service(store, a, b).convert("https://youtu.be/dQw4w9WgXcQ")

    assert status == 500
    assert body["kind"] == "AllBackendsExhausted"


def test_unexpected_exception_is_internal(store) -> None:
    class Exploding(FakeBackend):
        def start(self, url, dest, cfg):
            raise RuntimeError("kaboom")

    body, status = _service(store, Exploding("a", ["ok"])).convert("https://youtu.be/dQw4w9WgXcQ")

    assert status == 500
    assert body == {"error": "Internal error", "kind": "Internal"}


def test_format_size() -> None:
    assert format_size(0) == "0.00"
    assert format_size(5452595) == "5.20"


def test_zero_limits_are_not_replaced_by_defaults(store) -> None:
    service = ConversionService(FallbackOrchestrator([FakeBackend("a", ["ok"])], store), store, max_concurrent=0, artifact_ttl=0)

    assert service.artifact_ttl == 0
    # a zero cap still lets one conversion through
    _, status = service.convert("https://youtu.be/dQw4w9WgXcQ")
    assert status == 200
