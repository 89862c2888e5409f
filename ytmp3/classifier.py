"""Map raw backend error text onto a small closed set of failure kinds."""
import re
from enum import Enum


class FailureKind(str, Enum):
    INVALID_INPUT = "InvalidInput"
    AUTH_REQUIRED = "AuthRequired"
    TRANSIENT = "Transient"
    TOOL_UNAVAILABLE = "ToolUnavailable"
    UNKNOWN = "Unknown"
    # Only ever produced by the orchestrator or service, never by classify().
    ALL_BACKENDS_EXHAUSTED = "AllBackendsExhausted"
    INTERNAL = "Internal"


# Checked in order, first match wins.
_ERROR_PATTERNS: list[tuple[re.Pattern, FailureKind]] = [
    # Sign-in / bot challenges are a property of the video, no tool can get past them
    (re.compile(r"sign in to confirm|not a bot|confirm your age|age.restricted", re.IGNORECASE), FailureKind.AUTH_REQUIRED),
    (re.compile(r"login required|requires? (?:a )?login|use --cookies|cookies-from-browser", re.IGNORECASE), FailureKind.AUTH_REQUIRED),
    (re.compile(r"private video|video is private|members.only|join this channel", re.IGNORECASE), FailureKind.AUTH_REQUIRED),
    (re.compile(r"HTTP Error 401|error\.api\.youtube\.(?:login|age)|error\.api\.content\.video\.age", re.IGNORECASE), FailureKind.AUTH_REQUIRED),

    (re.compile(r"ffmpeg not found|ffprobe and ffmpeg not found|ffmpeg is not installed", re.IGNORECASE), FailureKind.TOOL_UNAVAILABLE),
    (re.compile(r"command not found|No such file or directory|No module named|is not recognized as an internal", re.IGNORECASE), FailureKind.TOOL_UNAVAILABLE),

    (re.compile(r"Unsupported URL|is not a valid URL|Incomplete YouTube ID|Video unavailable", re.IGNORECASE), FailureKind.INVALID_INPUT),

    (re.compile(r"timed? ?out|Connection (?:reset|refused|aborted)|Temporary failure in name resolution", re.IGNORECASE), FailureKind.TRANSIENT),
    (re.compile(r"HTTP Error (?:429|5\d\d)|too many requests|rate.?limit|IncompleteRead|SSL.*error", re.IGNORECASE), FailureKind.TRANSIENT),
    (re.compile(r"Unable to download|giving up after \d+ retries", re.IGNORECASE), FailureKind.TRANSIENT),
]


def classify(error_text: str) -> FailureKind:
    if not error_text:
        return FailureKind.UNKNOWN
    for pattern, kind in _ERROR_PATTERNS:
        if pattern.search(error_text):
            return kind
    return FailureKind.UNKNOWN


def is_terminal(kind: FailureKind) -> bool:
    """True when no other backend or configuration could possibly succeed."""
    return kind is FailureKind.AUTH_REQUIRED
