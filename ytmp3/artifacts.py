import os
import re
import time
import secrets
from pathlib import Path
from datetime import datetime, timezone

ARTIFACT_NAME = re.compile(r"^\d{14}_[0-9a-f]{32}\.mp3$")


class ArtifactStore:
    """On-disk placement of converted files.

    Attempts write into a staging directory; a file only becomes reachable
    through resolve() once publish() has moved it into the download root.
    """

    def __init__(self, root: Path):
        self.root = Path(root)
        self.staging = self.root / ".staging"
        self.staging.mkdir(parents=True, exist_ok=True)

    def allocate(self, request_id: str) -> Path:
        # request_id is only used to make log lines greppable, never for the name
        stamp = datetime.now(timezone.utc).strftime("%Y%m%d%H%M%S")
        return self.staging / f"{stamp}_{secrets.token_hex(16)}.mp3"

    def exists(self, path: Path) -> bool:
        return Path(path).is_file()

    def size_of(self, path: Path) -> int:
        try:
            return Path(path).stat().st_size
        except FileNotFoundError:
            return 0

    def remove(self, path: Path) -> None:
        """Delete path and any intermediates sharing its stem (.webm, .part, .ytdl)."""
        path = Path(path)
        for leftover in [path, *path.parent.glob(f"{path.stem}.*")]:
            try:
                leftover.unlink()
            except FileNotFoundError:
                pass

    def publish(self, path: Path) -> Path:
        path = Path(path)
        final = self.root / path.name
        os.replace(path, final)
        self.remove(path)
        return final

    def resolve(self, filename: str) -> Path | None:
        if not ARTIFACT_NAME.match(filename or ""):
            return None
        path = self.root / filename
        return path if path.is_file() else None

    def reap(self, max_age: float) -> int:
        """Delete published and staged files older than max_age seconds."""
        cutoff = time.time() - max_age
        removed = 0
        for directory in (self.root, self.staging):
            for entry in directory.iterdir():
                if not entry.is_file() or not entry.name[:14].isdigit():
                    continue
                try:
                    if entry.stat().st_mtime < cutoff:
                        entry.unlink()
                        removed += 1
                except FileNotFoundError:
                    continue
        return removed
