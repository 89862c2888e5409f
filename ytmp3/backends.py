"""Extraction backends.

Every backend offers the same small contract: probe() says whether the tool
can be used at all, configs() lists the variants to try in order, and
start(url, dest, config) launches one extraction and returns a handle. The
handle's wait(timeout) blocks until the extraction settles, raising
BackendError or AttemptTimeout, and terminate() kills whatever is still
running for it.
"""
import os
import signal
import secrets
import shutil
import subprocess
import threading
import multiprocessing
from pathlib import Path

import requests
import yt_dlp

from ytmp3 import config


class ConversionError(Exception):
    pass


class BackendError(ConversionError):
    def __init__(self, detail: str):
        super().__init__(detail)
        self.detail = detail


class AttemptTimeout(ConversionError):
    def __init__(self, seconds: float):
        super().__init__(f"Timed out after {seconds:g}s")
        self.seconds = seconds


def _outtmpl(dest: Path) -> str:
    # yt-dlp picks the intermediate extension; FFmpegExtractAudio lands on dest
    return str(Path(dest).with_suffix("")) + ".%(ext)s"


def _kill_group(pid: int) -> bool:
    if not hasattr(os, "killpg"):
        return False
    try:
        os.killpg(pid, signal.SIGKILL)
    except (ProcessLookupError, PermissionError):
        return False
    return True


# ---------- yt-dlp (library, in a worker process) ----------
def _base_ydl_opts(out_default: str, cookiefile: str | None, dsid: str | None, client: str, quality: str = "192"):
    opts = {
        "format": "ba/b",
        "outtmpl": {"default": out_default},
        "noprogress": True,
        "quiet": True,
        "no_warnings": False,
        "noplaylist": True,
        "retries": 3,
        "fragment_retries": 3,
        "extractor_retries": 3,
        "concurrent_fragment_downloads": 1,
        "geo_bypass": True,
        "socket_timeout": 30,
        "http_chunk_size": 10485760,
        "postprocessors": [
            {"key": "FFmpegExtractAudio", "preferredcodec": "mp3", "preferredquality": quality},
        ],
        "extractor_args": {"youtube": {"player_client": [client], "player_skip": ["configs", "webpage"]}},
        "http_headers": {
            "User-Agent": config.USER_AGENT,
            "Accept-Language": "en-US,en;q=0.9",
        },
    }
    if cookiefile:
        opts["cookiefile"] = cookiefile
    if dsid:
        opts["extractor_args"]["youtube"]["data_sync_id"] = [dsid]
    return opts


def _ydl_worker(url: str, opts: dict, conn) -> None:
    """Runs in the child process; reports ("ok", None) or ("error", message)."""
    if hasattr(os, "setsid"):
        # own process group so ffmpeg children die with us
        os.setsid()
    try:
        with yt_dlp.YoutubeDL(opts) as ydl:
            ydl.download([url])
        conn.send(("ok", None))
    except Exception as e:
        conn.send(("error", str(e) or type(e).__name__))
    finally:
        conn.close()


class WorkerHandle:
    def __init__(self, process, conn):
        self.process = process
        self.conn = conn

    def wait(self, timeout: float) -> None:
        if not self.conn.poll(timeout):
            if self.process.is_alive():
                raise AttemptTimeout(timeout)
            raise BackendError(f"yt-dlp worker exited with code {self.process.exitcode}")
        try:
            status, detail = self.conn.recv()
        except EOFError:
            self.process.join(5)
            raise BackendError(f"yt-dlp worker exited with code {self.process.exitcode}")
        self.process.join(5)
        if status != "ok":
            raise BackendError(detail)

    def terminate(self) -> None:
        if self.process.is_alive():
            if not _kill_group(self.process.pid):
                self.process.kill()
        self.process.join(5)
        self.conn.close()


class YtDlpLibraryBackend:
    """yt_dlp.YoutubeDL, one configuration per YouTube player client."""

    id = "ytdlp-lib"

    def __init__(self, clients=None, timeout: float | None = None, quality: str | None = None, ffmpeg_bin: str | None = None):
        self.clients = list(clients or config.CLIENTS_TO_TRY)
        self.timeout = timeout if timeout is not None else config.YTDLP_TIMEOUT
        self.quality = quality or config.AUDIO_QUALITY
        self.ffmpeg_bin = ffmpeg_bin or config.FFMPEG_BIN

    def probe(self) -> bool:
        return shutil.which(self.ffmpeg_bin) is not None

    def configs(self) -> list[dict]:
        return [{"client": client} for client in self.clients]

    def build_opts(self, dest: Path, client: str) -> dict:
        cookiefile = config.cookie_path()
        opts = _base_ydl_opts(_outtmpl(dest), str(cookiefile) if cookiefile else None,
                              config.YTDLP_DATA_SYNC_ID, client, self.quality)
        if self.ffmpeg_bin != "ffmpeg":
            opts["ffmpeg_location"] = self.ffmpeg_bin
        return opts

    def start(self, url: str, dest: Path, cfg: dict) -> WorkerHandle:
        ctx = multiprocessing.get_context("spawn")
        parent_conn, child_conn = ctx.Pipe(duplex=False)
        process = ctx.Process(target=_ydl_worker, args=(url, self.build_opts(dest, cfg["client"]), child_conn), daemon=True)
        process.start()
        # parent must drop its copy so poll() sees EOF if the child dies
        child_conn.close()
        return WorkerHandle(process, parent_conn)


# ---------- yt-dlp / youtube-dl (command line) ----------
CLI_VARIANTS = [
    {"format": "bestaudio", "quality": "0"},
    {"format": "bestaudio/best", "quality": "5"},
]


class ProcessHandle:
    def __init__(self, proc: subprocess.Popen):
        self.proc = proc

    def wait(self, timeout: float) -> None:
        try:
            _, stderr = self.proc.communicate(timeout=timeout)
        except subprocess.TimeoutExpired:
            raise AttemptTimeout(timeout)
        if self.proc.returncode != 0:
            stderr = (stderr or "").strip()
            raise BackendError(stderr or f"exited with code {self.proc.returncode}")

    def terminate(self) -> None:
        if self.proc.poll() is None:
            if not _kill_group(self.proc.pid):
                self.proc.kill()
        try:
            self.proc.communicate(timeout=5)
        except (subprocess.TimeoutExpired, ValueError):
            pass


class CommandBackend:
    """An external downloader binary that speaks youtube-dl's flags."""

    def __init__(self, backend_id: str, executable: str, variants=None, timeout: float | None = None):
        self.id = backend_id
        self.executable = executable
        self.variants = list(variants or CLI_VARIANTS)
        self.timeout = timeout if timeout is not None else config.CLI_TIMEOUT

    def probe(self) -> bool:
        path = shutil.which(self.executable)
        if not path:
            return False
        try:
            result = subprocess.run([path, "--version"], capture_output=True, timeout=10)
        except (OSError, subprocess.TimeoutExpired):
            return False
        return result.returncode == 0

    def configs(self) -> list[dict]:
        return list(self.variants)

    def build_command(self, url: str, dest: Path, cfg: dict) -> list[str]:
        cmd = [
            self.executable,
            "-f", cfg.get("format", "bestaudio"),
            "-x", "--audio-format", "mp3",
            "--audio-quality", str(cfg.get("quality", "0")),
            "--no-playlist", "--no-progress",
            "-o", _outtmpl(dest),
        ]
        cookiefile = config.cookie_path()
        if cookiefile:
            cmd += ["--cookies", str(cookiefile)]
        if config.FFMPEG_BIN != "ffmpeg":
            cmd += ["--ffmpeg-location", config.FFMPEG_BIN]
        # "--" so a URL can never be read as an option
        return cmd + ["--", url]

    def start(self, url: str, dest: Path, cfg: dict) -> ProcessHandle:
        proc = subprocess.Popen(
            self.build_command(url, dest, cfg),
            stdout=subprocess.DEVNULL,
            stderr=subprocess.PIPE,
            text=True,
            start_new_session=True,
        )
        return ProcessHandle(proc)


# ---------- Cobalt API ----------
class ThreadHandle:
    join_timeout = 5

    def __init__(self, thread: threading.Thread, stop: threading.Event, commit: threading.Lock, state: dict):
        self.thread = thread
        self.stop = stop
        self.commit = commit
        self.state = state

    def wait(self, timeout: float) -> None:
        self.thread.join(timeout)
        if self.thread.is_alive():
            raise AttemptTimeout(timeout)
        if self.state.get("error"):
            raise BackendError(self.state["error"])

    def terminate(self) -> None:
        # once this returns the thread can no longer move a file onto dest
        with self.commit:
            self.stop.set()
        self.thread.join(self.join_timeout)


class CobaltBackend:
    """A Cobalt instance fetches and transcodes; we only stream the result down."""

    id = "cobalt"

    def __init__(self, instances=None, timeout: float | None = None, quality: str | None = None, session=None):
        self.instances = list(config.COBALT_INSTANCES if instances is None else instances)
        self.timeout = timeout if timeout is not None else config.COBALT_TIMEOUT
        self.quality = quality or config.AUDIO_QUALITY
        self.session = session or requests

    def probe(self) -> bool:
        return bool(self.instances)

    def configs(self) -> list[dict]:
        return [{"instance": instance} for instance in self.instances]

    def request_tunnel(self, instance: str, url: str) -> str:
        print(f"[Cobalt] Trying: {instance}", flush=True)
        response = self.session.post(
            f"{instance}/",
            json={
                "url": url,
                "downloadMode": "audio",
                "audioFormat": "mp3",
                "audioBitrate": self.quality,
            },
            headers={
                "Accept": "application/json",
                "Content-Type": "application/json",
            },
            timeout=30,
        )
        try:
            data = response.json()
        except ValueError:
            data = {}
        status = data.get("status")
        if response.status_code == 200 and status in ["tunnel", "redirect"] and data.get("url"):
            return data["url"]
        if status == "error":
            error = data.get("error") or {}
            code = error.get("code") if isinstance(error, dict) else error
            raise BackendError(f"Cobalt error: {code}")
        raise BackendError(f"Cobalt HTTP Error {response.status_code}")

    def fetch(self, url: str, dest: Path, cfg: dict, stop: threading.Event, commit: threading.Lock) -> None:
        tunnel = self.request_tunnel(cfg["instance"], url)
        # private name per attempt; a cancelled fetch must never touch dest
        part = dest.with_name(f"{dest.stem}.{secrets.token_hex(4)}.part")
        try:
            if stop.is_set():
                return
            with self.session.get(tunnel, stream=True, timeout=30) as response:
                if stop.is_set():
                    return
                if response.status_code != 200:
                    raise BackendError(f"Cobalt download HTTP Error {response.status_code}")
                with open(part, "wb") as f:
                    for chunk in response.iter_content(chunk_size=8192):
                        if stop.is_set():
                            return
                        f.write(chunk)
            with commit:
                if stop.is_set():
                    return
                os.replace(part, dest)
            print("[Cobalt] ✓ File downloaded", flush=True)
        finally:
            try:
                part.unlink()
            except FileNotFoundError:
                pass

    def start(self, url: str, dest: Path, cfg: dict) -> ThreadHandle:
        stop = threading.Event()
        commit = threading.Lock()
        state = {}

        def run():
            try:
                self.fetch(url, dest, cfg, stop, commit)
            except BackendError as e:
                state["error"] = e.detail
            except Exception as e:
                state["error"] = str(e) or type(e).__name__

        thread = threading.Thread(target=run, daemon=True)
        thread.start()
        return ThreadHandle(thread, stop, commit, state)


def build_backends(names=None) -> list:
    """Instantiate backends in priority order from the BACKENDS setting."""
    available = {
        "ytdlp-lib": lambda: YtDlpLibraryBackend(),
        "ytdlp-cli": lambda: CommandBackend("ytdlp-cli", "yt-dlp"),
        "youtube-dl": lambda: CommandBackend("youtube-dl", "youtube-dl"),
        "cobalt": lambda: CobaltBackend(),
    }
    backends = []
    for name in names if names is not None else config.BACKENDS:
        if name not in available:
            print(f"✗ Unknown backend '{name}' ignored", flush=True)
            continue
        backends.append(available[name]())
    return backends
