from __future__ import annotations

import json
import logging
import os
import platform
import queue
import socket
import subprocess
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Optional

from core.errors import Timeout

logger = logging.getLogger(__name__)

# Properties mirrored locally from "property-change" events.
OBSERVED_PROPERTIES = (
    "time-pos",
    "duration",
    "pause",
    "idle-active",
    "playlist-pos",
    "playlist-count",
    "volume",
    "mute",
    "speed",
    "loop-playlist",
    "audio-bitrate",
    "audio-params/samplerate",
)


# -----------------------------
# Utilities
# -----------------------------

def _is_windows() -> bool:
    return os.name == "nt"


def default_ipc_endpoint(app_name: str = "mediactl-mpv") -> str:
    """Named pipe on Windows, unix socket path elsewhere."""
    if _is_windows():
        return rf"\\.\pipe\{app_name}"
    return f"/tmp/{app_name}-{os.getpid()}.sock"


def find_mpv_binary(preferred_path: Optional[str] = None) -> str:
    """
    Locate mpv: preferred_path, then a bundled copy under third_party/mpv,
    then whatever "mpv" resolves to on PATH.
    """
    if preferred_path and os.path.isfile(preferred_path):
        return preferred_path

    exe = "mpv.exe" if _is_windows() else "mpv"
    sys_dir = {"windows": "windows", "darwin": "macos"}.get(platform.system().lower(), "linux")
    bundled = os.path.join(os.getcwd(), "third_party", "mpv")
    for candidate in (os.path.join(bundled, sys_dir, exe), os.path.join(bundled, exe)):
        if os.path.isfile(candidate):
            return candidate
    return "mpv"


# -----------------------------
# Transport
# -----------------------------

class MpvJsonIpcTransport:
    """
    JSON-lines connection to mpv's --input-ipc-server endpoint.

    Unix: AF_UNIX socket. Windows: the named pipe opened as a binary file.
    A reader thread parses incoming lines into a queue; nothing is
    dispatched from that thread.
    """

    def __init__(self, endpoint: str):
        self.endpoint = endpoint
        self._stop = threading.Event()
        self._rx_thread: Optional[threading.Thread] = None
        self._rx_queue: "queue.Queue[dict[str, Any]]" = queue.Queue()
        self._tx_lock = threading.Lock()
        self._pipe_fh = None
        self._sock: Optional[socket.socket] = None

    def connect(self, timeout_s: float = 3.0) -> None:
        deadline = time.monotonic() + timeout_s
        last_err: Optional[OSError] = None
        while time.monotonic() < deadline and not self._stop.is_set():
            try:
                if _is_windows():
                    self._pipe_fh = open(self.endpoint, "r+b", buffering=0)
                else:
                    s = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
                    s.connect(self.endpoint)
                    self._sock = s
                break
            except OSError as e:
                last_err = e
                time.sleep(0.05)
        if self._pipe_fh is None and self._sock is None:
            raise OSError(f"Failed to connect to mpv at {self.endpoint}: {last_err!r}")

        self._rx_thread = threading.Thread(target=self._rx_loop, name="mpv-ipc-rx", daemon=True)
        self._rx_thread.start()

    @property
    def connected(self) -> bool:
        return not self._stop.is_set() and (self._sock is not None or self._pipe_fh is not None)

    def close(self) -> None:
        self._stop.set()
        if self._sock is not None:
            try:
                self._sock.shutdown(socket.SHUT_RDWR)
            except OSError:
                pass  # already gone
            self._sock.close()
            self._sock = None
        if self._pipe_fh is not None:
            try:
                self._pipe_fh.close()
            except OSError:
                pass
            self._pipe_fh = None

    def send(self, payload: dict[str, Any]) -> None:
        line = (json.dumps(payload) + "\n").encode("utf-8")
        with self._tx_lock:
            if self._sock is not None:
                self._sock.sendall(line)
            elif self._pipe_fh is not None:
                self._pipe_fh.write(line)
                self._pipe_fh.flush()
            else:
                raise ConnectionError("mpv IPC is not connected")

    def recv_nowait(self) -> Optional[dict[str, Any]]:
        try:
            return self._rx_queue.get_nowait()
        except queue.Empty:
            return None

    def _read_chunk(self) -> bytes:
        if self._sock is not None:
            return self._sock.recv(4096)
        if self._pipe_fh is not None:
            return self._pipe_fh.read(4096)
        return b""

    def _rx_loop(self) -> None:
        buf = b""
        try:
            while not self._stop.is_set():
                try:
                    chunk = self._read_chunk()
                except OSError as e:
                    logger.debug("mpv IPC read stopped: %s", e)
                    break
                if not chunk:
                    break  # EOF
                buf += chunk
                while b"\n" in buf:
                    line, buf = buf.split(b"\n", 1)
                    line = line.strip()
                    if not line:
                        continue
                    try:
                        msg = json.loads(line.decode("utf-8", errors="replace"))
                    except ValueError:
                        logger.warning("Malformed line from mpv: %r", line[:200])
                        continue
                    if isinstance(msg, dict):
                        self._rx_queue.put(msg)
        finally:
            self._stop.set()


# -----------------------------
# Client (mpv process + JSON protocol)
# -----------------------------

@dataclass
class MpvConfig:
    mpv_path: Optional[str] = None
    ipc_endpoint: Optional[str] = None
    audio_only: bool = True
    connect_timeout_s: float = 3.0
    command_timeout_s: float = 1.0
    cwd: Optional[str] = None


class MpvClient:
    """
    Owns one idle mpv process and talks to it over JSON IPC.

    Nothing runs in the background on the caller's behalf: the host calls
    process_messages() regularly (the plugin tick does), which resolves
    request replies, updates mirrored properties and runs observers and
    event handlers on the calling thread.
    """

    def __init__(self, config: Optional[MpvConfig] = None, transport: Optional[MpvJsonIpcTransport] = None):
        self.config = config or MpvConfig()
        self.ipc = self.config.ipc_endpoint or default_ipc_endpoint()
        self._proc: Optional[subprocess.Popen] = None
        self._transport = transport or MpvJsonIpcTransport(self.ipc)

        self._id_lock = threading.Lock()
        self._req_id = 0
        self._pending: dict[int, "queue.Queue[dict[str, Any]]"] = {}

        self.properties: dict[str, Any] = {}
        self._observers: dict[str, list[Callable[[Any], None]]] = {}
        self._event_handlers: dict[str, list[Callable[[dict[str, Any]], None]]] = {}

    # ---- lifecycle ----

    def start(self) -> None:
        if self._proc is not None:
            return
        if not _is_windows() and os.path.exists(self.ipc):
            os.remove(self.ipc)

        args = [find_mpv_binary(self.config.mpv_path), "--idle=yes", "--keep-open=no"]
        if self.config.audio_only:
            args += ["--no-video", "--audio-display=no"]
        args += [f"--input-ipc-server={self.ipc}", "--terminal=no", "--msg-level=all=warn"]

        logger.info("Starting mpv: %s", " ".join(args))
        self._proc = subprocess.Popen(
            args,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
            cwd=self.config.cwd or None,
            creationflags=getattr(subprocess, "CREATE_NO_WINDOW", 0) if _is_windows() else 0,
        )
        self.attach()

    def attach(self) -> None:
        """Connect the transport and subscribe to the mirrored properties."""
        if not self._transport.connected:
            self._transport.connect(timeout_s=self.config.connect_timeout_s)
        for name in OBSERVED_PROPERTIES:
            self.observe_property(name, lambda value, name=name: self.properties.__setitem__(name, value))

    def stop(self) -> None:
        if self._transport.connected:
            try:
                self.command("quit")
            except OSError as e:
                logger.debug("mpv quit not delivered: %s", e)
        self._transport.close()
        if self._proc is not None:
            try:
                self._proc.wait(timeout=2.0)
            except subprocess.TimeoutExpired:
                self._proc.terminate()
            self._proc = None
        logger.info("mpv stopped")

    def is_running(self) -> bool:
        return self._proc is not None and self._proc.poll() is None

    # ---- protocol ----

    def _next_id(self) -> int:
        with self._id_lock:
            self._req_id += 1
            return self._req_id

    def command(self, *args: Any) -> None:
        """Fire-and-forget."""
        self._transport.send({"command": list(args)})

    def command_wait(self, *args: Any, timeout_s: Optional[float] = None) -> dict[str, Any]:
        """Send with a request_id and pump messages until the reply arrives."""
        rid = self._next_id()
        q: "queue.Queue[dict[str, Any]]" = queue.Queue()
        self._pending[rid] = q
        self._transport.send({"command": list(args), "request_id": rid})

        deadline = time.monotonic() + (timeout_s if timeout_s is not None else self.config.command_timeout_s)
        while time.monotonic() < deadline:
            self.process_messages(max_messages=50)
            try:
                return q.get_nowait()
            except queue.Empty:
                time.sleep(0.005)

        self._pending.pop(rid, None)
        raise Timeout(f"mpv command timed out: {args!r}")

    def get_property(self, name: str, timeout_s: Optional[float] = None) -> Any:
        resp = self.command_wait("get_property", name, timeout_s=timeout_s)
        if resp.get("error") == "success":
            return resp.get("data")
        return None

    def set_property(self, name: str, value: Any) -> None:
        self.command("set_property", name, value)
        self.properties[name] = value

    def value(self, name: str, default: Any = None) -> Any:
        """Last mirrored value of an observed property."""
        value = self.properties.get(name)
        return default if value is None else value

    def observe_property(self, name: str, on_change: Callable[[Any], None]) -> None:
        if name not in self._observers:
            self._observers[name] = []
            self.command("observe_property", self._next_id(), name)
        self._observers[name].append(on_change)

    def on_event(self, event: str, handler: Callable[[dict[str, Any]], None]) -> None:
        """Run `handler(msg)` for every mpv event named `event` ("end-file"...)."""
        self._event_handlers.setdefault(event, []).append(handler)

    def process_messages(self, max_messages: int = 200) -> int:
        handled = 0
        for _ in range(max_messages):
            msg = self._transport.recv_nowait()
            if msg is None:
                break
            handled += 1

            if "request_id" in msg:
                q = self._pending.pop(msg.get("request_id"), None)
                if q is not None:
                    q.put_nowait(msg)
                continue

            event = msg.get("event")
            if event == "property-change":
                callbacks = self._observers.get(msg.get("name"), [])
                self._run_callbacks(callbacks, msg.get("data"), msg.get("name"))
            elif event in self._event_handlers:
                self._run_callbacks(self._event_handlers[event], msg, event)
        return handled

    @staticmethod
    def _run_callbacks(callbacks: list[Callable[[Any], None]], arg: Any, what: Any) -> None:
        for cb in list(callbacks):
            try:
                cb(arg)
            except Exception:
                logger.exception("mpv handler for %r failed", what)

    # ---- playlist ----

    def load_files(self, paths: list[str], start_index: int = 0) -> None:
        """Replace mpv's internal playlist and start at `start_index`."""
        self.command("playlist-clear")
        for i, path in enumerate(paths):
            self.command("loadfile", path, "replace" if i == 0 else "append")
        if paths:
            self.command("playlist-play-index", max(0, start_index))
            self.set_property("pause", False)

    def append_file(self, path: str) -> None:
        self.command("loadfile", path, "append")

    def remove_index(self, index: int) -> None:
        self.command("playlist-remove", index)

    def play_index(self, index: int) -> None:
        self.command("playlist-play-index", index)
        self.set_property("pause", False)

    def next(self) -> None:
        self.command("playlist-next", "weak")

    def previous(self) -> None:
        self.command("playlist-prev", "weak")

    def stop_playback(self) -> None:
        self.command("stop")

    def seek_seconds(self, sec: float) -> None:
        self.command("seek", float(sec), "absolute")
