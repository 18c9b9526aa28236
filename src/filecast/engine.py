"""External transcoder engine: command construction and process supervision."""

from __future__ import annotations

import asyncio
import codecs
import logging
from typing import Callable, List, Optional, Protocol, Sequence

from .errors import SpawnError
from .models import EncodeProfile, SessionDescriptor

logger = logging.getLogger(__name__)

DiagnosticsCallback = Callable[[str], None]
ExitCallback = Callable[[Optional[int]], None]

READ_CHUNK_SIZE = 4096


class ProcessHandle(Protocol):
    """A running engine process."""

    pid: Optional[int]
    returncode: Optional[int]

    def terminate(self) -> None:
        """Ask the process to exit."""

    def kill(self) -> None:
        """Force the process to exit."""

    async def wait(self) -> int:
        """Wait for exit and return the exit code."""

    async def read_chunk(self) -> bytes:
        """Read the next diagnostic chunk, or b"" at end of stream."""


class Engine(Protocol):
    """Interface for launching engine processes."""

    async def spawn(self, args: Sequence[str]) -> ProcessHandle:
        """Launch the engine; raise SpawnError if it cannot be started."""


class SubprocessHandle:
    """ProcessHandle backed by an asyncio subprocess."""

    def __init__(self, process: asyncio.subprocess.Process) -> None:
        self._process = process

    @property
    def pid(self) -> Optional[int]:
        return self._process.pid

    @property
    def returncode(self) -> Optional[int]:
        return self._process.returncode

    def terminate(self) -> None:
        self._signal(self._process.terminate)

    def kill(self) -> None:
        self._signal(self._process.kill)

    async def wait(self) -> int:
        return await self._process.wait()

    async def read_chunk(self) -> bytes:
        if self._process.stdout is None:
            return b""
        return await self._process.stdout.read(READ_CHUNK_SIZE)

    def _signal(self, send: Callable[[], None]) -> None:
        if self._process.returncode is not None:
            return
        try:
            send()
        except ProcessLookupError:
            # Exited between the returncode check and the signal
            pass


class SubprocessEngine(Engine):
    """Launch the engine binary as a subprocess with merged stdout/stderr."""

    def __init__(self, executable: str = "ffmpeg") -> None:
        self.executable = executable

    async def spawn(self, args: Sequence[str]) -> ProcessHandle:
        try:
            process = await asyncio.create_subprocess_exec(
                self.executable,
                *args,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
            )
        except OSError as exc:
            raise SpawnError(f"Failed to launch '{self.executable}': {exc}") from exc
        return SubprocessHandle(process)


def build_endpoint(ingest_base: str, credential: str) -> str:
    """Join the ingest base URL and the credential."""
    return f"{ingest_base.rstrip('/')}/{credential}"


def build_engine_args(
    descriptor: SessionDescriptor,
    profile: EncodeProfile,
    ingest_base: str,
    *,
    video_codec: str = "libx264",
    preset: str = "fast",
    audio_bitrate: str = "128k",
    audio_sample_rate: int = 44100,
) -> List[str]:
    """Build the engine arguments that publish the descriptor's input."""
    args = ["-hide_banner", "-re"]
    if descriptor.loop:
        args += ["-stream_loop", "-1"]
    args += [
        "-i", str(descriptor.input_path),
        "-c:v", video_codec,
        "-preset", preset,
        "-maxrate", profile.max_bitrate,
        "-bufsize", profile.buffer_size,
        "-vf", profile.scale_filter,
        "-c:a", "aac",
        "-b:a", audio_bitrate,
        "-ar", str(audio_sample_rate),
        "-f", "flv",
        "-flvflags", "no_duration_filesize",
        build_endpoint(ingest_base, descriptor.credential),
    ]
    return args


def redact(args: Sequence[str], secret: str) -> str:
    """Render arguments for logging with the secret masked."""
    return " ".join(arg.replace(secret, "****") if secret else arg for arg in args)


class ProcessSupervisor:
    """
    Own exactly one engine process for one session.

    Diagnostic chunks are decoded and handed to ``on_diagnostics`` as they
    arrive; once the stream ends the exit code is awaited and passed to
    ``on_exit``. Neither callback can break the pump.
    """

    def __init__(
        self,
        engine: Engine,
        *,
        on_diagnostics: DiagnosticsCallback,
        on_exit: ExitCallback,
        kill_timeout: float = 5.0,
        label: str = "",
    ) -> None:
        self._engine = engine
        self._on_diagnostics = on_diagnostics
        self._on_exit = on_exit
        self._kill_timeout = max(0.0, kill_timeout)
        self._label = label
        self._handle: Optional[ProcessHandle] = None
        self._pump_task: Optional[asyncio.Task] = None
        self._kill_timer: Optional[asyncio.TimerHandle] = None
        self._exited = asyncio.Event()
        self.returncode: Optional[int] = None

    @property
    def handle(self) -> Optional[ProcessHandle]:
        return self._handle

    @property
    def pid(self) -> Optional[int]:
        return self._handle.pid if self._handle else None

    async def spawn(self, args: Sequence[str]) -> ProcessHandle:
        """Launch the engine and start pumping its diagnostics."""
        if self._handle is not None:
            raise RuntimeError("Supervisor already owns a process")

        try:
            handle = await self._engine.spawn(args)
        except SpawnError:
            raise
        except OSError as exc:
            raise SpawnError(f"Failed to launch engine: {exc}") from exc

        self._handle = handle
        logger.info("Engine started for %s (pid=%s)", self._label, handle.pid)
        self._pump_task = asyncio.create_task(self._pump(), name=f"filecast-pump-{self._label}")
        return handle

    def is_alive(self) -> bool:
        return self._handle is not None and not self._exited.is_set() and self._handle.returncode is None

    def terminate(self) -> None:
        """Signal the process to exit without waiting for it."""
        if not self.is_alive():
            return
        logger.info("Terminating engine for %s (pid=%s)", self._label, self.pid)
        self._handle.terminate()
        if self._kill_timer is None:
            loop = asyncio.get_running_loop()
            self._kill_timer = loop.call_later(self._kill_timeout, self._kill)

    async def wait(self) -> Optional[int]:
        """Wait until the exit has been observed and reported."""
        if self._handle is None:
            return None
        await self._exited.wait()
        return self.returncode

    async def close(self) -> None:
        """Terminate if needed and wait for the pump to finish."""
        self.terminate()
        if self._pump_task is not None:
            await asyncio.shield(self._pump_task)

    def _kill(self) -> None:
        self._kill_timer = None
        if self.is_alive():
            logger.warning("Engine for %s ignored SIGTERM; sending SIGKILL", self._label)
            self._handle.kill()

    async def _pump(self) -> None:
        handle = self._handle
        # Reads can split multi-byte characters
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        try:
            while True:
                chunk = await handle.read_chunk()
                if not chunk:
                    self._deliver(decoder.decode(b"", final=True))
                    break
                self._deliver(decoder.decode(chunk))
            self.returncode = await handle.wait()
        except asyncio.CancelledError:
            handle.kill()
            raise
        except Exception:
            logger.exception("Engine pump failed for %s", self._label)
            handle.kill()
            self.returncode = await handle.wait()
        finally:
            if self._kill_timer is not None:
                self._kill_timer.cancel()
                self._kill_timer = None
            self._exited.set()
            self._report_exit()

    def _deliver(self, text: str) -> None:
        if not text:
            return
        try:
            self._on_diagnostics(text)
        except Exception:
            logger.exception("Diagnostics handler failed for %s", self._label)

    def _report_exit(self) -> None:
        logger.info("Engine for %s exited with code %s", self._label, self.returncode)
        try:
            self._on_exit(self.returncode)
        except Exception:
            logger.exception("Exit handler failed for %s", self._label)
