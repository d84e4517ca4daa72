"""Worker process supervisor.

Owns every running detection worker: one external process per camera,
reading the camera's RTSP stream and serving an annotated MJPEG stream on
the camera's port.

Lifecycle per camera (independent across cameras):

    Stopped → Starting → Running → Stopping → Stopped
                 └──→ Failed  (executable unavailable, spawn error,
                               or exit inside the start grace window)

Start Protocol:
    1. Resolve camera, display settings, detection options and model
    2. Write camera_<id>_config.json / camera_<id>_settings.json
    3. Verify the worker executable exists and is executable
    4. Spawn with cwd=worker root and LD_LIBRARY_PATH override
    5. Pipe stdout/stderr into logs/camera_<id>.log (append)
    6. Register handle + reaper (exit observer)
    7. Wait the start grace window: alive → started, exited → failed

Stop Protocol:
    SIGTERM → wait STOP_GRACE_SECONDS → SIGKILL → wait for reaper

Concurrency:
    One asyncio.Lock per camera id. Public start/stop/restart take it;
    callers composing several steps on one camera (registry updates) hold
    it through ``session()`` and use the session's lock-free operations.

Crash Handling:
    The reaper removes the handle and records a WorkerExit whenever a
    process ends. There is no automatic restart; crashes are visible via
    status queries and the application log.

Logging Strategy:
    DEBUG - Commands, worker output echo, file writes
    INFO  - Starts, stops, expected exits
    WARN  - Crashes, SIGKILL escalation
    ERROR - Executable unavailable, spawn failures
"""
from __future__ import annotations

import asyncio
import logging
import os
import subprocess
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import AsyncIterator, BinaryIO, Callable, Final

from ..config.defaults import (
    SETTLE_DELAY_SECONDS,
    SHUTDOWN_GRACE_SECONDS,
    START_GRACE_SECONDS,
    STOP_GRACE_SECONDS,
)
from ..config_io import LOG_DIR, ConfigStore, write_json_file
from ..errors import ExecutableUnavailable, NotFoundError, WorkerCrashed
from ..logging_config import worker_logger
from ..metrics import worker_exits_total, worker_starts_total, worker_stops_total, workers_running
from ..models.camera import Camera, CameraSettings
from ..models.worker import WorkerExit, WorkerResult
from ..utils.rtsp import build_worker_command
from .model_resolver import resolve_model

logger = logging.getLogger(__name__)

# ============================================================================
# Constants
# ============================================================================

WORKER_ROOT: Final[Path] = Path(os.getenv("CAMFLEET_WORKER_ROOT", "darknet"))
"""Worker install root; model paths in the catalog are relative to it."""

WORKER_EXECUTABLE: Final[Path] = Path(
    os.getenv(
        "CAMFLEET_WORKER_EXECUTABLE",
        str(WORKER_ROOT / "build" / "src-examples" / "simple_stream_progressive")
    )
)

WORKER_LD_LIBRARY_PATH: Final[str] = os.getenv(
    "CAMFLEET_WORKER_LD_LIBRARY_PATH", "/usr/local/cuda/lib64"
)

OUTPUT_CHUNK_SIZE: Final[int] = 64 * 1024

ExitObserver = Callable[[WorkerExit], None]


# ============================================================================
# Worker Handle
# ============================================================================

@dataclass
class WorkerHandle:
    """Runtime record of one live worker process."""

    camera_id: int
    process: asyncio.subprocess.Process
    log_sink: BinaryIO
    pumps: list[asyncio.Task] = field(default_factory=list)
    reaper: asyncio.Task | None = None
    stopping: bool = False

    @property
    def alive(self) -> bool:
        return self.process.returncode is None


# ============================================================================
# Session
# ============================================================================

class WorkerSession:
    """Exclusive access to one camera's worker.

    Only valid inside ``WorkerSupervisor.session()``; the camera lock is
    already held, so these operations do not lock again.
    """

    def __init__(self, supervisor: WorkerSupervisor, camera_id: int) -> None:
        self._supervisor = supervisor
        self.camera_id = camera_id

    @property
    def is_running(self) -> bool:
        return self._supervisor.is_running(self.camera_id)

    async def start(self) -> WorkerResult:
        return await self._supervisor._start_locked(self.camera_id)

    async def stop(self) -> WorkerResult:
        return await self._supervisor._stop_locked(self.camera_id)

    async def restart(self) -> WorkerResult:
        return await self._supervisor._restart_locked(self.camera_id)

    async def settle(self) -> None:
        await asyncio.sleep(self._supervisor.settle_delay)


# ============================================================================
# Supervisor
# ============================================================================

class WorkerSupervisor:
    """Start, stop and reap per-camera worker processes.

    Attributes:
        last_exits: Most recent WorkerExit per camera id
    """

    def __init__(
        self,
        store: ConfigStore,
        *,
        executable: Path | str = WORKER_EXECUTABLE,
        worker_root: Path | str = WORKER_ROOT,
        log_dir: Path | str = LOG_DIR,
        ld_library_path: str = WORKER_LD_LIBRARY_PATH,
        start_grace: float = START_GRACE_SECONDS,
        stop_grace: float = STOP_GRACE_SECONDS,
        settle_delay: float = SETTLE_DELAY_SECONDS,
        shutdown_grace: float = SHUTDOWN_GRACE_SECONDS,
    ) -> None:
        self.store = store
        self.executable = Path(executable)
        self.worker_root = Path(worker_root)
        self.log_dir = Path(log_dir)
        self.ld_library_path = ld_library_path
        self.start_grace = start_grace
        self.stop_grace = stop_grace
        self.settle_delay = settle_delay
        self.shutdown_grace = shutdown_grace

        self.last_exits: dict[int, WorkerExit] = {}
        self._handles: dict[int, WorkerHandle] = {}
        self._locks: dict[int, asyncio.Lock] = {}
        self._observers: list[ExitObserver] = []
        self._closed = False

        logger.info(f"WorkerSupervisor initialized: executable={self.executable}, root={self.worker_root}")

    # ========================================================================
    # Queries
    # ========================================================================

    def is_running(self, camera_id: int) -> bool:
        return camera_id in self._handles

    def running_ids(self) -> list[int]:
        return sorted(self._handles)

    def handle(self, camera_id: int) -> WorkerHandle | None:
        return self._handles.get(camera_id)

    def last_exit(self, camera_id: int) -> WorkerExit | None:
        return self.last_exits.get(camera_id)

    def forget(self, camera_id: int) -> None:
        """Drop the lock and last exit of a deleted camera with no worker."""
        if camera_id in self._handles:
            return
        lock = self._locks.get(camera_id)
        if lock is not None and not lock.locked():
            del self._locks[camera_id]
        self.last_exits.pop(camera_id, None)

    def subscribe(self, observer: ExitObserver) -> None:
        """Register a callback invoked with every WorkerExit."""
        self._observers.append(observer)

    def worker_files(self, camera_id: int) -> tuple[Path, Path]:
        """Per-start (detection options, display settings) file paths.

        The ``camera_<id>_`` prefix is part of the worker contract: the
        worker derives the camera id from the options path to find the
        settings file next to it.
        """
        return (
            self.log_dir / f"camera_{camera_id}_config.json",
            self.log_dir / f"camera_{camera_id}_settings.json",
        )

    def log_path(self, camera_id: int) -> Path:
        return self.log_dir / f"camera_{camera_id}.log"

    # ========================================================================
    # Locking
    # ========================================================================

    @asynccontextmanager
    async def session(self, camera_id: int) -> AsyncIterator[WorkerSession]:
        """Hold the camera's lock for a multi-step operation.

        Usage:
            async with supervisor.session(camera_id) as session:
                was_running = session.is_running
                if was_running:
                    await session.stop()
                ...  # mutate configuration
                if was_running:
                    await session.settle()
                    await session.start()
        """
        lock = self._locks.setdefault(camera_id, asyncio.Lock())
        async with lock:
            yield WorkerSession(self, camera_id)

    # ========================================================================
    # Public Operations
    # ========================================================================

    async def start(self, camera_id: int) -> WorkerResult:
        async with self.session(camera_id) as session:
            return await session.start()

    async def stop(self, camera_id: int) -> WorkerResult:
        async with self.session(camera_id) as session:
            return await session.stop()

    async def restart(self, camera_id: int) -> WorkerResult:
        async with self.session(camera_id) as session:
            return await session.restart()

    async def start_all(self) -> list[WorkerResult]:
        """Start every configured camera in list order, settling between."""
        results: list[WorkerResult] = []
        camera_ids = [c.id for c in self.store.cameras.cameras]

        for idx, camera_id in enumerate(camera_ids):
            if idx > 0:
                await asyncio.sleep(self.settle_delay)
            try:
                results.append(await self.start(camera_id))
            except NotFoundError:
                logger.debug(f"Camera {camera_id} deleted during start-all, skipping")

        started = sum(1 for r in results if r.status == "started")
        logger.info(f"Start-all: {started}/{len(camera_ids)} camera(s) started")
        return results

    async def stop_all(self) -> list[WorkerResult]:
        """Stop every configured camera concurrently."""
        camera_ids = [c.id for c in self.store.cameras.cameras]
        outcomes = await asyncio.gather(
            *(self.stop(camera_id) for camera_id in camera_ids),
            return_exceptions=True
        )

        results: list[WorkerResult] = []
        for camera_id, outcome in zip(camera_ids, outcomes):
            if isinstance(outcome, NotFoundError):
                continue
            if isinstance(outcome, BaseException):
                logger.error(f"Stop failed for camera {camera_id}: {outcome}")
                results.append(WorkerResult(status="error", camera_id=camera_id, error=str(outcome)))
            else:
                results.append(outcome)
        return results

    async def shutdown(self) -> None:
        """Terminate all workers with bounded latency.

        SIGTERM everything, wait up to ``shutdown_grace`` seconds in total,
        SIGKILL survivors. Further starts are refused afterwards.
        """
        self._closed = True
        handles = list(self._handles.values())
        if not handles:
            logger.info("No running workers to stop")
            return

        logger.info(f"Stopping {len(handles)} worker(s)...")
        for handle in handles:
            handle.stopping = True
            _send_signal(handle.process.terminate)

        waiters = [asyncio.create_task(h.process.wait()) for h in handles]
        _, pending = await asyncio.wait(waiters, timeout=self.shutdown_grace)
        for waiter in pending:
            waiter.cancel()

        for handle in handles:
            if handle.alive:
                logger.warning(f"Worker for camera {handle.camera_id} ignored SIGTERM, killing")
                _send_signal(handle.process.kill)

        await asyncio.gather(*(h.reaper for h in handles if h.reaper), return_exceptions=True)
        self._handles.clear()
        workers_running.set(0)
        logger.info("All workers stopped")

    # ========================================================================
    # Start
    # ========================================================================

    async def _start_locked(self, camera_id: int) -> WorkerResult:
        camera = self.store.get_camera(camera_id)
        if camera is None:
            raise NotFoundError("camera", camera_id)

        if camera_id in self._handles:
            logger.debug(f"Worker already running: camera {camera_id}")
            worker_starts_total.labels(outcome="already_running").inc()
            return WorkerResult(status="already_running", camera_id=camera_id)

        if self._closed:
            return self._start_error(camera_id, "Supervisor is shutting down")

        config_file, settings_file = self.worker_files(camera_id)
        try:
            await asyncio.to_thread(self._write_worker_files, camera, config_file, settings_file)
        except OSError as e:
            logger.error(f"Failed to write worker config for camera {camera_id}: {e}")
            return self._start_error(camera_id, f"Failed to write worker configuration: {e}")

        try:
            self._check_executable()
        except ExecutableUnavailable as e:
            logger.error(f"Cannot start camera {camera_id}: {e.message}")
            return self._start_error(camera_id, e.message)

        model = resolve_model(camera.model_id, self.store.catalog)
        cmd = build_worker_command(self.executable, camera, config_file.resolve(), model)

        log_sink = await asyncio.to_thread(self._open_log, camera_id)
        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                cwd=self.worker_root,
                env=self._worker_env()
            )
        except OSError as e:
            logger.error(f"Spawn failed for camera {camera_id}: {e}", exc_info=True)
            log_sink.write(f"Error: {e}\n".encode())
            log_sink.close()
            return self._start_error(camera_id, f"Failed to spawn worker: {e}")

        if self._closed:
            # Shutdown ran during the awaits above and never saw this process
            logger.warning(f"Shutdown during start, killing worker: camera {camera_id} (PID={process.pid})")
            _send_signal(process.kill)
            await process.wait()
            log_sink.write(f"=== worker killed at shutdown code={process.returncode} ===\n".encode())
            log_sink.close()
            return self._start_error(camera_id, "Supervisor is shutting down")

        handle = WorkerHandle(camera_id=camera_id, process=process, log_sink=log_sink)
        handle.pumps = [
            asyncio.create_task(self._pump_output(handle, process.stdout)),
            asyncio.create_task(self._pump_output(handle, process.stderr)),
        ]
        handle.reaper = asyncio.create_task(self._reap(handle))
        self._handles[camera_id] = handle
        workers_running.set(len(self._handles))

        logger.info(f"Worker spawned: camera {camera_id} '{camera.name}' PID={process.pid} port={camera.port} model={model.id}")

        # Returns early if the worker dies inside the grace window
        await asyncio.wait({handle.reaper}, timeout=self.start_grace)

        if handle.alive:
            logger.info(f"Worker started: camera {camera_id} (PID={process.pid})")
            worker_starts_total.labels(outcome="started").inc()
            return WorkerResult(status="started", camera_id=camera_id)

        await handle.reaper
        crash = WorkerCrashed(camera_id, process.returncode)
        logger.error(f"Worker failed to start: {crash.message}; see {self.log_path(camera_id)}")
        worker_starts_total.labels(outcome="failed").inc()
        return WorkerResult(status="failed", camera_id=camera_id, exit_code=process.returncode)

    def _start_error(self, camera_id: int, message: str) -> WorkerResult:
        worker_starts_total.labels(outcome="error").inc()
        return WorkerResult(status="error", camera_id=camera_id, error=message)

    def _check_executable(self) -> None:
        if not self.executable.is_file() or not os.access(self.executable, os.X_OK):
            raise ExecutableUnavailable(str(self.executable))

    def _write_worker_files(self, camera: Camera, config_file: Path, settings_file: Path) -> None:
        detection = self.store.get_detection(camera.id)
        write_json_file(config_file, detection.to_document() if detection else {})

        settings = camera.settings or CameraSettings()
        write_json_file(settings_file, settings.model_dump(by_alias=True))

    def _open_log(self, camera_id: int) -> BinaryIO:
        self.log_dir.mkdir(parents=True, exist_ok=True)
        sink = self.log_path(camera_id).open("ab")
        sink.write(f"=== worker start {datetime.now(timezone.utc).isoformat()} ===\n".encode())
        sink.flush()
        return sink

    def _worker_env(self) -> dict[str, str]:
        env = dict(os.environ)
        if self.ld_library_path:
            existing = env.get("LD_LIBRARY_PATH")
            env["LD_LIBRARY_PATH"] = (
                f"{self.ld_library_path}:{existing}" if existing else self.ld_library_path
            )
        return env

    # ========================================================================
    # Stop / Restart
    # ========================================================================

    async def _stop_locked(self, camera_id: int) -> WorkerResult:
        handle = self._handles.pop(camera_id, None)
        if handle is None:
            if self.store.get_camera(camera_id) is None:
                raise NotFoundError("camera", camera_id)
            logger.debug(f"Worker not running: camera {camera_id}")
            return WorkerResult(status="not_running", camera_id=camera_id)

        handle.stopping = True
        workers_running.set(len(self._handles))

        if handle.alive:
            _send_signal(handle.process.terminate)
            try:
                await asyncio.wait_for(handle.process.wait(), timeout=self.stop_grace)
                logger.debug(f"Worker terminated gracefully: camera {camera_id}")
            except asyncio.TimeoutError:
                logger.warning(f"Timeout, killing worker: camera {camera_id}")
                _send_signal(handle.process.kill)
                await handle.process.wait()

        if handle.reaper is not None:
            await handle.reaper

        worker_stops_total.inc()
        logger.info(f"Worker stopped: camera {camera_id}")
        return WorkerResult(status="stopped", camera_id=camera_id)

    async def _restart_locked(self, camera_id: int) -> WorkerResult:
        if self.store.get_camera(camera_id) is None:
            raise NotFoundError("camera", camera_id)

        if camera_id in self._handles:
            await self._stop_locked(camera_id)
            await asyncio.sleep(self.settle_delay)

        return await self._start_locked(camera_id)

    # ========================================================================
    # Output and Exit Observation
    # ========================================================================

    async def _pump_output(
        self,
        handle: WorkerHandle,
        stream: asyncio.StreamReader | None
    ) -> None:
        """Copy worker output verbatim into its log and echo it to ours."""
        if stream is None:
            return

        echo = worker_logger(handle.camera_id)
        while True:
            chunk = await stream.read(OUTPUT_CHUNK_SIZE)
            if not chunk:
                break
            if not handle.log_sink.closed:
                handle.log_sink.write(chunk)
                handle.log_sink.flush()
            if echo.isEnabledFor(logging.DEBUG):
                for line in chunk.decode(errors="replace").splitlines():
                    if line.strip():
                        echo.debug(line.rstrip())

    async def _reap(self, handle: WorkerHandle) -> None:
        """Await process exit, drop the handle and publish a WorkerExit."""
        camera_id = handle.camera_id
        exit_code = await handle.process.wait()

        if self._handles.get(camera_id) is handle:
            del self._handles[camera_id]
        workers_running.set(len(self._handles))

        event = WorkerExit(camera_id=camera_id, exit_code=exit_code, expected=handle.stopping)
        self.last_exits[camera_id] = event

        if event.expected:
            logger.info(f"Worker for camera {camera_id} exited with code {exit_code}")
            worker_exits_total.labels(reason="stopped").inc()
        else:
            logger.warning(f"Worker for camera {camera_id} exited unexpectedly with code {exit_code}")
            worker_exits_total.labels(reason="crashed").inc()

        for observer in self._observers:
            try:
                observer(event)
            except Exception:
                logger.exception(f"Exit observer failed for camera {camera_id}")

        if handle.pumps:
            _, pending = await asyncio.wait(handle.pumps, timeout=self.stop_grace)
            for pump in pending:
                pump.cancel()

        handle.log_sink.write(
            f"=== worker exit code={exit_code} {event.at} ===\n".encode()
        )
        handle.log_sink.close()


def _send_signal(send: Callable[[], None]) -> None:
    """Signal a process that may already have exited."""
    try:
        send()
    except ProcessLookupError:
        pass
