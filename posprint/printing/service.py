"""
Process-wide print service.

This module owns:
- A background thread running the asyncio loop the dispatcher lives on
- An in-memory job registry with lifecycle queued -> running -> success/error/cancelled
- Thread-safe entry points used by the web layer, the MCP tools and plain scripts

Settings are loaded from the settings store on each submission and handed to
the dispatcher as plain values. It is Flask-agnostic so it can be used from
both web routes and other contexts.
"""

from __future__ import annotations

import asyncio
import concurrent.futures
import logging
import os
import threading
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, cast

from posprint.core.config import PrintSettings, load_settings
from posprint.core.models import DeviceDescriptor, DiagnosticReport, PrintJob, PrintResult
from posprint.printing.diagnostics import DiagnosticsReporter
from posprint.printing.dispatcher import Dispatcher
from posprint.printing.registry import DeviceRegistry

logger = logging.getLogger(__name__)

SettingsLoader = Callable[[], PrintSettings]

FINISHED = ("success", "error", "cancelled")


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class PrintService:
    def __init__(
        self,
        registry: Optional[DeviceRegistry] = None,
        dispatcher: Optional[Dispatcher] = None,
        settings_loader: Optional[SettingsLoader] = None,
        jobs_max: Optional[int] = None,
    ) -> None:
        self.registry = registry or DeviceRegistry()
        self.dispatcher = dispatcher or Dispatcher(self.registry)
        self.diagnostics = DiagnosticsReporter(self.registry, self.dispatcher)
        self._load_settings: SettingsLoader = settings_loader or load_settings
        self.jobs_max = jobs_max if jobs_max is not None else int(os.environ.get("POSPRINT_JOBS_MAX", "200"))

        self._jobs: Dict[str, Dict[str, Any]] = {}
        self._jobs_lock = threading.RLock()
        self._tasks: Dict[str, asyncio.Task] = {}

        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._thread: Optional[threading.Thread] = None
        self._start_lock = threading.Lock()

    # Worker loop

    def ensure_worker(self) -> None:
        """
        Ensure the background event loop thread is running (idempotent).
        """
        with self._start_lock:
            if self._thread is not None and self._thread.is_alive():
                return
            loop = asyncio.new_event_loop()
            ready = threading.Event()

            def _run() -> None:
                asyncio.set_event_loop(loop)
                loop.call_soon(ready.set)
                loop.run_forever()
                loop.close()

            t = threading.Thread(target=_run, daemon=True, name="posprint-dispatcher")
            t.start()
            ready.wait()
            self._loop = loop
            self._thread = t
            logger.info("Print dispatcher loop started")

    def _call(self, coro) -> concurrent.futures.Future:
        self.ensure_worker()
        return asyncio.run_coroutine_threadsafe(coro, cast(asyncio.AbstractEventLoop, self._loop))

    def shutdown(self, timeout: float = 5.0) -> None:
        loop, thread = self._loop, self._thread
        if loop is None or thread is None:
            return
        loop.call_soon_threadsafe(loop.stop)
        thread.join(timeout)
        self._loop = None
        self._thread = None
        logger.info("Print dispatcher loop stopped")

    def worker_status(self) -> Dict[str, Any]:
        with self._jobs_lock:
            pending = sum(1 for j in self._jobs.values() if j["status"] in ("queued", "running"))
        return {
            "worker_started": self._thread is not None,
            "worker_alive": bool(self._thread) and self._thread.is_alive(),  # type: ignore[union-attr]
            "pending_jobs": pending,
            "devices": len(self.registry.snapshot()),
        }

    # Settings and devices

    def settings(self) -> PrintSettings:
        return self._load_settings()

    def list_devices(self) -> List[DeviceDescriptor]:
        return self.registry.current()

    def refresh_devices(self) -> List[DeviceDescriptor]:
        return self.registry.refresh(self.settings().thermal_overrides)

    # Job registry

    def _prune_jobs_if_needed(self) -> None:
        with self._jobs_lock:
            if len(self._jobs) <= self.jobs_max:
                return
            finished = [j for j in self._jobs.values() if j["status"] in FINISHED]
            for job in sorted(finished, key=lambda j: j["created_at"])[: len(self._jobs) - self.jobs_max]:
                self._jobs.pop(job["id"], None)

    def _create_job(self, job: PrintJob, origin: Optional[str]) -> str:
        now = _utc_now_iso()
        record: Dict[str, Any] = {
            "id": job.job_id,
            "kind": job.kind.value,
            "status": "queued",
            "target": job.target_device_name,
            "device": None,
            "created_at": now,
            "updated_at": now,
            "result": None,
        }
        if origin:
            record["origin"] = origin
        with self._jobs_lock:
            if job.job_id in self._jobs:
                raise ValueError(f"job {job.job_id} was already submitted")
            self._jobs[job.job_id] = record
            self._prune_jobs_if_needed()
        return job.job_id

    def _update_job(self, job_id: str, **updates: Any) -> None:
        with self._jobs_lock:
            job = self._jobs.get(job_id)
            if not job:
                return
            job.update(updates)
            job["updated_at"] = _utc_now_iso()

    def get_job(self, job_id: str) -> Optional[Dict[str, Any]]:
        with self._jobs_lock:
            job = self._jobs.get(job_id)
            return dict(job) if job else None

    def list_jobs(self) -> List[Dict[str, Any]]:
        """
        Return jobs sorted by created_at descending.
        """
        with self._jobs_lock:
            items = [dict(v) for v in self._jobs.values()]
        items.sort(key=lambda j: j["created_at"], reverse=True)
        return items

    # Submission

    async def _run_job(self, job: PrintJob, settings: PrintSettings) -> PrintResult:
        current = self.get_job(job.job_id)
        if current and current["status"] == "cancelled":
            # cancelled before the loop picked it up
            raise asyncio.CancelledError()
        task = asyncio.current_task()
        if task is not None:
            self._tasks[job.job_id] = task

        def on_start(device: DeviceDescriptor) -> None:
            self._update_job(job.job_id, status="running", device=device.name)

        try:
            result = await self.dispatcher.submit(job, settings, on_start=on_start)
        except asyncio.CancelledError:
            job_now = self.get_job(job.job_id)
            if job_now and job_now["status"] == "queued":
                self._update_job(job.job_id, status="cancelled")
            raise
        finally:
            self._tasks.pop(job.job_id, None)

        self._update_job(
            job.job_id,
            status="success" if result.success else "error",
            device=result.device_name,
            result=result.to_dict(),
        )
        if result.success:
            logger.info("Job %s printed on %r via %s", job.job_id, result.device_name, result.transport_used.value)  # type: ignore[union-attr]
        else:
            logger.warning("Job %s failed: %s: %s", job.job_id, result.error_kind, result.error_message)
        return result

    def enqueue(self, job: PrintJob, origin: Optional[str] = None) -> str:
        """
        Queue a job for delivery and return its id immediately.
        """
        settings = self.settings()
        job_id = self._create_job(job, origin)
        self._call(self._run_job(job, settings))
        logger.info("Enqueued %s job id=%s", job.kind.value, job_id)
        return job_id

    def submit(self, job: PrintJob, wait_timeout: Optional[float] = None) -> PrintResult:
        """
        Queue a job and block until its PrintResult is available.

        Raises concurrent.futures.TimeoutError if wait_timeout elapses first; the
        job keeps running and can be polled with get_job().
        """
        settings = self.settings()
        self._create_job(job, None)
        future = self._call(self._run_job(job, settings))
        return future.result(timeout=wait_timeout)

    async def _cancel(self, job_id: str) -> bool:
        # Runs on the loop thread, so the status cannot change underneath us
        job = self.get_job(job_id)
        if not job or job["status"] != "queued":
            return False
        task = self._tasks.get(job_id)
        if task is not None and not task.done():
            task.cancel()
        self._update_job(job_id, status="cancelled")
        logger.info("Job %s cancelled", job_id)
        return True

    def cancel(self, job_id: str) -> bool:
        """
        Cancel a job that has not started transmitting yet. Returns False once it
        holds its device (or has finished).
        """
        return self._call(self._cancel(job_id)).result(timeout=5)

    # Diagnostics

    def diagnostic_report(self, refresh: bool = True) -> DiagnosticReport:
        return self.diagnostics.run_diagnostic(self.settings(), refresh=refresh)

    def diagnostic_text(self, refresh: bool = True) -> str:
        return self.diagnostics.render_text(self.diagnostic_report(refresh=refresh))

    def test_device(self, name: str, wait_timeout: Optional[float] = None) -> PrintResult:
        return self._call(self.diagnostics.test_device(name, self.settings())).result(timeout=wait_timeout)

    def test_drawer(self, name: str, wait_timeout: Optional[float] = None) -> PrintResult:
        return self._call(self.diagnostics.test_drawer(name, self.settings())).result(timeout=wait_timeout)


__all__ = ["PrintService"]
