"""
Print dispatcher: resolves a device, encodes the job and walks the fallback
chain with bounded retries.

States per submit:
    Resolving -> Encoding -> Transmitting(transport_i)
        -> Success | Retrying(transport_i) | Falling back to transport_i+1
        -> Terminal(Success | Failure)

The chain is data (FALLBACK_CHAINS); adding a transport means adding a
TransportKind to a chain and registering a Transport for it.

Concurrency:
- Submissions for different devices run concurrently.
- Submissions for the same device name queue FIFO behind an asyncio.Lock.
- A submission can be cancelled only while it waits for that lock. Once the
  lock is held, delivery runs in a shielded task that releases the lock itself.
- A timed-out attempt is reported as such, but the device is not handed to a
  retry, the next transport or the next job until its thread has returned.
- Each attempt gets its own DeliveryContext copy; warnings from the winning
  attempt are kept.

submit() never raises a PrintError; every failure is folded into PrintResult.
"""

from __future__ import annotations

import asyncio
import dataclasses
import logging
import time
from typing import Awaitable, Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from posprint.core.config import PrintSettings
from posprint.core.errors import (
    AttemptTimeout,
    DeviceNotFound,
    NoDeviceConfigured,
    PrintError,
    ProtocolRejected,
    TransportUnavailable,
    UnsupportedCharacter,
)
from posprint.core.models import (
    AttemptOutcome,
    DeviceDescriptor,
    JobKind,
    PrintJob,
    PrintResult,
    TransportKind,
)
from posprint.printing.encoder import encode
from posprint.printing.registry import DeviceRegistry
from posprint.printing.transports import DeliveryContext, Transport, default_transports

logger = logging.getLogger(__name__)

Backoff = Callable[[float], Awaitable[None]]
OnStart = Callable[[DeviceDescriptor], None]

THERMAL_CHAIN: Tuple[TransportKind, ...] = (TransportKind.RAW_PROTOCOL, TransportKind.RENDERED_DOCUMENT)
STANDARD_CHAIN: Tuple[TransportKind, ...] = (TransportKind.RENDERED_DOCUMENT, TransportKind.PDF_EXPORT)
DRAWER_CHAIN: Tuple[TransportKind, ...] = (TransportKind.RAW_PROTOCOL,)

LABEL_KINDS = (JobKind.LABEL, JobKind.BARCODE)


def fallback_chain(job: PrintJob, device: DeviceDescriptor) -> Tuple[TransportKind, ...]:
    if job.kind == JobKind.CASH_DRAWER_PULSE:
        return DRAWER_CHAIN
    return THERMAL_CHAIN if device.is_thermal else STANDARD_CHAIN


def effective_cut(job: PrintJob, settings: PrintSettings) -> bool:
    return settings.auto_cut if job.options.cut_paper is None else bool(job.options.cut_paper)


def effective_open_drawer(job: PrintJob, settings: PrintSettings) -> bool:
    if job.kind == JobKind.CASH_DRAWER_PULSE:
        return False
    if job.options.open_drawer is not None:
        return bool(job.options.open_drawer)
    return settings.auto_open_drawer and job.kind == JobKind.RECEIPT


class Dispatcher:
    """
    One per process. Holds the registry it resolves against, the transport
    strategies by kind, the per-device locks and the backoff coroutine
    (asyncio.sleep unless a test injects a no-op).
    """

    def __init__(
        self,
        registry: DeviceRegistry,
        transports: Optional[Iterable[Transport]] = None,
        backoff: Optional[Backoff] = None,
    ) -> None:
        self.registry = registry
        self._transports: Dict[TransportKind, Transport] = {
            t.kind: t for t in (transports if transports is not None else default_transports())
        }
        self._backoff: Backoff = backoff or asyncio.sleep
        self._locks: Dict[str, asyncio.Lock] = {}

    # Resolving

    def resolve_device(self, job: PrintJob, settings: PrintSettings) -> Tuple[DeviceDescriptor, List[str]]:
        """
        Pick the target device: explicit target, then the kind's configured
        default, then the system default, then the first thermal device.
        Drawer pulses and open-drawer jobs resolve from the thermal subset.
        """
        warnings: List[str] = []
        if job.target_device_name:
            device = self.registry.find(job.target_device_name)
            if device is None:
                raise DeviceNotFound(f"device {job.target_device_name!r} is not in the registry; refresh and retry")
            return device, warnings

        wants_drawer = job.kind == JobKind.CASH_DRAWER_PULSE or effective_open_drawer(job, settings)
        configured = settings.default_label_device if job.kind in LABEL_KINDS else settings.default_receipt_device
        if job.kind in LABEL_KINDS and not configured:
            configured = settings.default_receipt_device

        if wants_drawer:
            device = self._resolve_thermal(configured)
            if device is not None:
                return device, warnings
            if job.kind == JobKind.CASH_DRAWER_PULSE:
                raise NoDeviceConfigured("no ESC/POS capable device available for a drawer pulse")
            warnings.append("drawer pulse skipped: no ESC/POS capable device available")

        if configured:
            device = self.registry.find(configured)
            if device is None:
                raise DeviceNotFound(f"configured device {configured!r} is not in the registry")
            return device, warnings

        device = self.registry.system_default()
        if device is None:
            thermal = self.registry.thermal_devices()
            device = thermal[0] if thermal else None
        if device is None:
            raise NoDeviceConfigured("no target device, no configured default and no system default")
        return device, warnings

    def _resolve_thermal(self, configured: Optional[str]) -> Optional[DeviceDescriptor]:
        for candidate in (self.registry.find(configured), self.registry.system_default()):
            if candidate is not None and candidate.is_thermal:
                return candidate
        thermal = self.registry.thermal_devices()
        return thermal[0] if thermal else None

    # Submitting

    def _lock_for(self, name: str) -> asyncio.Lock:
        lock = self._locks.get(name)
        if lock is None:
            lock = self._locks[name] = asyncio.Lock()
        return lock

    async def submit(
        self,
        job: PrintJob,
        settings: Optional[PrintSettings] = None,
        on_start: Optional[OnStart] = None,
    ) -> PrintResult:
        settings = settings or PrintSettings()
        logger.info("Job %s (%s): resolving device", job.job_id, job.kind.value)
        try:
            device, warnings = self.resolve_device(job, settings)
        except PrintError as e:
            logger.warning("Job %s: %s: %s", job.job_id, e.kind.value, e.message)
            return PrintResult(success=False, job_id=job.job_id, error_kind=e.kind, error_message=e.message)

        lock = self._lock_for(device.name)
        await lock.acquire()  # the only cancellable wait
        try:
            if on_start is not None:
                on_start(device)
            task = asyncio.ensure_future(self._deliver(job, device, settings, warnings))
        except BaseException:
            lock.release()
            raise
        task.add_done_callback(lambda _t: lock.release())
        return await asyncio.shield(task)

    async def _deliver(
        self,
        job: PrintJob,
        device: DeviceDescriptor,
        settings: PrintSettings,
        warnings: Sequence[str],
    ) -> PrintResult:
        chain = fallback_chain(job, device)
        ctx = DeliveryContext(
            job=job,
            device=device,
            settings=settings,
            columns=settings.columns_for(device.name, label=job.kind in LABEL_KINDS),
            cut_paper=effective_cut(job, settings),
            open_drawer=effective_open_drawer(job, settings) and device.is_thermal,
            warnings=list(warnings),
        )
        if effective_open_drawer(job, settings) and not device.is_thermal and not ctx.warnings:
            ctx.warn(f"drawer pulse skipped: {device.name} does not accept ESC/POS")
        logger.info(
            "Job %s: device %r (%s, thermal=%s), chain=%s",
            job.job_id,
            device.name,
            device.transport.value,
            device.is_thermal,
            [k.value for k in chain],
        )

        encode_error: Optional[PrintError] = None
        if TransportKind.RAW_PROTOCOL in chain:
            encode_error = self._encode(ctx)

        attempts: List[AttemptOutcome] = []
        last_error: Optional[PrintError] = None

        def _failure() -> PrintResult:
            err = last_error or TransportUnavailable("no transport attempted")
            log = "; ".join(f"{a.transport.value}#{a.attempt}: {a.error_kind.value}: {a.error_message}" for a in attempts)
            logger.warning("Job %s: failed on %r: %s", job.job_id, device.name, log or err.message)
            return PrintResult(
                success=False,
                job_id=job.job_id,
                device_name=device.name,
                error_kind=err.kind,
                error_message=log or err.message,
                attempts=tuple(attempts),
                warnings=tuple(ctx.warnings),
            )

        for kind in chain:
            transport = self._transports.get(kind)
            if transport is None:
                last_error = TransportUnavailable(f"{kind.value} is not configured")
                attempts.append(_outcome(kind, 1, last_error, 0.0))
                continue
            if kind == TransportKind.RAW_PROTOCOL and encode_error is not None:
                last_error = encode_error
                attempts.append(_outcome(kind, 1, encode_error, 0.0))
                if isinstance(encode_error, ProtocolRejected):
                    return _failure()
                logger.info("Job %s: advancing past %s", job.job_id, kind.value)
                continue

            for attempt in range(1, settings.max_attempts_per_transport + 1):
                started = time.monotonic()
                logger.info("Job %s: %s attempt %d", job.job_id, kind.value, attempt)
                attempt_ctx = dataclasses.replace(ctx, warnings=list(ctx.warnings))
                try:
                    detail = await self._send(transport, attempt_ctx, settings.attempt_timeout_seconds)
                except PrintError as e:
                    err: PrintError = e
                except Exception as e:
                    logger.exception("Job %s: unexpected error in %s", job.job_id, kind.value)
                    err = TransportUnavailable(f"unexpected error: {e}")
                else:
                    ctx.warnings[:] = attempt_ctx.warnings
                    elapsed = (time.monotonic() - started) * 1000
                    logger.info("Job %s: printed via %s in %.0f ms", job.job_id, kind.value, elapsed)
                    return PrintResult(
                        success=True,
                        job_id=job.job_id,
                        device_name=device.name,
                        transport_used=kind,
                        attempts=tuple(attempts),
                        warnings=tuple(ctx.warnings),
                        output_path=detail if kind == TransportKind.PDF_EXPORT else None,
                    )

                elapsed = (time.monotonic() - started) * 1000
                attempts.append(_outcome(kind, attempt, err, elapsed))
                last_error = err
                logger.warning(
                    "Job %s: %s attempt %d failed: %s: %s", job.job_id, kind.value, attempt, err.kind.value, err.message
                )
                if isinstance(err, ProtocolRejected):
                    return _failure()
                if not err.retriable or attempt >= settings.max_attempts_per_transport:
                    break
                await self._backoff(settings.retry_backoff_seconds)
            logger.info("Job %s: %s exhausted, advancing", job.job_id, kind.value)

        return _failure()

    @staticmethod
    async def _send(transport: Transport, ctx: DeliveryContext, timeout: float) -> Optional[str]:
        """
        Run transport.send on a worker thread, bounded by timeout.

        A thread cannot be interrupted, so on timeout the device stays owned
        until the abandoned send returns. Its late outcome is logged and dropped.
        """
        future = asyncio.ensure_future(asyncio.to_thread(transport.send, ctx))
        done, _ = await asyncio.wait({future}, timeout=timeout)
        if future in done:
            return future.result()
        overrun = time.monotonic()
        await asyncio.wait({future})
        late = future.exception()
        logger.warning(
            "Job %s: %s returned %.0f ms past its %.0fs timeout%s",
            ctx.job.job_id,
            transport.kind.value,
            (time.monotonic() - overrun) * 1000,
            timeout,
            f" ({type(late).__name__}: {late})" if late else "",
        )
        raise AttemptTimeout(f"{transport.kind.value} exceeded {timeout:.0f}s")

    @staticmethod
    def _encode(ctx: DeliveryContext) -> Optional[PrintError]:
        settings = ctx.settings
        try:
            ctx.encoded = encode(
                ctx.job,
                ctx.columns,
                code_page=settings.code_page_for(ctx.device.name),
                cut_paper=ctx.cut_paper,
                open_drawer=ctx.open_drawer,
                drawer_pin=settings.drawer_pin,
                drawer_on_ms=settings.drawer_on_ms,
                drawer_off_ms=settings.drawer_off_ms,
            )
        except UnsupportedCharacter as e:
            logger.warning("Job %s: cannot encode control data: %s", ctx.job.job_id, e.message)
            return e
        except ValueError as e:
            logger.error("Job %s: malformed command: %s", ctx.job.job_id, e)
            return ProtocolRejected(str(e))
        if ctx.encoded.substitutions:
            ctx.warn("substituted characters: " + ", ".join(ctx.encoded.substitutions))
        logger.debug("Job %s: encoded %d bytes", ctx.job.job_id, len(ctx.encoded.data))
        return None


def _outcome(kind: TransportKind, attempt: int, err: PrintError, elapsed_ms: float) -> AttemptOutcome:
    return AttemptOutcome(
        transport=kind,
        attempt=attempt,
        success=False,
        error_kind=err.kind,
        error_message=err.message,
        elapsed_ms=elapsed_ms,
    )


__all__ = [
    "DRAWER_CHAIN",
    "Dispatcher",
    "STANDARD_CHAIN",
    "THERMAL_CHAIN",
    "effective_cut",
    "effective_open_drawer",
    "fallback_chain",
]
