"""
Fallback-chain transports.

A transport is one strategy for getting a job onto paper (or disk):

- RawProtocolTransport: the encoded ESC/POS stream written through the device driver
- RenderedDocumentTransport: the job layout drawn with Pillow and submitted as a
  document (spooler queue) or as a raster image (USB/serial thermal devices)
- PdfExportTransport: the same rendering saved as a PDF under pdf_export_dir

send() is synchronous and is run by the dispatcher in a worker thread with a
bounded timeout. It returns an optional detail string (e.g. the written path)
and raises PrintError subclasses on failure.
"""

from __future__ import annotations

import logging
import os
import tempfile
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Callable, List, Optional

from posprint.core.config import PrintSettings
from posprint.core.errors import TransportUnavailable
from posprint.core.models import DeviceDescriptor, EncodedCommand, PrintJob, TransportKind, TransportType
from posprint.printing import commands as cmd
from posprint.printing.drivers import EscposDriver, SpoolerDriver, TransportDriver, driver_for
from posprint.printing.encoder import layout_job
from posprint.printing.render import render_pages, save_pdf, save_png
from posprint.printing.spooler import SpoolerBackend

logger = logging.getLogger(__name__)

DriverFactory = Callable[[DeviceDescriptor, PrintSettings], TransportDriver]


@dataclass
class DeliveryContext:
    """Everything one attempt needs. Built once per submit by the dispatcher."""

    job: PrintJob
    device: DeviceDescriptor
    settings: PrintSettings
    columns: int
    cut_paper: bool = False
    open_drawer: bool = False
    encoded: Optional[EncodedCommand] = None
    warnings: List[str] = field(default_factory=list)

    def warn(self, message: str) -> None:
        if message not in self.warnings:
            self.warnings.append(message)


class Transport(ABC):
    kind: TransportKind

    @abstractmethod
    def send(self, ctx: DeliveryContext) -> Optional[str]: ...


class RawProtocolTransport(Transport):
    kind = TransportKind.RAW_PROTOCOL

    def __init__(self, driver_factory: Optional[DriverFactory] = None) -> None:
        self.driver_factory = driver_factory or driver_for

    def send(self, ctx: DeliveryContext) -> Optional[str]:
        if not ctx.device.is_thermal:
            raise TransportUnavailable(f"{ctx.device.name} does not accept raw ESC/POS")
        if ctx.encoded is None:
            raise TransportUnavailable("no encoded command for raw transport")
        with self.driver_factory(ctx.device, ctx.settings) as driver:
            driver.write(ctx.encoded.data)
        return f"{len(ctx.encoded.data)} bytes"


class RenderedDocumentTransport(Transport):
    kind = TransportKind.RENDERED_DOCUMENT

    def __init__(self, driver_factory: Optional[DriverFactory] = None) -> None:
        self.driver_factory = driver_factory or driver_for

    def send(self, ctx: DeliveryContext) -> Optional[str]:
        if ctx.open_drawer:
            ctx.warn("drawer pulse skipped: rendered document path has no drawer control")
        layout = layout_job(ctx.job, ctx.columns, code_page=None)
        copies = ctx.job.options.copies

        if ctx.device.transport == TransportType.SPOOLER:
            # temporary surface lives only for this attempt
            with tempfile.TemporaryDirectory(prefix="posprint-") as tmp:
                img = render_pages(layout)[0]
                path = save_png(img, os.path.join(tmp, f"{ctx.job.job_id}.png"))
                with self.driver_factory(ctx.device, ctx.settings) as driver:
                    if not isinstance(driver, SpoolerDriver):
                        raise TransportUnavailable("spooler device without spooler driver")
                    driver.submit_document(path, copies=copies)
            return "document"

        if not ctx.device.is_thermal:
            raise TransportUnavailable(f"{ctx.device.name} has no spooler queue for documents")
        pages = render_pages(layout, copies)
        with self.driver_factory(ctx.device, ctx.settings) as driver:
            if not isinstance(driver, EscposDriver):
                raise TransportUnavailable("raster printing needs an ESC/POS driver")
            for page in pages:
                driver.write_image(page)
                if ctx.cut_paper:
                    driver.write(cmd.FeedLines(4).encode() + cmd.Cut("full").encode())
        return "raster"


class PdfExportTransport(Transport):
    kind = TransportKind.PDF_EXPORT

    def send(self, ctx: DeliveryContext) -> Optional[str]:
        layout = layout_job(ctx.job, ctx.columns, code_page=None)
        pages = render_pages(layout, ctx.job.options.copies)
        path = os.path.join(ctx.settings.pdf_export_dir, f"{ctx.job.kind.value}-{ctx.job.job_id}.pdf")
        try:
            save_pdf(pages, path)
        except OSError as e:
            raise TransportUnavailable(f"cannot write {path}: {e}") from e
        if ctx.open_drawer:
            ctx.warn("drawer pulse skipped: job exported to PDF")
        return path


def default_transports(spooler: Optional[SpoolerBackend] = None) -> List[Transport]:
    def factory(device: DeviceDescriptor, settings: PrintSettings) -> TransportDriver:
        return driver_for(device, settings, spooler=spooler)

    return [RawProtocolTransport(factory), RenderedDocumentTransport(factory), PdfExportTransport()]


__all__ = [
    "DeliveryContext",
    "DriverFactory",
    "PdfExportTransport",
    "RawProtocolTransport",
    "RenderedDocumentTransport",
    "Transport",
    "default_transports",
]
