"""
Printing subsystem for posprint.

This package groups printing-related functionality:

- commands/codepages/encoder: ESC/POS command model, transcoding and job layout
- render: Pillow rendering of the same layout for documents and PDF export
- registry: device discovery and thermal classification
- drivers/spooler/transports: delivery channels and fallback strategies
- dispatcher: per-device serialized delivery with retries and fallback
- diagnostics: diagnostic report, test print and drawer pulse
- service: background event loop and job registry used by the web layer

For convenience, common names are re-exported for easy import.
"""

from .commands import *
from .encoder import *
from .registry import *
from .dispatcher import *
from .diagnostics import *
from .service import *
