"""
Rendered-document surface for posprint.

- Resolve a monospace font from the environment or common system locations
- Draw a job Layout (the same lines the raw protocol path prints) onto a
  grayscale Pillow image
- Save renderings as PNG documents or multi-page PDFs
"""

from __future__ import annotations

import logging
import os
from collections.abc import Sequence
from pathlib import Path
from typing import List, Optional

from PIL import Image, ImageDraw, ImageFont

from posprint.printing.encoder import BarcodeBlock, Layout, QRBlock, TextLine

logger = logging.getLogger(__name__)

FONT_SIZE = 22
MARGIN = 16
LINE_SPACING = 6
CODE_BLOCK_HEIGHT = 96


def _measure_text(font: ImageFont.FreeTypeFont | ImageFont.ImageFont, text: str) -> tuple[int, int]:
    """
    Text measurement across Pillow font types: getbbox() first, getmask() as fallback.
    Returns (width, height).
    """
    try:
        bbox = font.getbbox(text)
        return int(bbox[2] - bbox[0]), int(bbox[3] - bbox[1])
    except AttributeError:
        mask = font.getmask(text)
        return int(mask.size[0]), int(mask.size[1])


def resolve_font(font_size: int = FONT_SIZE, bold: bool = False) -> ImageFont.FreeTypeFont | ImageFont.ImageFont:
    """
    Resolve a TTF font, preferring:
    1) POSPRINT_FONT_PATH
    2) common monospace system fonts (DejaVu Sans Mono, Liberation Mono, FreeMono)
    Falls back to Pillow's bundled default font.
    """
    candidates: List[str] = []
    env_path = os.environ.get("POSPRINT_FONT_PATH")
    if env_path:
        candidates.append(env_path)

    regular: Sequence[str] = (
        "/usr/share/fonts/truetype/dejavu/DejaVuSansMono.ttf",
        "/usr/share/fonts/truetype/liberation/LiberationMono-Regular.ttf",
        "/usr/share/fonts/truetype/freefont/FreeMono.ttf",
        "/usr/share/fonts/dejavu/DejaVuSansMono.ttf",
        "/usr/share/fonts/TTF/DejaVuSansMono.ttf",
        "C:\\Windows\\Fonts\\consola.ttf",
    )
    heavy: Sequence[str] = (
        "/usr/share/fonts/truetype/dejavu/DejaVuSansMono-Bold.ttf",
        "/usr/share/fonts/truetype/liberation/LiberationMono-Bold.ttf",
        "/usr/share/fonts/truetype/freefont/FreeMonoBold.ttf",
        "C:\\Windows\\Fonts\\consolab.ttf",
    )
    for pth in list(heavy if bold else ()) + list(regular):
        if pth not in candidates:
            candidates.append(pth)

    for pth in candidates:
        try:
            return ImageFont.truetype(pth, font_size)
        except OSError:
            continue

    logger.debug("No TTF font found; using Pillow default font")
    try:
        return ImageFont.load_default(size=font_size)
    except TypeError:
        # Pillow < 10.1 has no sized default font
        return ImageFont.load_default()


def render_layout(layout: Layout, font_size: int = FONT_SIZE) -> Image.Image:
    """
    Draw a Layout onto an 'L' mode image (black=0, white=255).

    The image is exactly wide enough for layout.columns characters of the
    resolved font, so wrapping decisions made by the layout are preserved.
    """
    font = resolve_font(font_size)
    bold_font = resolve_font(font_size, bold=True)
    char_w, _ = _measure_text(font, "M")
    _, line_h = _measure_text(font, "Ag")
    char_w = max(1, char_w)
    line_h = max(1, line_h) + LINE_SPACING
    width = MARGIN * 2 + char_w * layout.columns

    height = MARGIN * 2
    for block in layout.blocks:
        if isinstance(block, TextLine):
            height += line_h
        else:
            height += CODE_BLOCK_HEIGHT + (line_h if block.caption else 0) + LINE_SPACING

    img = Image.new("L", (int(width), int(max(height, line_h + MARGIN * 2))), 255)
    draw = ImageDraw.Draw(img)

    def _x_for(text: str, align: str, f) -> int:
        w, _ = _measure_text(f, text)
        if align == "center":
            return MARGIN + max(0, (width - MARGIN * 2 - w) // 2)
        if align == "right":
            return max(MARGIN, width - MARGIN - w)
        return MARGIN

    y = MARGIN
    for block in layout.blocks:
        if isinstance(block, TextLine):
            f = bold_font if block.bold else font
            if block.text:
                draw.text((_x_for(block.text, block.align, f), y), block.text, font=f, fill=0)
            y += line_h
            continue
        # Codes are drawn as a framed value; the physical symbol only exists on the raw path
        label = block.value if isinstance(block, BarcodeBlock) else f"QR: {block.value}"
        if isinstance(block, QRBlock) and len(label) > layout.columns:
            label = label[: layout.columns]
        box_w = min(width - MARGIN * 2, _measure_text(font, label)[0] + 2 * MARGIN)
        left = (width - box_w) // 2
        draw.rectangle([left, y, left + box_w, y + CODE_BLOCK_HEIGHT - 1], outline=0, width=2)
        draw.text((_x_for(label, "center", font), y + (CODE_BLOCK_HEIGHT - line_h) // 2), label, font=font, fill=0)
        y += CODE_BLOCK_HEIGHT + LINE_SPACING
        if block.caption:
            draw.text((_x_for(block.caption, "center", font), y), block.caption, font=font, fill=0)
            y += line_h

    return img


def save_png(img: Image.Image, path: str) -> str:
    Path(path).parent.mkdir(parents=True, exist_ok=True)
    img.save(path, "PNG")
    return path


def save_pdf(pages: Sequence[Image.Image], path: str, resolution: float = 203.0) -> str:
    """
    Save one or more renderings as a PDF (one page per image). 203 dpi matches
    common thermal print heads, so page size tracks the paper width.
    """
    if not pages:
        raise ValueError("no pages to save")
    Path(path).parent.mkdir(parents=True, exist_ok=True)
    rgb = [p.convert("RGB") for p in pages]
    rgb[0].save(path, "PDF", resolution=resolution, save_all=True, append_images=rgb[1:])
    logger.info("Saved PDF %s (%d page(s))", path, len(rgb))
    return path


def render_pages(layout: Layout, copies: int = 1, font_size: Optional[int] = None) -> List[Image.Image]:
    img = render_layout(layout, font_size or FONT_SIZE)
    return [img] * max(1, copies)


__all__ = [
    "render_layout",
    "render_pages",
    "resolve_font",
    "save_pdf",
    "save_png",
]
