"""
Code page transcoding for ESC/POS text.

Visible text is never rejected: each character is encoded directly when the
target code page has it, otherwise replaced by a look-alike, then by its
accent-stripped base letter, and finally by a placeholder glyph. Every
replacement is recorded so the dispatcher can surface it as a warning.
"""

from __future__ import annotations

import logging
import unicodedata
from typing import Dict, List, Tuple

logger = logging.getLogger(__name__)

DEFAULT_CODE_PAGE = "cp437"
PLACEHOLDER = "?"

# ESC t n table numbers for the code pages we emit
ESC_POS_CODE_PAGES: Dict[str, int] = {
    "cp437": 0,
    "cp850": 2,
    "cp860": 3,
    "cp863": 4,
    "cp865": 5,
    "cp1252": 16,
    "cp866": 17,
    "cp852": 18,
    "cp858": 19,
}

_ALIASES: Dict[str, str] = {
    "pc437": "cp437",
    "pc850": "cp850",
    "pc858": "cp858",
    "pc852": "cp852",
    "pc866": "cp866",
    "windows-1252": "cp1252",
    "wpc1252": "cp1252",
    "latin1": "cp1252",
}

LOOKALIKE_MAP: Dict[str, str] = {
    "‘": "'",
    "’": "'",
    "“": '"',
    "”": '"',
    "–": "-",
    "—": "-",
    "…": "...",
    "€": "EUR",
    "\u00a0": " ",
    "•": "*",
    "×": "x",
}


def normalize_code_page(name: str) -> str:
    """Return the canonical code page name, or the default for unknown names."""
    key = (name or "").strip().lower().replace("_", "")
    key = _ALIASES.get(key, key)
    if key not in ESC_POS_CODE_PAGES:
        logger.warning("Unknown code page %r; using %s", name, DEFAULT_CODE_PAGE)
        return DEFAULT_CODE_PAGE
    return key


def code_page_number(name: str) -> int:
    return ESC_POS_CODE_PAGES[normalize_code_page(name)]


def code_page_for_number(n: int) -> str:
    for name, number in ESC_POS_CODE_PAGES.items():
        if number == n:
            return name
    return DEFAULT_CODE_PAGE


def _encodable(text: str, code_page: str) -> bool:
    try:
        text.encode(code_page)
    except UnicodeEncodeError:
        return False
    return True


def _strip_accents(ch: str) -> str:
    decomposed = unicodedata.normalize("NFKD", ch)
    return "".join(c for c in decomposed if not unicodedata.combining(c))


def transcode(text: str, code_page: str = DEFAULT_CODE_PAGE) -> Tuple[str, List[str]]:
    """
    Make text safe for code_page.

    Returns (safe_text, substitutions) where substitutions lists each distinct
    character that had to be replaced, as "original->replacement".
    """
    if _encodable(text, code_page):
        return text, []

    out: List[str] = []
    subs: List[str] = []
    for ch in text:
        if _encodable(ch, code_page):
            out.append(ch)
            continue
        replacement = LOOKALIKE_MAP.get(ch)
        if replacement is None or not _encodable(replacement, code_page):
            stripped = _strip_accents(ch)
            replacement = stripped if stripped and _encodable(stripped, code_page) else PLACEHOLDER
        out.append(replacement)
        entry = f"{ch}->{replacement}"
        if entry not in subs:
            subs.append(entry)
    return "".join(out), subs


__all__ = [
    "DEFAULT_CODE_PAGE",
    "ESC_POS_CODE_PAGES",
    "LOOKALIKE_MAP",
    "PLACEHOLDER",
    "code_page_for_number",
    "code_page_number",
    "normalize_code_page",
    "transcode",
]
