"""Text sanitization for extracted content.

Scraped and parsed text (PDF output in particular) can carry NUL bytes,
control characters, private-use code points and unpaired surrogates that
break JSON columns and PostgreSQL text fields.
"""

import re
from typing import Optional

_INVALID_CHARS = re.compile(
    "["
    "\x00-\x08\x0b\x0c\x0e-\x1f"   # C0 controls except \t \n \r
    "\x7f-\x9f"                     # DEL and C1 controls
    "\ud800-\udfff"                 # lone surrogates
    "\ufffd\ufffe\uffff"            # replacement / non-characters
    "\ue000-\uf8ff"                 # BMP private use area
    "\U000f0000-\U000ffffd"         # supplementary private use area A
    "\U00100000-\U0010fffd"         # supplementary private use area B
    "]"
)
_WHITESPACE = re.compile(r"\s+")


def strip_unsafe(text: Optional[str]) -> Optional[str]:
    """Remove unsafe code points but keep layout whitespace."""
    if text is None:
        return None
    return _INVALID_CHARS.sub("", text)


def sanitize_text(text: Optional[str]) -> str:
    """Strip unsafe code points and collapse whitespace.

    Idempotent: ``sanitize_text(sanitize_text(s)) == sanitize_text(s)``.
    """
    if not text:
        return ""
    cleaned = _INVALID_CHARS.sub("", text)
    return _WHITESPACE.sub(" ", cleaned).strip()
