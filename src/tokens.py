import re
from typing import Optional, Set

# Identifiers may sit next to punctuation but never inside a longer alphanumeric run.
BGPMT_PATTERN = re.compile(r"(?:^|[^A-Za-z0-9])(BGPMT[A-Za-z0-9]{8,20})(?![A-Za-z0-9])")
BGI_PATTERN = re.compile(r"(?:^|[^A-Za-z0-9])(BGI\d{13})(?![A-Za-z0-9])")
GUARANTEE_PATTERN = re.compile(r"(?:^|[^A-Za-z0-9])(G\d{4}[A-Za-z]{2}\d{9})(?![A-Za-z0-9])")

_TOKEN_SPLIT = re.compile(r"[^A-Za-z0-9]+")

def _first(pattern: re.Pattern, text) -> Optional[str]:
    if text is None:
        return None
    text = str(text)
    if not text.strip():
        return None
    m = pattern.search(text)
    return m.group(1) if m else None

def extract_bgpmt(text) -> Optional[str]:
    return _first(BGPMT_PATTERN, text)

def extract_bgi(text) -> Optional[str]:
    return _first(BGI_PATTERN, text)

def extract_guarantee_id(text) -> Optional[str]:
    return _first(GUARANTEE_PATTERN, text)

def reference_tokens(*texts) -> Set[str]:
    """Upper-cased alphanumeric tokens of every non-blank text."""
    out: Set[str] = set()
    for t in texts:
        if t is None:
            continue
        out.update(p.upper() for p in _TOKEN_SPLIT.split(str(t)) if p)
    return out
