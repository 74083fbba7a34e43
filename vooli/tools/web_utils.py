from __future__ import annotations

import re
from urllib.parse import urlparse


def is_valid_url(url: str) -> bool:
    """Basic URL validation."""
    try:
        result = urlparse(url)
        return all([result.scheme in ("http", "https"), result.netloc])
    except Exception:
        return False


def clean_content(text: str, max_length: int = 8000) -> str:
    """Collapse whitespace and trim page content to max length."""
    text = re.sub(r"\s+", " ", text).strip()
    if len(text) > max_length:
        text = text[:max_length] + "..."
    return text


def store_name(url: str) -> str | None:
    """Store name for a product URL: its host without a leading ``www.``."""
    try:
        host = (urlparse(url).hostname or "").lower().strip()
    except ValueError:
        return None
    if host.startswith("www."):
        host = host[4:]
    return host or None


def unique_urls(urls: list[str], *, limit: int | None = None) -> list[str]:
    """Valid URLs in input order, duplicates removed, optionally capped."""
    seen: set[str] = set()
    kept: list[str] = []
    for url in urls:
        if limit is not None and len(kept) >= limit:
            break
        if not isinstance(url, str) or not is_valid_url(url) or url in seen:
            continue
        seen.add(url)
        kept.append(url)
    return kept
