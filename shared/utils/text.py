import re

from bs4 import BeautifulSoup

_WHITESPACE = re.compile(r"\s+")


def normalize_whitespace(text: str) -> str:
    return _WHITESPACE.sub(" ", text or "").strip()


def strip_html(html: str) -> str:
    """Convert an HTML fragment to whitespace-normalized plain text."""
    if not html:
        return ""
    if "<" not in html:
        return normalize_whitespace(html)
    soup = BeautifulSoup(html, "html.parser")
    return normalize_whitespace(soup.get_text(separator=" "))


def truncate(text: str, limit: int) -> str:
    return text if len(text) <= limit else text[:limit]


def word_count(text: str) -> int:
    return len(text.split())
