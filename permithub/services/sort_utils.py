from __future__ import annotations

import re

_WS_RE = re.compile(r'\s+')


def normalize_sort_text(value: str | None) -> str:
    return (value or '').strip().lower()


def normalize_search_text(value: str | None) -> str:
    return _WS_RE.sub(' ', normalize_sort_text(value))


def title_sort_key(title: str | None) -> tuple[str, str]:
    return (normalize_sort_text(title), title or '')
