from __future__ import annotations

import re
import unicodedata
from datetime import date

UNSAFE_CHARS = re.compile(r"[^a-zA-Z0-9._-]")
DEFAULT_TITLE = "dokumentum"
PDF_SUFFIX = ".pdf"


def fold_accents(value: str) -> str:
    normalized = unicodedata.normalize("NFKD", value or "")
    return "".join(char for char in normalized if not unicodedata.combining(char))


def sanitize_file_name(value: str) -> str:
    """Accent-fold and replace everything outside ``[a-zA-Z0-9._-]`` with ``_``."""
    return UNSAFE_CHARS.sub("_", fold_accents(value))


def artifact_name(template_name: str, title: str | None, on: date) -> str:
    """``<template>_<title>_<YYYY-MM-DD>.pdf``, safe for any storage backend."""
    base = f"{template_name}_{(title or '').strip() or DEFAULT_TITLE}_{on.isoformat()}"
    return f"{sanitize_file_name(base)}{PDF_SUFFIX}"


def signed_name(file_name: str, role: str) -> str:
    stem = file_name[: -len(PDF_SUFFIX)] if file_name.lower().endswith(PDF_SUFFIX) else file_name
    return f"{stem}_signed_{role}{PDF_SUFFIX}"
