"""
Signature placeholder handling for DOCX templates.

Template authors place ``{%signature}``, ``{%signature1}`` or ``{%signature2}``
anywhere in the body, headers or footers. Word processors frequently split
such a string over several runs (spell checking, revision ids, partial
formatting), so the search runs over the concatenated text of a paragraph and
the affected ``w:t`` nodes are rewritten in place.

The markers that replace the tokens are plain upper-case words: they survive
PDF conversion as searchable text and contain none of ``{``, ``}`` or ``%``,
so the token substitution pass never mistakes them for template tags.
"""

from __future__ import annotations

import io
import re
import zipfile
from dataclasses import dataclass
from typing import Iterable, Iterator, Mapping, Sequence

from docx.opc.constants import CONTENT_TYPE as CT
from docx.oxml.ns import qn

from contractsign.models.document import SignerRole

SIGNATURE_TOKEN = "{%signature}"
SIGNATURE_TOKEN_A = "{%signature1}"
SIGNATURE_TOKEN_B = "{%signature2}"
SIGNATURE_TOKENS = (SIGNATURE_TOKEN, SIGNATURE_TOKEN_A, SIGNATURE_TOKEN_B)

MARKER_SINGLE = "CSIGMARKERA0"
MARKER_A = "CSIGMARKERA1"
MARKER_B = "CSIGMARKERB2"

MARKERS: dict[str, str] = {
    SIGNATURE_TOKEN: MARKER_SINGLE,
    SIGNATURE_TOKEN_A: MARKER_A,
    SIGNATURE_TOKEN_B: MARKER_B,
}

MARKERS_BY_ROLE: dict[SignerRole, list[str]] = {
    SignerRole.A: [MARKER_SINGLE, MARKER_A],
    SignerRole.B: [MARKER_B],
}

ALL_MARKERS: tuple[str, ...] = tuple(MARKERS.values())

_W_P = qn("w:p")
_W_T = qn("w:t")
_XML_SPACE = qn("xml:space")

_STORY_CONTENT_TYPES = {CT.WML_DOCUMENT_MAIN, CT.WML_HEADER, CT.WML_FOOTER}
_DETECTION_PARTS = re.compile(r"^word/(document|header\d*|footer\d*)\.xml$")
_TAG_RE = re.compile(r"<[^>]+>")


@dataclass
class TextSpan:
    """A text node of a paragraph and its offset in the paragraph text."""

    node: object
    start: int
    end: int


def _owning_paragraph(node):  # type: ignore[no-untyped-def]
    parent = node.getparent()
    while parent is not None and parent.tag != _W_P:
        parent = parent.getparent()
    return parent


def paragraph_spans(paragraph) -> list[TextSpan]:  # type: ignore[no-untyped-def]
    """Text nodes that belong directly to ``paragraph`` (not to nested text boxes)."""
    element = getattr(paragraph, "_p", paragraph)
    spans: list[TextSpan] = []
    offset = 0
    for node in element.iter(_W_T):
        if _owning_paragraph(node) is not element:
            continue
        text = node.text or ""
        spans.append(TextSpan(node=node, start=offset, end=offset + len(text)))
        offset += len(text)
    return spans


def paragraph_text(spans: Sequence[TextSpan]) -> str:
    return "".join(span.node.text or "" for span in spans)  # type: ignore[attr-defined]


def _set_text(node, text: str) -> None:  # type: ignore[no-untyped-def]
    node.text = text
    if text != text.strip():
        node.set(_XML_SPACE, "preserve")


def replace_span(spans: Sequence[TextSpan], start: int, end: int, replacement: str) -> None:
    """
    Replace paragraph characters ``[start, end)`` with ``replacement``.

    The first overlapping node receives the replacement (keeping its run
    formatting); the remaining overlapping nodes keep only the text outside
    the span. Nodes outside the span are not touched.
    """
    overlapping = [span for span in spans if span.end > start and span.start < end and span.end > span.start]
    if not overlapping:
        return
    first = overlapping[0]
    last = overlapping[-1]
    first_text = first.node.text or ""  # type: ignore[attr-defined]
    prefix = first_text[: start - first.start]
    if first is last:
        suffix = first_text[end - first.start:]
        _set_text(first.node, prefix + replacement + suffix)
        return
    _set_text(first.node, prefix + replacement)
    for span in overlapping[1:-1]:
        _set_text(span.node, "")
    last_text = last.node.text or ""  # type: ignore[attr-defined]
    _set_text(last.node, last_text[end - last.start:])


def rewrite_paragraph(paragraph, replacements: Mapping[str, str]) -> int:  # type: ignore[no-untyped-def]
    """Replace every occurrence of each token in one paragraph; returns the count."""
    count = 0
    for token, marker in replacements.items():
        if not token:
            continue
        search_from = 0
        while True:
            spans = paragraph_spans(paragraph)
            text = paragraph_text(spans)
            index = text.find(token, search_from)
            if index < 0:
                break
            replace_span(spans, index, index + len(token), marker)
            search_from = index + len(marker)
            count += 1
    return count


def iter_story_parts(document) -> Iterator[tuple[str, object]]:  # type: ignore[no-untyped-def]
    """``(partname, root element)`` for the main body and every header and footer."""
    seen: set[int] = set()
    for part in document.part.package.iter_parts():
        if part.content_type not in _STORY_CONTENT_TYPES:
            continue
        element = getattr(part, "element", None)
        if element is None or id(element) in seen:
            continue
        seen.add(id(element))
        yield str(part.partname), element


def iter_paragraph_elements(document) -> Iterator[object]:  # type: ignore[no-untyped-def]
    for _, root in iter_story_parts(document):
        yield from root.iter(_W_P)


def rewrite_document(document, replacements: Mapping[str, str] = MARKERS) -> int:  # type: ignore[no-untyped-def]
    """Apply :func:`rewrite_paragraph` to every paragraph of every story."""
    return sum(rewrite_paragraph(paragraph, replacements) for paragraph in iter_paragraph_elements(document))


def markers_for_roles(roles: Iterable[SignerRole]) -> list[str]:
    markers: list[str] = []
    for role in roles:
        markers.extend(MARKERS_BY_ROLE[role])
    return markers


def role_for_marker(marker: str) -> SignerRole | None:
    for role, markers in MARKERS_BY_ROLE.items():
        if marker in markers:
            return role
    return None


def detect_signature_requirements(docx_bytes: bytes) -> tuple[bool, bool]:
    """
    Which signer roles a template asks for, judged from its visible text.

    Unreadable archives require both roles.
    """
    try:
        with zipfile.ZipFile(io.BytesIO(docx_bytes)) as archive:
            chunks = [
                _TAG_RE.sub("", archive.read(name).decode("utf-8", errors="ignore"))
                for name in archive.namelist()
                if _DETECTION_PARTS.match(name)
            ]
    except (zipfile.BadZipFile, KeyError, OSError):
        return True, True

    plain_text = " ".join(chunks)
    has_a = SIGNATURE_TOKEN_A in plain_text or SIGNATURE_TOKEN in plain_text
    return has_a, SIGNATURE_TOKEN_B in plain_text
