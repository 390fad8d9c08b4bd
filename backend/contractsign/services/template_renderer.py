from __future__ import annotations

import io
import logging
from typing import Mapping

from docx import Document as DocxDocument
from docx.oxml.ns import qn

from contractsign.core.errors import RenderError
from contractsign.core.logging_setup import get_logger
from contractsign.services.placeholders import (
    MARKERS,
    iter_story_parts,
    paragraph_spans,
    paragraph_text,
    replace_span,
    rewrite_paragraph,
)

_W_P = qn("w:p")
_SNIPPET = 24


def _snippet(text: str, start: int) -> str:
    return text[start:start + _SNIPPET]


def substitute_paragraph(
    paragraph,  # type: ignore[no-untyped-def]
    tokens: Mapping[str, str],
    *,
    location: str = "",
) -> list[str]:
    """
    Replace ``{name}`` tags of one paragraph with their token values.

    Unknown names render as empty text. Malformed tags are reported and left
    in place; the returned list holds one message per problem.
    """
    spans = paragraph_spans(paragraph)
    text = paragraph_text(spans)
    if "{" not in text and "}" not in text:
        return []

    errors: list[str] = []
    replacements: list[tuple[int, int, str]] = []
    where = f" in {location}" if location else ""
    index = 0
    while index < len(text):
        char = text[index]
        if char == "}":
            errors.append(f"Unopened tag near '{_snippet(text, max(0, index - _SNIPPET + 1))}'{where}")
            index += 1
            continue
        if char != "{":
            index += 1
            continue
        close = text.find("}", index + 1)
        reopen = text.find("{", index + 1)
        if close < 0 or (0 <= reopen < close):
            errors.append(f"Unclosed tag '{_snippet(text, index)}'{where}")
            index += 1
            continue
        name = text[index + 1:close].strip()
        if not name:
            errors.append(f"Empty tag{where}")
        elif name.startswith("%"):
            errors.append(f"Unsupported image tag '{{{name}}}'{where}")
        else:
            replacements.append((index, close + 1, str(tokens.get(name, "") or "")))
        index = close + 1

    # Right to left so offsets of earlier tags stay valid.
    for start, end, value in reversed(replacements):
        replace_span(spans, start, end, value)
    return errors


class TemplateRenderer:
    """Populate a DOCX template: signature tokens become markers, ``{tokens}`` become data."""

    def __init__(self, markers: Mapping[str, str] | None = None, logger: logging.Logger | None = None) -> None:
        self.markers = dict(markers or MARKERS)
        self.logger = logger or get_logger("renderer")

    def render(self, template_bytes: bytes, tokens: Mapping[str, str]) -> bytes:
        try:
            document = DocxDocument(io.BytesIO(template_bytes))
        except Exception as exc:
            raise RenderError([f"Invalid DOCX template: {exc}"]) from exc

        errors: list[str] = []
        marker_count = 0
        for partname, root in iter_story_parts(document):
            for number, paragraph in enumerate(root.iter(_W_P), start=1):
                marker_count += rewrite_paragraph(paragraph, self.markers)
                errors.extend(
                    substitute_paragraph(paragraph, tokens, location=f"{partname} paragraph {number}")
                )

        if errors:
            self.logger.error("Template rendering failed with %d error(s)", len(errors))
            raise RenderError(errors)

        buffer = io.BytesIO()
        document.save(buffer)
        self.logger.info("DOCX rendered (%d signature marker(s), %d bytes)", marker_count, buffer.tell())
        return buffer.getvalue()
