import io

import pytest
from docx import Document as DocxDocument

from contractsign.models.document import SignerRole
from contractsign.services.placeholders import (
    MARKER_A,
    MARKER_B,
    MARKER_SINGLE,
    detect_signature_requirements,
    iter_paragraph_elements,
    markers_for_roles,
    paragraph_spans,
    paragraph_text,
    rewrite_document,
    role_for_marker,
)

from tests.conftest import build_docx


def _load(docx_bytes: bytes):
    return DocxDocument(io.BytesIO(docx_bytes))


def _all_text(document) -> str:
    return "\n".join(paragraph_text(paragraph_spans(p)) for p in iter_paragraph_elements(document))


@pytest.mark.parametrize(
    "runs",
    [
        ["{%signa", "ture1}"],
        ["Aláírás: {", "%", "signature1", "}", " dátum"],
        ["{%", "s", "i", "g", "n", "a", "t", "u", "r", "e", "1", "}"],
    ],
)
def test_split_token_becomes_single_marker(runs) -> None:
    document = _load(build_docx([runs]))

    count = rewrite_document(document)
    text = _all_text(document)

    assert count == 1
    assert "{%signature1}" not in text
    assert text.count(MARKER_A) == 1


def test_run_formatting_and_surrounding_text_survive() -> None:
    document = _load(build_docx([["Megrendelő: ", "{%signa", "ture2}", " (ügyfél)"]]))
    rewrite_document(document)

    paragraph = next(iter_paragraph_elements(document))
    assert paragraph_text(paragraph_spans(paragraph)) == f"Megrendelő: {MARKER_B} (ügyfél)"


def test_header_and_footer_tokens_are_rewritten() -> None:
    document = _load(build_docx(["Törzs"], header=["{%signature}"], footer=[["{%signature", "2}"]]))

    assert rewrite_document(document) == 2
    text = _all_text(document)
    assert MARKER_SINGLE in text
    assert MARKER_B in text


def test_rewrite_is_idempotent() -> None:
    document = _load(build_docx([["{%sig", "nature1}"], "{%signature2} és {%signature2}"]))

    assert rewrite_document(document) == 3
    first_pass = _all_text(document)
    assert rewrite_document(document) == 0
    assert _all_text(document) == first_pass


def test_partial_token_is_left_alone() -> None:
    document = _load(build_docx(["{%signature3}", "{%signatu"]))

    assert rewrite_document(document) == 0
    assert _all_text(document) == "{%signature3}\n{%signatu"


def test_detect_signature_requirements() -> None:
    assert detect_signature_requirements(build_docx([["{%signa", "ture1}"]])) == (True, False)
    assert detect_signature_requirements(build_docx(["x"], footer=["{%signature2}"])) == (False, True)
    assert detect_signature_requirements(build_docx(["{%signature}"])) == (True, False)
    assert detect_signature_requirements(build_docx(["nincs aláírás"])) == (False, False)
    assert detect_signature_requirements(b"not a zip") == (True, True)


def test_detect_signature_requirements_needs_the_whole_tag() -> None:
    prose = build_docx(["A signature1 mező és a signature10 azonosító nem címke.", "{signature2}"])
    assert detect_signature_requirements(prose) == (False, False)
    assert detect_signature_requirements(build_docx(["Aláírás: {%signature2} alatt"])) == (False, True)


def test_marker_role_mapping() -> None:
    assert markers_for_roles([SignerRole.A]) == [MARKER_SINGLE, MARKER_A]
    assert role_for_marker(MARKER_B) == SignerRole.B
    assert role_for_marker("ISMERETLEN") is None
    for marker in (MARKER_SINGLE, MARKER_A, MARKER_B):
        assert not set("{}%") & set(marker)
