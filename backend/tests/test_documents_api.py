from uuid import uuid4

from fastapi import status
from fastapi.testclient import TestClient

from contractsign.core.config import settings
from contractsign.core.errors import ConversionError
from contractsign.services.converter import DocumentConverter

from tests.conftest import PROJECT, signature_data_url

API = f"{settings.api_v1_str}/documents"


def _generate(client: TestClient, template) -> dict:
    response = client.post(f"{API}/generate", json={"template_id": str(template.id), "project": PROJECT})
    assert response.status_code == status.HTTP_201_CREATED, response.json()
    return response.json()


def test_generate_fetch_and_download(client: TestClient, make_template) -> None:
    template = make_template(["Megrendelő: {client_name}", "{%signature1}", "{%signature2}"])

    created = _generate(client, template)
    assert created["requires_signature_a"] is True
    assert created["requires_signature_b"] is True
    assert created["status"] == "unsigned"

    detail = client.get(f"{API}/{created['id']}")
    assert detail.status_code == status.HTTP_200_OK
    assert detail.json()["file_name"] == created["file_name"]

    download = client.get(f"{API}/{created['id']}/file")
    assert download.status_code == status.HTTP_200_OK
    assert download.headers["content-type"] == "application/pdf"
    assert download.content.startswith(b"%PDF")


def test_sign_and_verify_over_http(client: TestClient, make_template) -> None:
    template = make_template(["{%signature1}", "{%signature2}"])
    created = _generate(client, template)

    response = client.post(
        f"{API}/sign-pades",
        json={
            "document_id": created["id"],
            "signer_role": "a",
            "signer_name": "Szabó Péter",
            "signer_email": "peter@example.com",
            "company_name": "Szigetelő Kft.",
            "visual_signature": signature_data_url(),
        },
    )
    assert response.status_code == status.HTTP_200_OK, response.json()
    body = response.json()
    assert body["status"] == "partially_signed"
    assert body["digital_signatures"][0]["signer_role"] == "a"

    duplicate = client.post(
        f"{API}/sign-pades",
        json={
            "document_id": created["id"],
            "signer_role": "a",
            "signer_name": "Szabó Péter",
            "signer_email": "peter@example.com",
        },
    )
    assert duplicate.status_code == status.HTTP_400_BAD_REQUEST

    verification = client.get(f"{API}/{created['id']}/verify-signatures")
    assert verification.status_code == status.HTTP_200_OK
    assert verification.json()["document_status"] == "partially_signed"
    assert verification.json()["valid"] is False


def test_role_not_required_is_bad_request(client: TestClient, make_template) -> None:
    template = make_template(["{%signature1}"])
    created = _generate(client, template)

    response = client.post(
        f"{API}/sign-pades",
        json={
            "document_id": created["id"],
            "signer_role": "b",
            "signer_name": "Kovács Anna",
            "signer_email": "anna@example.com",
        },
    )
    assert response.status_code == status.HTTP_400_BAD_REQUEST
    assert "does not require" in response.json()["detail"]


def test_regenerate_with_signature(client: TestClient, make_template) -> None:
    template = make_template(["{%signature}"])
    created = _generate(client, template)

    response = client.post(
        f"{API}/regenerate-with-signature",
        json={"document_id": created["id"], "signature_data": signature_data_url()},
    )
    assert response.status_code == status.HTTP_200_OK
    assert response.json()["signed"] is True
    assert response.json()["signature_version"] == "legacy_visual"


def test_not_found_and_render_errors(client: TestClient, make_template) -> None:
    missing = uuid4()
    response = client.post(f"{API}/generate", json={"template_id": str(missing), "project": PROJECT})
    assert response.status_code == status.HTTP_404_NOT_FOUND
    assert str(missing) in response.json()["detail"]

    assert client.get(f"{API}/{uuid4()}").status_code == status.HTTP_404_NOT_FOUND
    assert client.get(f"{API}/{uuid4()}/verify-signatures").status_code == status.HTTP_404_NOT_FOUND

    broken = make_template(["{client_name"])
    response = client.post(f"{API}/generate", json={"template_id": str(broken.id), "project": PROJECT})
    assert response.status_code == status.HTTP_400_BAD_REQUEST
    assert "Unclosed tag" in response.json()["detail"]


def test_conversion_failure_is_bad_gateway(client: TestClient, make_template, monkeypatch) -> None:
    def fail(self, docx_bytes, *, archival=None):
        raise ConversionError("No document converter available. Install LibreOffice (soffice) on the server.")

    monkeypatch.setattr(DocumentConverter, "convert", fail)
    template = make_template(["{%signature1}"])

    response = client.post(f"{API}/generate", json={"template_id": str(template.id), "project": PROJECT})
    assert response.status_code == status.HTTP_502_BAD_GATEWAY
    assert "LibreOffice" in response.json()["detail"]


def test_health(client: TestClient) -> None:
    assert client.get("/health/live").json() == {"status": "ok"}
    assert client.get("/health/ready").json() == {"status": "ready"}
