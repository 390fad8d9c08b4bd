from datetime import datetime, timezone

import pytest
from cryptography import x509
from cryptography.hazmat.primitives.serialization import pkcs12
from cryptography.x509.oid import ExtendedKeyUsageOID, NameOID

from contractsign.core.errors import SigningError
from contractsign.services.certificates import (
    CertificateIssuer,
    add_one_year,
    certificate_fingerprint,
    certificate_validity,
    compute_document_hash,
)


@pytest.fixture(scope="module")
def identity():
    issuer = CertificateIssuer()
    return issuer.issue(
        "Kovács Anna",
        "anna@example.com",
        "Szigetelő Kft.",
        now=datetime(2025, 3, 7, 12, 0, tzinfo=timezone.utc),
    )


def test_subject_and_issuer_name_the_signer(identity) -> None:
    certificate = identity.certificate
    assert certificate.subject == certificate.issuer
    assert certificate.subject.get_attributes_for_oid(NameOID.COMMON_NAME)[0].value == "Kovács Anna"
    assert certificate.subject.get_attributes_for_oid(NameOID.EMAIL_ADDRESS)[0].value == "anna@example.com"
    assert certificate.subject.get_attributes_for_oid(NameOID.ORGANIZATION_NAME)[0].value == "Szigetelő Kft."
    assert certificate.subject.get_attributes_for_oid(NameOID.COUNTRY_NAME)[0].value == "HU"


def test_validity_is_one_calendar_year(identity) -> None:
    assert identity.not_valid_before == datetime(2025, 3, 7, 12, 0, tzinfo=timezone.utc)
    assert identity.not_valid_after == datetime(2026, 3, 7, 12, 0, tzinfo=timezone.utc)
    assert add_one_year(datetime(2024, 2, 29)) == datetime(2025, 2, 28)


def test_extensions(identity) -> None:
    extensions = identity.certificate.extensions
    basic = extensions.get_extension_for_class(x509.BasicConstraints)
    assert basic.critical and basic.value.ca is False

    usage = extensions.get_extension_for_class(x509.KeyUsage)
    assert usage.critical
    assert usage.value.digital_signature and usage.value.content_commitment

    eku = extensions.get_extension_for_class(x509.ExtendedKeyUsage).value
    assert ExtendedKeyUsageOID.EMAIL_PROTECTION in eku

    san = extensions.get_extension_for_class(x509.SubjectAlternativeName).value
    assert san.get_values_for_type(x509.RFC822Name) == ["anna@example.com"]


def test_pkcs12_container_round_trips(identity) -> None:
    key, certificate, _ = pkcs12.load_key_and_certificates(identity.pkcs12_container, None)
    assert certificate == identity.certificate
    assert key is not None


def test_fingerprint_and_validity_helpers(identity) -> None:
    assert certificate_fingerprint(identity.certificate_pem) == identity.fingerprint
    assert len(identity.fingerprint) == 64
    assert certificate_validity(identity.certificate_pem) == (identity.not_valid_before, identity.not_valid_after)
    assert compute_document_hash(b"abc") == "ba7816bf8f01cfea414140de5dae2223b00361a396177a9cb410ff61f20015ad"


def test_serial_numbers_are_unique() -> None:
    issuer = CertificateIssuer()
    first = issuer.issue("A", "a@example.com")
    second = issuer.issue("A", "a@example.com")
    assert first.certificate.serial_number != second.certificate.serial_number


def test_password_protected_container() -> None:
    identity = CertificateIssuer(pkcs12_password="titok").issue("B", "b@example.com")
    with pytest.raises(ValueError):
        pkcs12.load_key_and_certificates(identity.pkcs12_container, None)
    assert pkcs12.load_key_and_certificates(identity.pkcs12_container, b"titok")[1] == identity.certificate


def test_signer_identity_is_required() -> None:
    with pytest.raises(SigningError):
        CertificateIssuer().issue("", "a@example.com")
