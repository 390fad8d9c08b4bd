"""
Short-lived self-signed identities for advanced electronic signatures.

Every signing call gets a fresh RSA key and a certificate naming the signer.
Nothing here is persisted; only the certificate PEM and its fingerprint end up
in the signature record.
"""

from __future__ import annotations

import hashlib
import logging
import secrets
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.hazmat.primitives.serialization import pkcs12
from cryptography.x509.oid import ExtendedKeyUsageOID, NameOID

from contractsign.core.errors import SigningError
from contractsign.core.logging_setup import get_logger


@dataclass
class EphemeralIdentity:
    private_key: rsa.RSAPrivateKey
    certificate: x509.Certificate
    pkcs12_container: bytes
    pkcs12_password: Optional[bytes] = None

    @property
    def certificate_pem(self) -> str:
        return self.certificate.public_bytes(serialization.Encoding.PEM).decode("ascii")

    @property
    def fingerprint(self) -> str:
        return self.certificate.fingerprint(hashes.SHA256()).hex()

    @property
    def not_valid_before(self) -> datetime:
        return self.certificate.not_valid_before_utc

    @property
    def not_valid_after(self) -> datetime:
        return self.certificate.not_valid_after_utc


def add_one_year(moment: datetime) -> datetime:
    try:
        return moment.replace(year=moment.year + 1)
    except ValueError:
        # 29 February
        return moment.replace(year=moment.year + 1, day=28)


def generate_serial_number() -> int:
    return int(f"{int(time.time() * 1000):x}{secrets.token_hex(8)}", 16)


def load_certificate(pem: str | bytes) -> x509.Certificate:
    data = pem.encode("ascii") if isinstance(pem, str) else pem
    return x509.load_pem_x509_certificate(data)


def certificate_fingerprint(pem: str | bytes) -> str:
    """Lowercase SHA-256 hex digest of the certificate's DER encoding."""
    return load_certificate(pem).fingerprint(hashes.SHA256()).hex()


def certificate_validity(pem: str | bytes) -> tuple[datetime, datetime]:
    certificate = load_certificate(pem)
    return certificate.not_valid_before_utc, certificate.not_valid_after_utc


def compute_document_hash(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


class CertificateIssuer:
    def __init__(
        self,
        *,
        key_size: int = 2048,
        country: str = "HU",
        pkcs12_password: str = "",
        logger: logging.Logger | None = None,
    ) -> None:
        self.key_size = key_size
        self.country = country
        self.pkcs12_password = pkcs12_password.encode("utf-8") if pkcs12_password else None
        self.logger = logger or get_logger("certificates")

    @classmethod
    def from_settings(cls, settings, *, logger: logging.Logger | None = None) -> "CertificateIssuer":  # type: ignore[no-untyped-def]
        return cls(
            key_size=settings.certificate_key_size,
            country=settings.certificate_country,
            pkcs12_password=settings.certificate_p12_password,
            logger=logger,
        )

    def _subject(self, signer_name: str, signer_email: str, org_name: Optional[str]) -> x509.Name:
        attributes = [
            x509.NameAttribute(NameOID.COMMON_NAME, signer_name),
            x509.NameAttribute(NameOID.EMAIL_ADDRESS, signer_email),
        ]
        if org_name:
            attributes.append(x509.NameAttribute(NameOID.ORGANIZATION_NAME, org_name))
        attributes.append(x509.NameAttribute(NameOID.COUNTRY_NAME, self.country))
        return x509.Name(attributes)

    def issue(
        self,
        signer_name: str,
        signer_email: str,
        org_name: Optional[str] = None,
        *,
        now: Optional[datetime] = None,
    ) -> EphemeralIdentity:
        """Self-signed signing certificate valid for one year from ``now``."""
        if not signer_name or not signer_email:
            raise SigningError("Signer name and email are required for the certificate")

        now = now or datetime.now(timezone.utc)
        if now.tzinfo is None:
            now = now.replace(tzinfo=timezone.utc)

        try:
            private_key = rsa.generate_private_key(public_exponent=65537, key_size=self.key_size)
            name = self._subject(signer_name, signer_email, org_name)
            certificate = (
                x509.CertificateBuilder()
                .subject_name(name)
                .issuer_name(name)
                .public_key(private_key.public_key())
                .serial_number(generate_serial_number())
                .not_valid_before(now)
                .not_valid_after(add_one_year(now))
                .add_extension(x509.BasicConstraints(ca=False, path_length=None), critical=True)
                .add_extension(
                    x509.KeyUsage(
                        digital_signature=True,
                        content_commitment=True,
                        key_encipherment=False,
                        data_encipherment=False,
                        key_agreement=False,
                        key_cert_sign=False,
                        crl_sign=False,
                        encipher_only=False,
                        decipher_only=False,
                    ),
                    critical=True,
                )
                .add_extension(x509.ExtendedKeyUsage([ExtendedKeyUsageOID.EMAIL_PROTECTION]), critical=False)
                .add_extension(x509.SubjectAlternativeName([x509.RFC822Name(signer_email)]), critical=False)
                .sign(private_key, hashes.SHA256())
            )
            encryption = (
                serialization.BestAvailableEncryption(self.pkcs12_password)
                if self.pkcs12_password
                else serialization.NoEncryption()
            )
            container = pkcs12.serialize_key_and_certificates(
                name=signer_name.encode("utf-8"),
                key=private_key,
                cert=certificate,
                cas=None,
                encryption_algorithm=encryption,
            )
        except ValueError as exc:
            raise SigningError(f"Certificate generation failed: {exc}") from exc

        identity = EphemeralIdentity(
            private_key=private_key,
            certificate=certificate,
            pkcs12_container=container,
            pkcs12_password=self.pkcs12_password,
        )
        self.logger.info(
            "Issued signing certificate for %s <%s> (serial %x, fingerprint %s)",
            signer_name,
            signer_email,
            certificate.serial_number,
            identity.fingerprint,
        )
        return identity
