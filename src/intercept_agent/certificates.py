"""Trust material - the proxy CA certificate and the fingerprints derived from it."""

from __future__ import annotations

import base64
import hashlib
from dataclasses import dataclass
from pathlib import Path

from cryptography import x509
from cryptography.hazmat.primitives import serialization

from intercept_agent.errors import cert_not_found_error


def parse_cert(pem: str) -> x509.Certificate:
    return x509.load_pem_x509_certificate(pem.encode())


def spki_fingerprint(cert: x509.Certificate) -> str:
    """Base64 SHA-256 of the SubjectPublicKeyInfo, as used by SPKI pin lists."""
    spki = cert.public_key().public_bytes(
        serialization.Encoding.DER,
        serialization.PublicFormat.SubjectPublicKeyInfo,
    )
    return base64.b64encode(hashlib.sha256(spki).digest()).decode()


def subject_hash(cert: x509.Certificate) -> str:
    """OpenSSL's legacy subject hash (``-subject_hash_old``).

    Android names system CA files ``<hash>.0`` using this value: the first
    four bytes of the MD5 of the DER subject, read little-endian.
    """
    digest = hashlib.md5(cert.subject.public_bytes()).digest()
    return f"{int.from_bytes(digest[:4], 'little'):08x}"


def content_fingerprint(cert: x509.Certificate) -> str:
    """Hex SHA-256 over the whole certificate DER."""
    return hashlib.sha256(cert.public_bytes(serialization.Encoding.DER)).hexdigest()


@dataclass(frozen=True)
class TrustMaterial:
    """CA certificate content plus everything the activation flows derive from it."""

    pem: str
    spki_fingerprint: str
    subject_hash: str
    fingerprint: str
    path: Path | None = None

    @classmethod
    def from_pem(cls, pem: str, path: Path | None = None) -> TrustMaterial:
        cert = parse_cert(pem)
        return cls(
            pem=pem,
            spki_fingerprint=spki_fingerprint(cert),
            subject_hash=subject_hash(cert),
            fingerprint=content_fingerprint(cert),
            path=path,
        )

    @classmethod
    def load(cls, path: Path) -> TrustMaterial:
        """Read and derive trust material from a PEM file."""
        if not path.is_file():
            raise cert_not_found_error(str(path))
        return cls.from_pem(path.read_text(encoding="utf-8"), path=path)

    @property
    def newline_encoded_pem(self) -> str:
        """PEM with every line ending replaced by a literal ``\\n`` token."""
        return self.pem.replace("\r\n", "\\n").replace("\r", "\\n").replace("\n", "\\n")
