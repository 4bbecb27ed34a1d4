"""Pytest configuration and fixtures."""

from __future__ import annotations

import datetime
from pathlib import Path

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.x509.oid import NameOID

from intercept_agent.certificates import TrustMaterial
from intercept_agent.config import AgentConfig, AttachSettings, TunnelSettings


def _self_signed_ca_pem(common_name: str = "Intercept Test CA") -> str:
    key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    name = x509.Name(
        [
            x509.NameAttribute(NameOID.COMMON_NAME, common_name),
            x509.NameAttribute(NameOID.ORGANIZATION_NAME, "Intercept Agent Tests"),
        ]
    )
    now = datetime.datetime.now(datetime.timezone.utc)
    cert = (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - datetime.timedelta(days=1))
        .not_valid_after(now + datetime.timedelta(days=365))
        .add_extension(x509.BasicConstraints(ca=True, path_length=None), critical=True)
        .sign(key, hashes.SHA256())
    )
    return cert.public_bytes(serialization.Encoding.PEM).decode()


@pytest.fixture(scope="session")
def ca_pem() -> str:
    """Self-signed CA certificate in PEM form."""
    return _self_signed_ca_pem()


@pytest.fixture
def cert_file(tmp_path: Path, ca_pem: str) -> Path:
    path = tmp_path / "ca.pem"
    path.write_text(ca_pem, encoding="utf-8")
    return path


@pytest.fixture
def trust(cert_file: Path) -> TrustMaterial:
    return TrustMaterial.load(cert_file)


@pytest.fixture
def config(tmp_path: Path, cert_file: Path) -> AgentConfig:
    """Config with zero delays so retry and health-check loops run instantly."""
    return AgentConfig(
        cert_path=cert_file,
        state_dir=tmp_path / "state",
        apk_url="https://example.invalid/companion.apk",
        tunnel=TunnelSettings(
            check_interval=0,
            give_up_after=5,
            intent_retries=10,
            intent_retry_delay=0,
            install_settle_delay=0,
        ),
        attach=AttachSettings(retries=10, retry_delay=0, pause_timeout=1.0, shutdown_timeout=0.2),
    )
