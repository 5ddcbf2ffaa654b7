"""Tests for the cryptography capability provider."""

from datetime import datetime, timedelta, timezone

import pytest

from caledger.exceptions import ProviderError
from caledger.models.ca import Subject
from caledger.models.certificate import BasicConstraints, Extensions
from caledger.models.issuance import KeyHandle, TBSCertificate, Validity
from caledger.services.parser_service import CertificateParser


def one_year():
    now = datetime.now(timezone.utc).replace(microsecond=0)
    return Validity(not_before=now, not_after=now + timedelta(days=365))


@pytest.mark.unit
class TestKeyGeneration:
    """Test keypair generation."""

    def test_generate_ecdsa(self, provider):
        key = provider.generate_keypair("ECDSA", 384)

        assert key.algorithm == "ECDSA"
        assert "PUBLIC KEY" in key.public_key_pem

    def test_generate_rsa_default_size(self, provider):
        key = provider.generate_keypair("RSA")

        assert key.algorithm == "RSA"

    def test_rsa_too_small(self, provider):
        with pytest.raises(ProviderError, match="at least 2048"):
            provider.generate_keypair("RSA", 1024)

    def test_unsupported_curve(self, provider):
        with pytest.raises(ProviderError, match="curve"):
            provider.generate_keypair("ECDSA", 192)

    def test_unsupported_algorithm(self, provider):
        with pytest.raises(ProviderError, match="Unsupported key algorithm"):
            provider.generate_keypair("DSA")

    def test_unknown_handle(self, provider):
        with pytest.raises(ProviderError, match="Key unavailable"):
            provider.export_private_key(KeyHandle(key_id="nope", algorithm="ECDSA"), "password")


@pytest.mark.unit
class TestDigest:
    """Test hashing."""

    def test_sha256(self, provider):
        assert len(provider.digest(b"ledger")) == 32

    def test_sha384_alias(self, provider):
        assert len(provider.digest(b"ledger", "SHA-384")) == 48

    def test_unsupported_digest(self, provider):
        with pytest.raises(ProviderError, match="Unsupported digest"):
            provider.digest(b"ledger", "md5")


@pytest.mark.unit
class TestSigning:
    """Test certificate and CSR signing."""

    def test_self_sign_defaults_to_ca(self, provider):
        key = provider.generate_keypair("ECDSA", 256)

        cert = provider.self_sign(Subject(common_name="Provider Root"), key, one_year(), serial_number=42)

        assert cert.serial_number == 42
        assert cert.is_ca
        assert cert.is_self_signed
        assert "keyCertSign" in cert.extensions.key_usage
        assert cert.signature_algorithm == "sha256"

    def test_self_sign_ed25519(self, provider):
        key = provider.generate_keypair("Ed25519")

        cert = provider.self_sign(Subject(common_name="Edwards Root"), key, one_year(), serial_number=7)

        assert cert.signature_algorithm == "ed25519"

    def test_sign_tbs(self, provider):
        issuer_key = provider.generate_keypair("ECDSA", 256)
        issuer = provider.self_sign(Subject(common_name="Issuer"), issuer_key, one_year(), serial_number=1)
        subject_key = provider.generate_keypair("ECDSA", 256)
        tbs = TBSCertificate(
            serial_number=2,
            subject=Subject(common_name="leaf.example.org"),
            issuer=issuer.subject,
            sans=("leaf.example.org", "192.0.2.10"),
            public_key_pem=subject_key.public_key_pem,
            validity=one_year(),
            extensions=Extensions(
                key_usage=("digitalSignature",),
                extended_key_usage=("serverAuth",),
                basic_constraints=BasicConstraints(ca=False),
            ),
            signature_digest="sha384",
        )

        signature = provider.sign(tbs, issuer_key)
        cert = CertificateParser.parse_certificate_pem(signature.certificate_pem)

        assert signature.algorithm == "sha384"
        assert cert.serial_number == 2
        assert cert.issuer.common_name == "Issuer"
        assert cert.sans == ("leaf.example.org", "192.0.2.10")
        assert cert.extensions.extended_key_usage == ("serverAuth",)
        assert cert.is_ca is False

    def test_unknown_key_usage(self, provider):
        key = provider.generate_keypair("ECDSA", 256)

        with pytest.raises(ProviderError, match="Unknown key usage"):
            provider.self_sign(
                Subject(common_name="Bad Usage"),
                key,
                one_year(),
                serial_number=3,
                extensions=Extensions(key_usage=("signEverything",)),
            )

    def test_create_csr(self, provider):
        key = provider.generate_keypair("ECDSA", 256)

        csr_pem = provider.create_csr(
            Subject(common_name="Sub CA", organization="Test Org"),
            key,
            extensions=Extensions(basic_constraints=BasicConstraints(ca=True, path_length=1)),
        )
        csr = CertificateParser.parse_csr(csr_pem)

        assert csr.subject.organization == "Test Org"
        assert csr.requests_ca
        assert csr.extensions.basic_constraints.path_length == 1
        assert csr.signature_valid


@pytest.mark.unit
class TestKeyFiles:
    """Test encrypted key export and lazy loading."""

    def test_export_and_load(self, provider, data_dir):
        key = provider.generate_keypair("ECDSA", 256)
        key_path = data_dir / "ca.key"
        key_path.write_text(provider.export_private_key(key, "secret_password"))

        loaded = provider.load_private_key(key_path, "secret_password")
        cert = provider.self_sign(Subject(common_name="Reloaded"), loaded, one_year(), serial_number=5)

        assert cert.public_key_pem == key.public_key_pem

    def test_wrong_password_fails_on_use(self, provider, data_dir):
        key = provider.generate_keypair("ECDSA", 256)
        key_path = data_dir / "ca.key"
        key_path.write_text(provider.export_private_key(key, "secret_password"))

        loaded = provider.load_private_key(key_path, "wrong_password")

        with pytest.raises(ProviderError, match="Cannot load key"):
            provider.self_sign(Subject(common_name="Locked"), loaded, one_year(), serial_number=6)

    def test_missing_file_fails_on_use(self, provider, data_dir):
        loaded = provider.load_private_key(data_dir / "missing.key", "password")

        with pytest.raises(ProviderError, match="Cannot load key"):
            provider.export_private_key(loaded, "password")
