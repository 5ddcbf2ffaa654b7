"""Tests for Parser service."""

from datetime import datetime, timedelta

import pytest
from cryptography import x509
from cryptography.hazmat.primitives.asymmetric import rsa

from caledger.models.ca import Subject
from caledger.services.parser_service import CertificateParser


@pytest.mark.unit
class TestCSRParsing:
    """Test CSR parsing functionality."""

    def test_parse_valid_csr(self, csr_factory):
        """Test parsing a valid CSR."""
        csr = CertificateParser.parse_csr(
            csr_factory(
                common_name="csr-test.example.com",
                organization="Test Org",
                sans=("csr-test.example.com", "*.csr-test.example.com", "10.0.0.1"),
                key_usage=("digitalSignature", "keyAgreement"),
                extended_key_usage=("serverAuth", "1.3.6.1.4.1.99999.1"),
            )
        )

        assert csr.subject.common_name == "csr-test.example.com"
        assert csr.subject.organization == "Test Org"
        assert csr.sans == ("csr-test.example.com", "*.csr-test.example.com", "10.0.0.1")
        assert csr.extensions.key_usage == ("digitalSignature", "keyAgreement")
        assert csr.extensions.extended_key_usage == ("serverAuth", "1.3.6.1.4.1.99999.1")
        assert csr.extensions.basic_constraints is None
        assert csr.public_key_algorithm == "ECDSA"
        assert csr.public_key_size == 256
        assert csr.signature_valid is True
        assert csr.requests_ca is False

    def test_parse_ca_csr(self, csr_factory):
        csr = CertificateParser.parse_csr(csr_factory(common_name="Sub CA", ca=True, path_length=2))

        assert csr.requests_ca is True
        assert csr.extensions.basic_constraints.path_length == 2

    def test_parse_rsa_csr(self, csr_factory):
        key = rsa.generate_private_key(public_exponent=65537, key_size=2048)

        csr = CertificateParser.parse_csr(csr_factory(private_key=key))

        assert csr.public_key_algorithm == "RSA"
        assert csr.public_key_size == 2048

    def test_unknown_extension_listed_as_other(self, csr_factory):
        csr = CertificateParser.parse_csr(csr_factory(extra_extensions=(x509.OCSPNoCheck(),)))

        assert csr.extensions.other == ("1.3.6.1.5.5.7.48.1.5",)

    def test_unsupported_sans_are_kept_apart(self, csr_factory):
        csr = CertificateParser.parse_csr(
            csr_factory(
                common_name="svc.example.org",
                sans=(
                    x509.DNSName("svc.example.org"),
                    x509.RFC822Name("ops@example.org"),
                    x509.DNSName("10.0.0.1"),
                ),
            )
        )

        assert csr.sans == ("svc.example.org",)
        assert csr.unsupported_sans == ("RFC822Name:ops@example.org", "DNSName:10.0.0.1")

    def test_parse_invalid_csr_fails(self):
        with pytest.raises(ValueError, match="Failed to parse CSR"):
            CertificateParser.parse_csr("not a csr")


@pytest.mark.unit
class TestCertificateParser:
    """Test certificate parser functionality."""

    def test_parse_invalid_certificate_fails(self):
        with pytest.raises(ValueError, match="Failed to parse certificate"):
            CertificateParser.parse_certificate_pem("-----BEGIN CERTIFICATE-----\nAAAA\n-----END CERTIFICATE-----\n")

    def test_subject_name_round_trip(self):
        subject = Subject(
            common_name="Round Trip",
            organization="ACME, Inc.",
            organizational_unit="PKI",
            country="DE",
            state="Hessen",
            locality="Frankfurt",
        )

        assert CertificateParser.subject_from_name(CertificateParser.subject_to_name(subject)) == subject

    def test_distinguished_name_escaping(self):
        subject = Subject(common_name="Round Trip", organization="ACME, Inc.")

        assert subject.distinguished_name == "CN=Round Trip,O=ACME\\, Inc."

    def test_missing_common_name_is_empty(self):
        name = x509.Name([x509.NameAttribute(x509.NameOID.ORGANIZATION_NAME, "Only Org")])

        assert CertificateParser.subject_from_name(name).common_name == ""


@pytest.mark.unit
class TestValidityStatus:
    """Test validity status calculation."""

    def test_valid_certificate(self):
        now = datetime.now()

        status_class, status_text = CertificateParser.get_validity_status(
            now - timedelta(days=1), now + timedelta(days=365)
        )

        assert status_class == "success"
        assert status_text == "Valid"

    def test_expiring_soon(self):
        now = datetime.now()

        status_class, status_text = CertificateParser.get_validity_status(
            now - timedelta(days=1), now + timedelta(days=10)
        )

        assert status_class == "warning"
        assert "Expires in" in status_text

    def test_expired(self):
        now = datetime.now()

        status_class, status_text = CertificateParser.get_validity_status(
            now - timedelta(days=30), now - timedelta(days=1)
        )

        assert status_class == "danger"
        assert status_text == "Expired"

    def test_not_yet_valid(self):
        now = datetime.now()

        status_class, _ = CertificateParser.get_validity_status(now + timedelta(days=1), now + timedelta(days=30))

        assert status_class == "warning"
