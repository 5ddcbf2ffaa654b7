"""Pytest configuration and shared fixtures."""

import ipaddress
import shutil
import tempfile
from pathlib import Path

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import NameOID
from fastapi.testclient import TestClient

from caledger.models.ca import CACreateRequest, CARole, CAType, ECDSACurve, KeyAlgorithm, KeyConfig, Subject
from caledger.models.certificate import EKU_OIDS
from caledger.models.config import AppConfig, IssuanceSettings
from caledger.services.authority import Authority
from caledger.services.ca_service import CAService
from caledger.services.cert_service import CertificateService
from caledger.services.issuance_service import IssuanceEngine
from caledger.services.ledger_service import SerialLedger
from caledger.services.provider_service import CryptographyProvider
from caledger.services.store_service import CertificateStore

ROOT_PASSWORD = "root_password_123"
INTERMEDIATE_PASSWORD = "intermediate_password_123"

_KEY_USAGE_ARGS = {
    "digitalSignature": "digital_signature",
    "nonRepudiation": "content_commitment",
    "keyEncipherment": "key_encipherment",
    "dataEncipherment": "data_encipherment",
    "keyAgreement": "key_agreement",
    "keyCertSign": "key_cert_sign",
    "cRLSign": "crl_sign",
}


def build_csr(
    common_name="test.example.org",
    sans=(),
    key_usage=(),
    extended_key_usage=(),
    ca=None,
    path_length=None,
    extra_extensions=(),
    organization=None,
    private_key=None,
    name=None,
):
    """
    Build a PEM CSR the way an external requester would.

    name replaces the CN/O subject; SAN entries may be x509.GeneralName objects.
    """
    private_key = private_key or ec.generate_private_key(ec.SECP256R1())

    attributes = []
    if organization:
        attributes.append(x509.NameAttribute(NameOID.ORGANIZATION_NAME, organization))
    if common_name:
        attributes.append(x509.NameAttribute(NameOID.COMMON_NAME, common_name))
    builder = x509.CertificateSigningRequestBuilder().subject_name(name or x509.Name(attributes))

    if sans:
        names = []
        for san in sans:
            if isinstance(san, x509.GeneralName):
                names.append(san)
                continue
            try:
                names.append(x509.IPAddress(ipaddress.ip_address(san)))
            except ValueError:
                names.append(x509.DNSName(san))
        builder = builder.add_extension(x509.SubjectAlternativeName(names), critical=False)

    if key_usage:
        flags = {arg: False for arg in _KEY_USAGE_ARGS.values()}
        for usage in key_usage:
            flags[_KEY_USAGE_ARGS[usage]] = True
        builder = builder.add_extension(x509.KeyUsage(encipher_only=False, decipher_only=False, **flags), critical=True)

    if extended_key_usage:
        oids = [x509.ObjectIdentifier(EKU_OIDS.get(eku, eku)) for eku in extended_key_usage]
        builder = builder.add_extension(x509.ExtendedKeyUsage(oids), critical=False)

    if ca is not None:
        builder = builder.add_extension(
            x509.BasicConstraints(ca=ca, path_length=path_length if ca else None), critical=True
        )

    for extension in extra_extensions:
        builder = builder.add_extension(extension, critical=False)

    csr = builder.sign(private_key, hashes.SHA256())
    return csr.public_bytes(serialization.Encoding.PEM).decode("utf-8")


@pytest.fixture(scope="session")
def test_data_dir():
    """Create a temporary directory for test data."""
    temp_dir = tempfile.mkdtemp(prefix="caledger_test_")
    yield Path(temp_dir)
    # Cleanup
    shutil.rmtree(temp_dir, ignore_errors=True)


@pytest.fixture
def data_dir(test_data_dir):
    """Create a fresh CA data directory for each test."""
    path = Path(tempfile.mkdtemp(prefix="ca_data_", dir=test_data_dir))
    yield path
    # Cleanup after test
    shutil.rmtree(path, ignore_errors=True)


@pytest.fixture
def csr_factory():
    """Factory for PEM CSRs with ECDSA P-256 keys."""
    return build_csr


@pytest.fixture
def app_config():
    """Default configuration with a short signing timeout."""
    return AppConfig(issuance=IssuanceSettings(signing_timeout_seconds=10.0, max_workers=4))


@pytest.fixture
def provider():
    """Create capability provider instance."""
    return CryptographyProvider()


@pytest.fixture
def ledger(data_dir):
    """Open serial ledger in the test directory."""
    serial_ledger = SerialLedger(data_dir / "ledger").open()
    yield serial_ledger
    if serial_ledger.is_open:
        serial_ledger.close()


@pytest.fixture
def store(data_dir):
    """Open certificate store in the test directory."""
    certificate_store = CertificateStore(data_dir).open()
    yield certificate_store
    certificate_store.close()


@pytest.fixture
def engine(ledger, store, provider):
    """Issuance engine over the test ledger and store."""
    issuance_engine = IssuanceEngine(ledger, store, provider, signing_timeout=10.0, max_workers=4)
    yield issuance_engine
    issuance_engine.close()


@pytest.fixture
def authority(data_dir, app_config):
    """Open CA instance in the test directory."""
    with Authority(data_dir, app_config) as ca_instance:
        yield ca_instance


@pytest.fixture
def ca_service(authority):
    """Create CA service instance with test directory."""
    return CAService(authority)


@pytest.fixture
def cert_service(ca_service):
    """Create Certificate service instance with test directory."""
    return CertificateService(ca_service)


@pytest.fixture
def sample_ca_subject():
    """Create a sample CA subject."""
    return Subject(
        common_name="Test Root CA",
        organization="Test Organization",
        organizational_unit="Test Unit",
        country="US",
        state="California",
        locality="San Francisco",
    )


@pytest.fixture
def sample_key_config():
    """ECDSA P-256 keeps key generation fast."""
    return KeyConfig(algorithm=KeyAlgorithm.ECDSA, curve=ECDSACurve.P256)


@pytest.fixture
def sample_root_ca_request(sample_ca_subject, sample_key_config):
    """Create a sample Root CA creation request."""
    return CACreateRequest(
        type=CAType.ROOT_CA,
        subject=sample_ca_subject,
        key_config=sample_key_config,
        key_password=ROOT_PASSWORD,
        validity_days=3650,
    )


@pytest.fixture
def created_root_ca(ca_service, sample_root_ca_request):
    """Create a test Root CA and return its response."""
    return ca_service.create_root_ca(sample_root_ca_request)


@pytest.fixture
def created_intermediate_ca(ca_service, created_root_ca, sample_key_config):
    """Create a leaf-signing Intermediate CA under the root CA."""
    request = CACreateRequest(
        type=CAType.INTERMEDIATE_CA,
        subject=Subject(common_name="Test Intermediate CA", organization="Test Organization", country="US"),
        key_config=sample_key_config,
        key_password=INTERMEDIATE_PASSWORD,
        validity_days=1825,
        role=CARole.LEAF_SIGNER,
        parent_ca_id=created_root_ca.id,
        parent_ca_password=ROOT_PASSWORD,
    )
    return ca_service.create_intermediate_ca(request, created_root_ca.id)


@pytest.fixture
def client(data_dir, app_config):
    """Create FastAPI test client with an isolated CA instance."""
    from caledger.api.dependencies import get_ca_service, get_cert_service
    from main import app

    ca_instance = Authority(data_dir, app_config).open()

    def override_ca_service():
        return CAService(ca_instance)

    def override_cert_service():
        return CertificateService(override_ca_service())

    app.dependency_overrides[get_ca_service] = override_ca_service
    app.dependency_overrides[get_cert_service] = override_cert_service

    client = TestClient(app)
    yield client

    # Clean up
    app.dependency_overrides.clear()
    ca_instance.close()
