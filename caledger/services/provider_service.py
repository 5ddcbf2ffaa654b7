"""Key and certificate capability providers."""

import logging
import threading
import uuid
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec, ed25519, rsa

from caledger.exceptions import ProviderError
from caledger.models.ca import KeyAlgorithm, Subject
from caledger.models.certificate import BasicConstraints, Extensions, IssuedCertificate, eku_to_oid
from caledger.models.issuance import KeyHandle, Signature, TBSCertificate, Validity
from caledger.services.parser_service import CertificateParser
from caledger.utils.validators import is_ip_address, parse_ip_address

logger = logging.getLogger("caledger")

_HASHES = {
    "sha256": hashes.SHA256,
    "sha384": hashes.SHA384,
    "sha512": hashes.SHA512,
}

_CURVES = {
    256: ec.SECP256R1,
    384: ec.SECP384R1,
    521: ec.SECP521R1,
}

_KEY_USAGE_FLAGS = {
    "digitalSignature": "digital_signature",
    "nonRepudiation": "content_commitment",
    "keyEncipherment": "key_encipherment",
    "dataEncipherment": "data_encipherment",
    "keyAgreement": "key_agreement",
    "keyCertSign": "key_cert_sign",
    "cRLSign": "crl_sign",
    "encipherOnly": "encipher_only",
    "decipherOnly": "decipher_only",
}


class CapabilityProvider(ABC):
    """
    Cryptographic operations consumed by the issuance engine.

    Implementations own private key material; callers only ever see
    KeyHandle references.
    """

    @abstractmethod
    def generate_keypair(self, algorithm: str, bits: Optional[int] = None) -> KeyHandle:
        """Generate a new asymmetric keypair and return a handle to it."""

    @abstractmethod
    def self_sign(
        self,
        subject: Subject,
        key: KeyHandle,
        validity: Validity,
        serial_number: Optional[int] = None,
        extensions: Optional[Extensions] = None,
        signature_digest: str = "sha256",
    ) -> IssuedCertificate:
        """Produce a self-signed certificate for subject with key."""

    @abstractmethod
    def sign(self, tbs: TBSCertificate, issuer_key: KeyHandle) -> Signature:
        """Sign an assembled to-be-signed certificate with the issuer's key."""

    @abstractmethod
    def digest(self, data: bytes, algorithm: str = "sha256") -> bytes:
        """Hash data with the named algorithm."""

    @abstractmethod
    def create_csr(
        self,
        subject: Subject,
        key: KeyHandle,
        sans: tuple[str, ...] = (),
        extensions: Optional[Extensions] = None,
        signature_digest: str = "sha256",
    ) -> str:
        """Build a PEM PKCS#10 request signed by key."""

    @abstractmethod
    def export_private_key(self, key: KeyHandle, password: str) -> str:
        """Serialize the private key behind key as encrypted PEM."""

    @abstractmethod
    def load_private_key(self, path: Path, password: Optional[str]) -> KeyHandle:
        """Register a PEM private key file; failures surface when the key is used."""


class CryptographyProvider(CapabilityProvider):
    """Capability provider backed by the cryptography library."""

    def __init__(self):
        self._keys = {}
        self._key_files = {}
        self._lock = threading.Lock()

    def generate_keypair(self, algorithm: str, bits: Optional[int] = None) -> KeyHandle:
        """
        Generate a private key.

        Args:
            algorithm: "RSA", "ECDSA" or "Ed25519"
            bits: RSA modulus size (>= 2048) or ECDSA curve size (256, 384, 521)

        Returns:
            Handle to the in-memory key

        Raises:
            ProviderError: If the algorithm or size is unsupported
        """
        try:
            algorithm = KeyAlgorithm(algorithm)
        except ValueError:
            raise ProviderError(f"Unsupported key algorithm: {algorithm}")

        if algorithm == KeyAlgorithm.RSA:
            bits = bits or 2048
            if bits < 2048:
                raise ProviderError(f"RSA keys must be at least 2048 bits, got {bits}")
            private_key = rsa.generate_private_key(public_exponent=65537, key_size=bits)
        elif algorithm == KeyAlgorithm.ECDSA:
            curve = _CURVES.get(bits or 256)
            if curve is None:
                raise ProviderError(f"Unsupported ECDSA curve size: {bits}")
            private_key = ec.generate_private_key(curve())
        else:
            private_key = ed25519.Ed25519PrivateKey.generate()

        handle = KeyHandle(
            key_id=uuid.uuid4().hex,
            algorithm=algorithm.value,
            public_key_pem=CertificateParser._public_key_pem(private_key.public_key()),
        )
        with self._lock:
            self._keys[handle.key_id] = private_key

        logger.debug(f"Generated {algorithm.value} key {handle.key_id}")
        return handle

    def load_private_key(self, path: Path, password: Optional[str]) -> KeyHandle:
        """
        Register a key file without reading it yet.

        A missing file or wrong password is reported as ProviderError
        by the first operation that needs the key.
        """
        handle = KeyHandle(key_id=uuid.uuid4().hex, algorithm="unknown", source=str(path))
        with self._lock:
            self._key_files[handle.key_id] = (Path(path), password)
        return handle

    def export_private_key(self, key: KeyHandle, password: str) -> str:
        private_key = self._resolve(key)
        return private_key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.PKCS8,
            encryption_algorithm=serialization.BestAvailableEncryption(password.encode("utf-8")),
        ).decode("utf-8")

    def digest(self, data: bytes, algorithm: str = "sha256") -> bytes:
        h = hashes.Hash(self._hash(algorithm))
        h.update(data)
        return h.finalize()

    def sign(self, tbs: TBSCertificate, issuer_key: KeyHandle) -> Signature:
        """
        Build the X.509v3 certificate described by tbs and sign it.

        Raises:
            ProviderError: If the key is unavailable or cannot sign with the digest
        """
        private_key = self._resolve(issuer_key)
        try:
            subject_public_key = serialization.load_pem_public_key(tbs.public_key_pem.encode("utf-8"))
            subject_name = tbs.subject_name
            if subject_name is None:
                subject_name = CertificateParser.subject_to_name(tbs.subject)
            issuer_name = tbs.issuer_name
            if issuer_name is None:
                issuer_name = CertificateParser.subject_to_name(tbs.issuer)
            builder = (
                x509.CertificateBuilder()
                .subject_name(subject_name)
                .issuer_name(issuer_name)
                .public_key(subject_public_key)
                .serial_number(tbs.serial_number)
                .not_valid_before(tbs.validity.not_before)
                .not_valid_after(tbs.validity.not_after)
            )
            builder = self._add_extensions(builder, tbs.sans, tbs.extensions)
            builder = builder.add_extension(
                x509.SubjectKeyIdentifier.from_public_key(subject_public_key), critical=False
            )
            builder = builder.add_extension(
                x509.AuthorityKeyIdentifier.from_issuer_public_key(private_key.public_key()), critical=False
            )
            cert = builder.sign(private_key, self._hash_for_key(private_key, tbs.signature_digest))
        except ProviderError:
            raise
        except Exception as e:
            raise ProviderError(f"Signing failed for serial {tbs.serial_number:X}: {e}")

        hash_algorithm = cert.signature_hash_algorithm
        return Signature(
            value=cert.signature,
            algorithm=hash_algorithm.name if hash_algorithm else "ed25519",
            certificate_pem=cert.public_bytes(serialization.Encoding.PEM).decode("utf-8"),
        )

    def self_sign(
        self,
        subject: Subject,
        key: KeyHandle,
        validity: Validity,
        serial_number: Optional[int] = None,
        extensions: Optional[Extensions] = None,
        signature_digest: str = "sha256",
    ) -> IssuedCertificate:
        """Self-signed CA certificate; defaults to CA:true with keyCertSign and cRLSign."""
        private_key = self._resolve(key)
        if extensions is None:
            extensions = Extensions(
                key_usage=("keyCertSign", "cRLSign", "digitalSignature"),
                basic_constraints=BasicConstraints(ca=True),
            )
        tbs = TBSCertificate(
            serial_number=serial_number or x509.random_serial_number(),
            subject=subject,
            issuer=subject,
            public_key_pem=CertificateParser._public_key_pem(private_key.public_key()),
            validity=validity,
            extensions=extensions,
            signature_digest=signature_digest,
        )
        signature = self.sign(tbs, key)
        return CertificateParser.parse_certificate_pem(signature.certificate_pem)

    def create_csr(
        self,
        subject: Subject,
        key: KeyHandle,
        sans: tuple[str, ...] = (),
        extensions: Optional[Extensions] = None,
        signature_digest: str = "sha256",
    ) -> str:
        private_key = self._resolve(key)
        builder = x509.CertificateSigningRequestBuilder().subject_name(CertificateParser.subject_to_name(subject))
        builder = self._add_extensions(builder, sans, extensions or Extensions())
        csr = builder.sign(private_key, self._hash_for_key(private_key, signature_digest))
        return csr.public_bytes(serialization.Encoding.PEM).decode("utf-8")

    def _resolve(self, key: KeyHandle):
        """Return the private key behind a handle, loading key files on first use."""
        with self._lock:
            private_key = self._keys.get(key.key_id)
            if private_key is not None:
                return private_key
            key_file = self._key_files.get(key.key_id)

        if key_file is None:
            raise ProviderError(f"Key unavailable: {key.key_id}")

        path, password = key_file
        try:
            with open(path, "rb") as f:
                private_key = serialization.load_pem_private_key(
                    f.read(), password=password.encode("utf-8") if password else None
                )
        except (OSError, ValueError, TypeError) as e:
            raise ProviderError(f"Cannot load key {path}: {e}")

        with self._lock:
            self._keys[key.key_id] = private_key
        return private_key

    @staticmethod
    def _hash(algorithm: str):
        hash_cls = _HASHES.get(algorithm.lower().replace("-", ""))
        if hash_cls is None:
            raise ProviderError(f"Unsupported digest algorithm: {algorithm}")
        return hash_cls()

    @staticmethod
    def _hash_for_key(private_key, algorithm: str):
        # Ed25519 signs the message directly
        if isinstance(private_key, ed25519.Ed25519PrivateKey):
            return None
        return CryptographyProvider._hash(algorithm)

    @staticmethod
    def _add_extensions(builder, sans: tuple[str, ...], extensions: Extensions):
        """Add SAN, key usage, EKU and basic constraints to a certificate or CSR builder."""
        if sans:
            names = [
                x509.IPAddress(parse_ip_address(san)) if is_ip_address(san) else x509.DNSName(san) for san in sans
            ]
            builder = builder.add_extension(x509.SubjectAlternativeName(names), critical=False)

        if extensions.key_usage:
            unknown = set(extensions.key_usage) - set(_KEY_USAGE_FLAGS)
            if unknown:
                raise ProviderError(f"Unknown key usage: {', '.join(sorted(unknown))}")
            flags = {attr: False for attr in _KEY_USAGE_FLAGS.values()}
            for usage in extensions.key_usage:
                flags[_KEY_USAGE_FLAGS[usage]] = True
            builder = builder.add_extension(x509.KeyUsage(**flags), critical=True)

        if extensions.extended_key_usage:
            oids = [x509.ObjectIdentifier(eku_to_oid(eku)) for eku in extensions.extended_key_usage]
            builder = builder.add_extension(x509.ExtendedKeyUsage(oids), critical=False)

        if extensions.basic_constraints is not None:
            bc = extensions.basic_constraints
            builder = builder.add_extension(
                x509.BasicConstraints(ca=bc.ca, path_length=bc.path_length if bc.ca else None), critical=True
            )

        return builder
