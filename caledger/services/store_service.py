"""Certificate store: serial -> issued certificate, with chain construction."""

import logging
import threading
from pathlib import Path
from typing import Dict, List, Optional

from caledger.exceptions import ChainBroken, DuplicateSerial, LedgerIntegrityError, NotFound
from caledger.models.certificate import IssuedCertificate
from caledger.services.parser_service import CertificateParser
from caledger.services.yaml_service import YAMLService
from caledger.utils.file_utils import FileUtils

logger = logging.getLogger("caledger")


class CertificateStore:
    """
    Exclusive owner of the serial -> certificate mapping.

    Each certificate is kept as certs/<SERIAL>/cert.crt with a config.yaml
    holding its metadata. Issuers are found by subject DN; a certificate
    never holds a reference to its issuer's record.
    """

    def __init__(self, store_dir: Path):
        self.store_dir = store_dir
        self._lock = threading.Lock()
        self._by_serial: Dict[int, IssuedCertificate] = {}
        self._by_subject: Dict[str, List[int]] = {}
        self._open = False

    @property
    def certs_dir(self) -> Path:
        return self.store_dir / "certs"

    def open(self) -> "CertificateStore":
        """Load every stored certificate."""
        FileUtils.ensure_directory(self.certs_dir)
        with self._lock:
            self._by_serial = {}
            self._by_subject = {}
            for cert_dir in sorted(FileUtils.list_directories(self.certs_dir)):
                cert = self._load(cert_dir)
                if cert.serial_number in self._by_serial:
                    raise DuplicateSerial(cert.serial_number)
                self._index(cert)
            self._open = True

        logger.info(f"Opened certificate store {self.store_dir}: {len(self._by_serial)} certificates")
        return self

    def close(self) -> None:
        with self._lock:
            self._by_serial = {}
            self._by_subject = {}
            self._open = False
        logger.info(f"Closed certificate store {self.store_dir}")

    def put(self, cert: IssuedCertificate) -> None:
        """
        Persist and index a certificate.

        Raises:
            DuplicateSerial: If a certificate with this serial is already stored
        """
        with self._lock:
            self._require_open()
            if cert.serial_number in self._by_serial:
                raise DuplicateSerial(cert.serial_number)

            cert_dir = self.certs_dir / cert.serial_hex
            FileUtils.write_file_atomic(cert_dir / "cert.crt", cert.pem)
            YAMLService.save_yaml(cert_dir / "config.yaml", cert.model_dump(mode="json", exclude={"pem"}))
            self._index(cert)

        logger.debug(f"Stored certificate {cert.serial_hex} ({cert.subject_dn})")

    def get(self, serial: int) -> Optional[IssuedCertificate]:
        self._require_open()
        return self._by_serial.get(serial)

    def all(self) -> List[IssuedCertificate]:
        """All stored certificates in serial order."""
        self._require_open()
        with self._lock:
            return [self._by_serial[s] for s in sorted(self._by_serial)]

    def find_by_subject(self, subject_dn: str) -> List[IssuedCertificate]:
        """Certificates whose subject DN matches, newest first."""
        self._require_open()
        with self._lock:
            certs = [self._by_serial[s] for s in self._by_subject.get(subject_dn, [])]
        return sorted(certs, key=lambda c: (c.not_before, c.serial_number), reverse=True)

    def find_issuer(self, cert: IssuedCertificate) -> Optional[IssuedCertificate]:
        """
        Resolve the CA certificate that issued cert.

        Candidates are CA certificates stored under cert's issuer DN whose
        key verifies cert's signature. When several remain, the newest one
        whose validity covers the child's notBefore wins.
        """
        candidates = [
            c
            for c in self.find_by_subject(cert.issuer_dn)
            if c.is_ca and c.serial_number != cert.serial_number and CertificateParser.issued_by(cert, c)
        ]
        if not candidates:
            return None
        for candidate in candidates:
            if candidate.not_before <= cert.not_before <= candidate.not_after:
                return candidate
        return candidates[0]

    def chain_for(self, serial: int) -> List[IssuedCertificate]:
        """
        Build the chain from a certificate up to its self-signed root.

        Returns:
            [leaf, intermediates..., root]

        Raises:
            NotFound: If serial is not in the store
            ChainBroken: If an issuer cannot be resolved or the chain loops
        """
        cert = self.get(serial)
        if cert is None:
            raise NotFound(f"Certificate {serial:X} not found in store")

        chain = [cert]
        seen = {cert.serial_number}
        while not cert.is_self_signed:
            issuer = self.find_issuer(cert)
            if issuer is None:
                raise ChainBroken(
                    f"Issuer '{cert.issuer_dn}' of certificate {cert.serial_hex} is not in the store",
                    serial_number=cert.serial_number,
                    issuer_dn=cert.issuer_dn,
                )
            if issuer.serial_number in seen:
                raise ChainBroken(
                    f"Issuer loop at '{cert.issuer_dn}' while building chain for {serial:X}",
                    serial_number=cert.serial_number,
                    issuer_dn=cert.issuer_dn,
                )
            chain.append(issuer)
            seen.add(issuer.serial_number)
            cert = issuer

        return chain

    def chain_pem(self, serial: int) -> str:
        """Concatenated PEM of chain_for(serial)."""
        return "".join(cert.pem if cert.pem.endswith("\n") else cert.pem + "\n" for cert in self.chain_for(serial))

    def _require_open(self) -> None:
        if not self._open:
            raise LedgerIntegrityError(f"Certificate store {self.store_dir} is not open")

    def _index(self, cert: IssuedCertificate) -> None:
        self._by_serial[cert.serial_number] = cert
        self._by_subject.setdefault(cert.subject_dn, []).append(cert.serial_number)

    @staticmethod
    def _load(cert_dir: Path) -> IssuedCertificate:
        """Load a stored certificate; the PEM is authoritative over config.yaml."""
        cert_path = cert_dir / "cert.crt"
        if not cert_path.exists():
            raise LedgerIntegrityError(f"Stored certificate missing: {cert_path}")
        cert = CertificateParser.parse_certificate_pem(FileUtils.read_file(cert_path))
        if cert.serial_hex != cert_dir.name:
            raise LedgerIntegrityError(f"Certificate in {cert_dir} has serial {cert.serial_hex}")
        return cert
