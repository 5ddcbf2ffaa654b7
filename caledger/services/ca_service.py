"""CA management service."""

import logging
from datetime import datetime
from pathlib import Path
from typing import List, Optional

from caledger.exceptions import ChainBroken, NotFound
from caledger.models.ca import CAConfig, CACreateRequest, CAResponse, CARole, CAType, KeyConfig
from caledger.models.certificate import BasicConstraints, Extensions, IssuedCertificate
from caledger.models.issuance import IssuerContext
from caledger.models.policy import Policy
from caledger.services.authority import Authority
from caledger.services.parser_service import CertificateParser
from caledger.services.yaml_service import YAMLService
from caledger.utils.file_utils import FileUtils
from caledger.utils.validators import sanitize_name

logger = logging.getLogger("caledger")


class CAService:
    """Service for CA management operations."""

    def __init__(self, authority: Authority):
        """
        Initialize CA service.

        Args:
            authority: Open CA instance whose ledger, store and engine are used
        """
        self.authority = authority
        self.config = authority.config
        self.provider = authority.provider
        self.engine = authority.engine
        self.store = authority.store

    @property
    def authorities_dir(self) -> Path:
        return self.authority.authorities_dir

    def create_root_ca(self, request: CACreateRequest) -> CAResponse:
        """
        Create a new Root CA.

        The key is generated, self-signed through the issuance engine and
        written encrypted with request.key_password.

        Args:
            request: CA creation request

        Returns:
            CA response with created CA details

        Raises:
            ValueError: If the CA already exists
            PolicyViolation: If the subject or validity is rejected
            SigningFailed: If the provider cannot sign
        """
        ca_id = f"root-ca-{sanitize_name(request.subject.common_name)}"
        ca_dir = self.authorities_dir / ca_id
        if ca_dir.exists():
            raise ValueError(f"CA already exists: {ca_id}")

        role = CARole.ROOT
        policy = self.policy_for(role)
        defaults = self.config.defaults["root_ca"]
        validity_days = request.validity_days or defaults.validity_days
        key_config = request.key_config or defaults.key_config()

        try:
            FileUtils.ensure_directory(ca_dir)

            key = self.provider.generate_keypair(key_config.algorithm.value, key_config.bits)
            FileUtils.write_file_atomic(
                ca_dir / "ca.key", self.provider.export_private_key(key, request.key_password)
            )

            cert = self.engine.self_sign(
                request.subject, key, policy, validity_days=validity_days, path_length=request.path_length
            )
            ca_config = self._save_config(ca_dir, CAType.ROOT_CA, role, key_config, cert)

            logger.info(f"Created Root CA '{request.subject.common_name}' ({cert.serial_hex}) at {ca_dir}")
            return self._build_ca_response(ca_id, ca_config, ca_dir)

        except Exception as e:
            FileUtils.delete_directory(ca_dir, ignore_errors=True)
            logger.error(f"Failed to create Root CA: {e}")
            raise

    def create_intermediate_ca(self, request: CACreateRequest, parent_ca_id: str) -> CAResponse:
        """
        Create a new Intermediate CA signed by a parent CA.

        A CSR is built for the new key and issued through the engine under
        the parent's policy, so the same checks apply as for any external CSR.

        Args:
            request: CA creation request (must include parent_ca_password)
            parent_ca_id: ID of parent CA

        Returns:
            CA response with created CA details

        Raises:
            ValueError: If the password is missing or the CA already exists
            NotFound: If the parent CA does not exist
            PolicyViolation: If the parent's policy does not allow this CA
            SigningFailed: If the parent key cannot be used
        """
        if not request.parent_ca_password:
            raise ValueError("Parent CA password is required for intermediate CA creation")

        parent_config = self._load_config(parent_ca_id)
        parent_context = self.issuer_context(parent_ca_id, request.parent_ca_password)

        ca_id = f"intermediate-ca-{sanitize_name(request.subject.common_name)}"
        ca_dir = self.authorities_dir / ca_id
        if ca_dir.exists():
            raise ValueError(f"Intermediate CA already exists: {ca_id}")

        role = request.role or CARole.SUBORDINATE
        if role == CARole.ROOT:
            raise ValueError("An intermediate CA cannot have the root role")
        path_length = request.path_length
        if path_length is None and role == CARole.LEAF_SIGNER:
            path_length = 0
        defaults = self.config.defaults["intermediate_ca"]
        validity_days = request.validity_days or defaults.validity_days
        key_config = request.key_config or defaults.key_config()

        try:
            FileUtils.ensure_directory(ca_dir)

            key = self.provider.generate_keypair(key_config.algorithm.value, key_config.bits)
            FileUtils.write_file_atomic(
                ca_dir / "ca.key", self.provider.export_private_key(key, request.key_password)
            )

            csr_pem = self.provider.create_csr(
                request.subject,
                key,
                extensions=Extensions(basic_constraints=BasicConstraints(ca=True, path_length=path_length)),
            )
            csr = CertificateParser.parse_csr(csr_pem)

            cert = self.engine.issue(
                csr, parent_context, self.policy_for(parent_config.role), requested_days=validity_days
            )
            ca_config = self._save_config(ca_dir, CAType.INTERMEDIATE_CA, role, key_config, cert, parent_ca_id)

            logger.info(f"Created Intermediate CA '{request.subject.common_name}' under {parent_ca_id}")
            return self._build_ca_response(ca_id, ca_config, ca_dir)

        except Exception as e:
            FileUtils.delete_directory(ca_dir, ignore_errors=True)
            logger.error(f"Failed to create Intermediate CA: {e}")
            raise

    def get_ca(self, ca_id: str) -> CAResponse:
        """
        Get CA details by ID.

        Raises:
            NotFound: If CA not found
        """
        ca_config = self._load_config(ca_id)
        return self._build_ca_response(ca_id, ca_config, self.authorities_dir / ca_id)

    def list_cas(self) -> List[CAResponse]:
        """List all CAs in issuance order."""
        configs = []
        for ca_dir in FileUtils.list_directories(self.authorities_dir):
            if not (ca_dir / "config.yaml").exists():
                continue
            configs.append((ca_dir, self._load_config(ca_dir.name)))
        configs.sort(key=lambda item: item[1].serial_number or 0)
        return [self._build_ca_response(ca_dir.name, ca_config, ca_dir) for ca_dir, ca_config in configs]

    def policy_for(self, role: CARole) -> Policy:
        return self.config.policy_for(role)

    def role_of(self, ca_id: str) -> CARole:
        return self._load_config(ca_id).role

    def ca_certificate(self, ca_id: str) -> IssuedCertificate:
        """
        The CA's own certificate from the store.

        Raises:
            NotFound: If the CA does not exist
            ChainBroken: If its certificate is missing from the store
        """
        ca_config = self._load_config(ca_id)
        cert = self.store.get(ca_config.serial_number)
        if cert is None:
            raise ChainBroken(
                f"Certificate {ca_config.serial_number:X} of CA {ca_id} is not in the store",
                serial_number=ca_config.serial_number,
                issuer_dn=ca_config.subject.distinguished_name,
            )
        return cert

    def issuer_context(self, ca_id: str, password: Optional[str]) -> IssuerContext:
        """
        Certificate and key handle for signing with a CA.

        The key file is only decrypted when the provider first uses it.
        """
        cert = self.ca_certificate(ca_id)
        ca_config = self._load_config(ca_id)
        key = self.provider.load_private_key(self.authorities_dir / ca_id / ca_config.key_file, password)
        return IssuerContext(certificate=cert, key=key)

    def _load_config(self, ca_id: str) -> CAConfig:
        if not ca_id or sanitize_name(ca_id) != ca_id:
            raise NotFound(f"CA not found: {ca_id}")
        config_path = self.authorities_dir / ca_id / "config.yaml"
        if not config_path.exists():
            raise NotFound(f"CA not found: {ca_id}")
        return CAConfig(**YAMLService.load_config_yaml(config_path))

    def _save_config(
        self,
        ca_dir: Path,
        ca_type: CAType,
        role: CARole,
        key_config: KeyConfig,
        cert: IssuedCertificate,
        parent_ca_id: Optional[str] = None,
    ) -> CAConfig:
        ca_config = CAConfig(
            type=ca_type,
            role=role,
            created_at=datetime.now(),
            subject=cert.subject,
            key_config=key_config,
            validity_days=(cert.not_after - cert.not_before).days,
            not_before=cert.not_before,
            not_after=cert.not_after,
            serial_number=cert.serial_number,
            parent_ca=parent_ca_id,
            fingerprint_sha256=cert.fingerprint_sha256,
        )
        YAMLService.save_yaml(ca_dir / "config.yaml", ca_config.model_dump(mode="json"))
        return ca_config

    def _build_ca_response(self, ca_id: str, ca_config: CAConfig, ca_dir: Path) -> CAResponse:
        status_class, status_text = CertificateParser.get_validity_status(ca_config.not_before, ca_config.not_after)

        return CAResponse(
            id=ca_id,
            path=str(ca_dir),
            type=ca_config.type,
            role=ca_config.role,
            subject=ca_config.subject,
            serial_number=format(ca_config.serial_number, "X") if ca_config.serial_number is not None else "",
            not_before=ca_config.not_before,
            not_after=ca_config.not_after,
            fingerprint_sha256=ca_config.fingerprint_sha256,
            parent_ca=ca_config.parent_ca,
            validity_status=status_class,
            validity_text=status_text,
        )
