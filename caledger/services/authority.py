"""A CA instance: ledger, store, provider and issuance engine sharing one data directory."""

import logging
from pathlib import Path
from typing import Optional

from caledger.models.config import AppConfig
from caledger.services.issuance_service import IssuanceEngine
from caledger.services.ledger_service import SerialLedger
from caledger.services.provider_service import CapabilityProvider, CryptographyProvider
from caledger.services.store_service import CertificateStore
from caledger.utils.file_utils import FileUtils

logger = logging.getLogger("caledger")


class Authority:
    """
    Wires the components of one CA instance together.

    Every CA created in the instance shares the same ledger and store, so
    serial numbers are unique across the whole hierarchy.
    """

    def __init__(
        self, data_dir: Path, config: Optional[AppConfig] = None, provider: Optional[CapabilityProvider] = None
    ):
        self.data_dir = Path(data_dir)
        self.config = config or AppConfig()
        self.provider = provider or CryptographyProvider()
        self.ledger = SerialLedger(self.data_dir / "ledger", initial_serial=self.config.ledger.initial_serial)
        self.store = CertificateStore(self.data_dir)
        self.engine = IssuanceEngine(
            self.ledger,
            self.store,
            self.provider,
            signing_timeout=self.config.issuance.signing_timeout_seconds,
            max_workers=self.config.issuance.max_workers,
        )

    @property
    def authorities_dir(self) -> Path:
        return self.data_dir / "authorities"

    def open(self) -> "Authority":
        FileUtils.ensure_directory(self.authorities_dir)
        self.ledger.open()
        self.store.open()

        # The ledger is authoritative; a stored certificate it does not know about is an integrity problem
        for cert in self.store.all():
            if self.ledger.lookup(cert.serial_number) is None:
                logger.critical(f"Stored certificate {cert.serial_hex} has no ledger entry")

        logger.info(f"Authority ready at {self.data_dir}")
        return self

    def close(self) -> None:
        self.engine.close()
        self.store.close()
        self.ledger.close()

    def __enter__(self) -> "Authority":
        return self.open()

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
