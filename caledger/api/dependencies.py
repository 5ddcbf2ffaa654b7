"""FastAPI dependencies."""

import logging
import os
import threading
from pathlib import Path
from typing import Optional

from caledger.models.config import AppConfig
from caledger.services.authority import Authority
from caledger.services.ca_service import CAService
from caledger.services.cert_service import CertificateService
from caledger.services.yaml_service import YAMLService

logger = logging.getLogger("caledger")

_authority: Optional[Authority] = None
_authority_lock = threading.Lock()


def get_config() -> AppConfig:
    """
    Get application configuration.

    Reads the file named by CALEDGER_CONFIG, or config.yaml in the working
    directory. Without a file the built-in defaults are used.

    Returns:
        Application configuration
    """
    config_path = Path(os.environ.get("CALEDGER_CONFIG", "config.yaml"))
    if not config_path.exists():
        logger.warning(f"{config_path} not found, using default configuration")
        return AppConfig()

    config_data = YAMLService.load_yaml(config_path) or {}
    return AppConfig(**config_data)


def get_authority() -> Authority:
    """
    Get the process-wide CA instance, opening it on first use.

    Returns:
        Open authority
    """
    global _authority
    with _authority_lock:
        if _authority is None:
            config = get_config()
            _authority = Authority(Path(config.paths.ca_data), config).open()
        return _authority


def reset_authority() -> None:
    """Close the CA instance; the next get_authority() reopens it from disk."""
    global _authority
    with _authority_lock:
        if _authority is not None:
            _authority.close()
            _authority = None


def get_ca_service() -> CAService:
    """
    Get CA service instance.

    Returns:
        CA service
    """
    return CAService(get_authority())


def get_cert_service() -> CertificateService:
    """
    Get certificate service instance.

    Returns:
        Certificate service
    """
    return CertificateService(get_ca_service())
