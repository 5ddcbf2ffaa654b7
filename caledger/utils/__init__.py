"""Utility modules."""

from .file_utils import FileUtils
from .logger import setup_logger
from .validators import sanitize_name, validate_dns_name, validate_san

__all__ = ["FileUtils", "sanitize_name", "validate_dns_name", "validate_san", "setup_logger"]
