"""Input validation utilities."""

import ipaddress
import re
from typing import Union

_LABEL_PATTERN = re.compile(r"[a-z0-9]([a-z0-9-]{0,61}[a-z0-9])?", re.IGNORECASE)


def sanitize_name(name: str) -> str:
    """
    Sanitize name for use in file paths.

    Converts to lowercase, replaces spaces with hyphens,
    removes non-alphanumeric characters (except hyphens).

    Args:
        name: Name to sanitize

    Returns:
        Sanitized name

    Example:
        >>> sanitize_name("My Root CA")
        'my-root-ca'
    """
    sanitized = name.lower().replace(" ", "-")
    sanitized = re.sub(r"[^a-z0-9-]", "", sanitized)
    sanitized = re.sub(r"-+", "-", sanitized)
    return sanitized.strip("-")


def validate_common_name(cn: str) -> None:
    """
    Validate common name format.

    Args:
        cn: Common name to validate

    Raises:
        ValueError: If common name is invalid
    """
    if not cn or len(cn.strip()) == 0:
        raise ValueError("Common name cannot be empty")

    if len(cn) > 64:
        raise ValueError("Common name too long (max 64 characters)")


def validate_dns_name(name: str) -> None:
    """
    Validate a DNS name against hostname label rules.

    Labels are 1-63 letters, digits or hyphens, not starting or ending
    with a hyphen; the whole name is at most 253 characters. A single
    leading "*" label is accepted as a wildcard. The last label may not
    be all-numeric.

    Args:
        name: DNS name to validate

    Raises:
        ValueError: If the name is not a well-formed DNS name
    """
    if not name or len(name) > 253:
        raise ValueError(f"Invalid DNS name length: {name!r}")

    labels = name[:-1].split(".") if name.endswith(".") else name.split(".")
    if labels and labels[0] == "*":
        labels = labels[1:]
        if len(labels) < 2:
            raise ValueError(f"Wildcard needs at least two labels below it: {name}")

    for label in labels:
        if not _LABEL_PATTERN.fullmatch(label):
            raise ValueError(f"Invalid DNS label {label!r} in {name}")

    if labels[-1].isdigit():
        raise ValueError(f"Top-level label cannot be numeric: {name}")


def parse_ip_address(value: str) -> Union[ipaddress.IPv4Address, ipaddress.IPv6Address]:
    """
    Parse an IPv4 or IPv6 literal.

    Raises:
        ValueError: If the value is not an IP literal
    """
    return ipaddress.ip_address(value)


def is_ip_address(value: str) -> bool:
    """Return True if the SAN string is an IP literal."""
    try:
        parse_ip_address(value)
        return True
    except ValueError:
        return False


def validate_san(value: str) -> None:
    """
    Validate a Subject Alternative Name entry (IP literal or DNS name).

    Raises:
        ValueError: If the entry is malformed
    """
    if is_ip_address(value):
        return
    validate_dns_name(value)
