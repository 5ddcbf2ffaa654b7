"""caledger - local Certificate Authority issuance engine."""

__version__ = "1.0.0"
