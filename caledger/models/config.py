"""Application configuration models."""

from pydantic import BaseModel, Field, field_validator, model_validator

from .ca import CARole, ECDSACurve, KeyAlgorithm, KeyConfig
from .policy import Policy


class AppSettings(BaseModel):
    """Application settings."""

    title: str = "caledger"
    version: str = "1.0.0"
    debug: bool = False


class PathSettings(BaseModel):
    """Path settings."""

    ca_data: str = "./ca-data"
    logs: str = "./logs"


class CADefaults(BaseModel):
    """Default settings for CAs."""

    validity_days: int
    key_algorithm: str = "ECDSA"
    key_size: int = 256

    def key_config(self) -> KeyConfig:
        """KeyConfig for CA requests that do not bring their own."""
        algorithm = KeyAlgorithm(self.key_algorithm)
        if algorithm == KeyAlgorithm.RSA:
            return KeyConfig(algorithm=algorithm, key_size=self.key_size)
        if algorithm == KeyAlgorithm.ECDSA:
            return KeyConfig(algorithm=algorithm, curve=ECDSACurve(f"P-{self.key_size}"))
        return KeyConfig(algorithm=algorithm)

    @model_validator(mode="after")
    def check_key_settings(self):
        """Fail at load time on an unusable key_algorithm/key_size pair."""
        self.key_config()
        return self


class LedgerSettings(BaseModel):
    """Serial ledger settings."""

    initial_serial: int = Field(0x1000, gt=0)


class IssuanceSettings(BaseModel):
    """Issuance engine settings."""

    signing_timeout_seconds: float = Field(30.0, gt=0)
    max_workers: int = Field(8, gt=0)


class LoggingSettings(BaseModel):
    """Logging settings."""

    level: str = "INFO"
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    file: str = "./logs/caledger.log"


def _default_policies() -> dict[CARole, Policy]:
    return {role: Policy.for_role(role) for role in CARole}


class AppConfig(BaseModel):
    """Main application configuration."""

    app: AppSettings = AppSettings()
    paths: PathSettings = PathSettings()
    defaults: dict[str, CADefaults] = Field(
        default_factory=lambda: {
            "root_ca": CADefaults(validity_days=3650),
            "intermediate_ca": CADefaults(validity_days=1825),
        }
    )
    ledger: LedgerSettings = LedgerSettings()
    issuance: IssuanceSettings = IssuanceSettings()
    policies: dict[CARole, Policy] = Field(default_factory=_default_policies)
    logging: LoggingSettings = LoggingSettings()

    @field_validator("policies", mode="before")
    @classmethod
    def merge_role_defaults(cls, v):
        """Layer each configured policy over its role defaults."""
        if not isinstance(v, dict):
            return v
        merged = {}
        for key, value in v.items():
            role = CARole(key)
            if isinstance(value, dict):
                overrides = {k: item for k, item in value.items() if k != "role"}
                merged[role] = Policy.for_role(role, **overrides)
            else:
                merged[role] = value
        return merged

    def policy_for(self, role: CARole) -> Policy:
        """Configured policy for a role, falling back to the role default."""
        return self.policies.get(role) or Policy.for_role(role)
