"""ButtonHub Server Configuration."""

import secrets
from functools import lru_cache
from pathlib import Path

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Server
    server_name: str = "ButtonHub Server"
    version: str = "1.0.0"
    environment: str = "dev"
    region: str = "us-east-1"
    host: str = "0.0.0.0"
    port: int = 8080
    debug: bool = False
    log_level: str = "INFO"

    # Paths
    data_dir: Path = Path.home() / "buttonhub" / "data"
    ca_dir: Path = Path.home() / "buttonhub" / "ca"

    # Database
    db_path: Path = Path.home() / "buttonhub" / "data" / "buttonhub.db"
    transaction_max_items: int = 100  # all-or-nothing write limit
    enumeration_workers: int = 3

    # JWT (issued upstream; only decoded here)
    jwt_secret: str = ""
    jwt_algorithm: str = "HS256"

    # Shared token for internal device-event delivery (X-Internal-Token)
    internal_api_token: str = ""

    # Credential authority
    iot_endpoint: str = ""
    receiver_policy_name: str = ""
    certificate_validity_days: int = 3650
    authority_max_attempts: int = 3
    authority_retry_min_wait: float = 0.2  # seconds
    authority_retry_max_wait: float = 2.0

    # Support
    support_reference: str = "support@buttonhub.example"

    model_config = {"env_prefix": "BUTTONHUB_"}

    def ensure_dirs(self) -> None:
        """Create all required directories."""
        for d in [self.data_dir, self.ca_dir, self.db_path.parent]:
            d.mkdir(parents=True, exist_ok=True)

    def ensure_secrets(self) -> None:
        """Generate secrets if not set, persist to file so they survive restarts."""
        secrets_file = self.data_dir / ".secrets"
        saved = {}
        if secrets_file.exists():
            for line in secrets_file.read_text().strip().splitlines():
                if "=" in line:
                    k, v = line.split("=", 1)
                    saved[k.strip()] = v.strip()

        if not self.jwt_secret:
            self.jwt_secret = saved.get("jwt_secret", "") or secrets.token_urlsafe(32)
        if not self.internal_api_token:
            self.internal_api_token = saved.get("internal_api_token", "") or secrets.token_urlsafe(32)

        secrets_file.write_text(
            f"jwt_secret={self.jwt_secret}\n"
            f"internal_api_token={self.internal_api_token}\n"
        )


settings = Settings()
settings.ensure_dirs()
settings.ensure_secrets()


# --- Resolved names (static for the process lifetime) ---

@lru_cache(maxsize=None)
def table_name(base: str) -> str:
    """Environment-scoped table name, e.g. ``buttonhub_dev_devices``."""
    return f"buttonhub_{settings.environment}_{base}"


@lru_cache(maxsize=None)
def receiver_policy_name() -> str:
    return settings.receiver_policy_name or f"ButtonHubReceiverPolicy-{settings.environment}"


@lru_cache(maxsize=None)
def iot_endpoint() -> str:
    return settings.iot_endpoint or f"buttonhub-{settings.environment}-ats.iot.{settings.region}.example.com"
