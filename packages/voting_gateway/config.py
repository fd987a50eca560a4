import logging
import os
from dataclasses import dataclass
from typing import Optional

logger = logging.getLogger(__name__)

REQUIRED = {
    "contract_address": "CONTRACT_ADDRESS",
    "owner_address": "OWNER_ADDRESS",
    "owner_private_key": "OWNER_PRIVATE_KEY",
}


@dataclass(frozen=True)
class Settings:
    rpc_url: str = "http://127.0.0.1:8545"
    network_id: str = "31337"
    contract_address: Optional[str] = None
    owner_address: Optional[str] = None
    owner_private_key: Optional[str] = None
    abi_path: Optional[str] = None
    receipt_timeout: float = 120.0
    host: str = "0.0.0.0"
    port: int = 3000
    node_env: str = "development"
    cors_origins: str = "*"
    log_level: str = "INFO"
    sentry_dsn: Optional[str] = None

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            rpc_url=os.getenv("RPC_URL", "http://127.0.0.1:8545"),
            network_id=os.getenv("NETWORK_ID", "31337"),
            contract_address=os.getenv("CONTRACT_ADDRESS") or None,
            owner_address=os.getenv("OWNER_ADDRESS") or None,
            owner_private_key=os.getenv("OWNER_PRIVATE_KEY") or None,
            abi_path=os.getenv("CONTRACT_ABI_PATH") or None,
            receipt_timeout=float(os.getenv("RECEIPT_TIMEOUT", "120")),
            host=os.getenv("HOST", "0.0.0.0"),
            port=int(os.getenv("PORT", "3000")),
            node_env=os.getenv("NODE_ENV", "development"),
            cors_origins=os.getenv("CORS_ORIGINS", "*"),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
            sentry_dsn=os.getenv("SENTRY_DSN") or None,
        )

    @property
    def is_production(self) -> bool:
        return self.node_env == "production"

    @property
    def allowed_origins(self) -> list[str]:
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]

    def missing(self) -> list[str]:
        return [env for attr, env in REQUIRED.items() if not getattr(self, attr)]

    def validate(self) -> list[str]:
        """Warn about incomplete deployment settings. Never fails."""
        missing = self.missing()
        if missing:
            logger.warning("Missing required configuration: %s", ", ".join(missing))
            logger.warning("Set the deployment details in the environment before serving writes")
        return missing
