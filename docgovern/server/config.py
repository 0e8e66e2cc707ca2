"""
Server configuration for DocGovern.
"""

import os
from dataclasses import dataclass, field
from typing import Optional, Set

from ..config import GovernanceConfig


@dataclass
class ServerConfig:
    """Configuration for the DocGovern HTTP server."""

    host: str = "0.0.0.0"
    port: int = 8000

    database_url: Optional[str] = None

    api_keys: Set[str] = field(default_factory=lambda: {"dev-editor-key", "dev-moderator-key"})

    cors_origins: list = field(default_factory=lambda: ["*"])

    debug: bool = False

    log_level: str = "info"

    run_sweeper: bool = True

    governance: GovernanceConfig = field(default_factory=GovernanceConfig)

    def __post_init__(self):
        if self.database_url is None:
            self.database_url = os.environ.get("DATABASE_URL", "sqlite:///./docgovern.db")

        env_keys = os.environ.get("DOCGOVERN_API_KEYS")
        if env_keys:
            self.api_keys = {key.strip() for key in env_keys.split(",") if key.strip()}

    @classmethod
    def from_env(cls) -> "ServerConfig":
        """Create configuration from environment variables."""
        return cls(
            host=os.environ.get("DOCGOVERN_HOST", "0.0.0.0"),
            port=int(os.environ.get("DOCGOVERN_PORT", "8000")),
            database_url=os.environ.get("DATABASE_URL"),
            cors_origins=os.environ.get("DOCGOVERN_CORS_ORIGINS", "*").split(","),
            debug=os.environ.get("DOCGOVERN_DEBUG", "").lower() == "true",
            log_level=os.environ.get("DOCGOVERN_LOG_LEVEL", "info"),
            run_sweeper=os.environ.get("DOCGOVERN_RUN_SWEEPER", "true").lower() != "false",
            governance=GovernanceConfig.from_env(),
        )
