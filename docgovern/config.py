"""
Engine configuration for DocGovern.
"""

import os
from dataclasses import dataclass, field
from typing import List, Optional, Set


def _env_int(name: str, default: int) -> int:
    value = os.environ.get(name)
    return int(value) if value else default


def _env_list(name: str) -> List[str]:
    value = os.environ.get(name, "")
    return [item.strip() for item in value.split(",") if item.strip()]


@dataclass
class GovernanceConfig:
    """Timing, batching and sink settings for the lifecycle engine."""

    # A lease older than this may be reclaimed by another editor on acquire.
    lease_ttl_seconds: int = 30 * 60

    # The background sweep clears leases older than sweep_max_age_seconds.
    sweep_interval_seconds: int = 10 * 60
    sweep_max_age_seconds: int = 10 * 60

    # Fallback sibling window for documents created without a batch_id.
    batch_window_seconds: int = 60
    batch_window_kinds: Set[str] = field(default_factory=lambda: {"handbook-page"})

    notification_recipients: List[str] = field(default_factory=list)

    search_app_id: Optional[str] = None
    search_api_key: Optional[str] = None
    search_index_name: Optional[str] = None
    search_timeout_seconds: float = 10.0

    @property
    def search_configured(self) -> bool:
        return bool(self.search_app_id and self.search_api_key and self.search_index_name)

    @classmethod
    def from_env(cls) -> "GovernanceConfig":
        """Create configuration from environment variables."""
        defaults = cls()
        kinds = _env_list("DOCGOVERN_BATCH_WINDOW_KINDS")
        return cls(
            lease_ttl_seconds=_env_int("DOCGOVERN_LEASE_TTL", defaults.lease_ttl_seconds),
            sweep_interval_seconds=_env_int(
                "DOCGOVERN_SWEEP_INTERVAL", defaults.sweep_interval_seconds
            ),
            sweep_max_age_seconds=_env_int(
                "DOCGOVERN_SWEEP_MAX_AGE", defaults.sweep_max_age_seconds
            ),
            batch_window_seconds=_env_int(
                "DOCGOVERN_BATCH_WINDOW", defaults.batch_window_seconds
            ),
            batch_window_kinds=set(kinds) if kinds else defaults.batch_window_kinds,
            notification_recipients=_env_list("DOCGOVERN_NOTIFY_RECIPIENTS"),
            search_app_id=os.environ.get("DOCGOVERN_SEARCH_APP_ID"),
            search_api_key=os.environ.get("DOCGOVERN_SEARCH_API_KEY"),
            search_index_name=os.environ.get("DOCGOVERN_SEARCH_INDEX"),
        )
