"""Application configuration"""

from dataclasses import dataclass
from typing import List

from pydantic_settings import BaseSettings


@dataclass(frozen=True)
class SyncMapping:
    """A configured (source, target) system pair"""

    source_system: str
    target_system: str


def parse_sync_mappings(value: str | None) -> List[SyncMapping]:
    """Parse "Source>Target,Source2>Target2" into mappings.

    Blank entries are ignored. Entries without exactly one '>' raise ValueError.
    """
    mappings: List[SyncMapping] = []
    for raw in (value or "").split(","):
        entry = raw.strip()
        if not entry:
            continue
        source, sep, target = entry.partition(">")
        source, target = source.strip(), target.strip()
        if not sep or not source or not target or ">" in target:
            raise ValueError(f"Invalid sync mapping '{entry}', expected 'Source>Target'")
        mappings.append(SyncMapping(source_system=source, target_system=target))
    return mappings


class Settings(BaseSettings):
    """Application settings"""

    # Database
    database_url: str = "sqlite:///./syncbridge.db"

    # Server
    host: str = "0.0.0.0"
    port: int = 8000

    # Sync
    poll_interval_seconds: int = 60
    # Upper bound on the number of changes an adapter returns per query.
    batch_size: int = 100
    sync_comments: bool = True
    # Comma-separated list of "Source>Target" system pairs.
    # ':' is reserved for external ids, hence '>'.
    #
    # Example: "MockCRM>AzureDevOps,AzureDevOps>ServiceDeskPlus"
    sync_mappings: str | None = None

    # Checkpoints
    # "memory" keeps checkpoints for the process lifetime; "database" stores them in sync_checkpoints.
    checkpoint_store: str = "memory"
    # "advance_always" or "advance_on_success"
    checkpoint_policy: str = "advance_always"
    initial_lookback_days: int = 30

    # Adapters
    request_timeout_seconds: float = 30.0

    mock_crm_enabled: bool = True
    mock_crm_seed: bool = True

    azure_devops_organization_url: str | None = None
    azure_devops_personal_access_token: str | None = None
    azure_devops_project: str | None = None

    servicedesk_plus_base_url: str | None = None
    servicedesk_plus_technician_key: str | None = None

    # Logging
    log_level: str = "INFO"

    # Auth (optional)
    # When enabled, all routes are protected by HTTP Basic auth, except for /health.
    auth_enabled: bool = False
    auth_username: str | None = None
    auth_password: str | None = None

    class Config:
        env_file = ".env"
        case_sensitive = False

    def parsed_sync_mappings(self) -> List[SyncMapping]:
        return parse_sync_mappings(self.sync_mappings)


settings = Settings()
