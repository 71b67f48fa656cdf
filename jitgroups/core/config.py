from __future__ import annotations

from datetime import timedelta
from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", env_prefix="JITGROUPS_")

    app_name: str = "jitgroups"
    log_level: str = "INFO"

    # Name of the environment that legacy role bindings are imported into.
    legacy_environment_name: str = "classic"
    # Upper bound for the expiry a user may choose when joining a legacy group.
    legacy_activation_timeout_minutes: int = 120
    # Justification must match this regex before a legacy join is allowed.
    legacy_justification_pattern: str = ".*"
    legacy_justification_hint: str = "Bug or case number"
    # Bindings with extra resource conditions are skipped unless enabled.
    legacy_allow_resource_conditions: bool = False
    # Legacy group names are derived from role names and need more room.
    legacy_group_name_max_length: int = 42
    group_name_max_length: int = 24
    # Peer approval quorum; the requester never counts unless explicitly allowed.
    approval_min_reviewers: int = 1
    approval_allow_requester: bool = False
    # Lifetime of a pending join proposal before it expires.
    proposal_timeout_minutes: int = 60
    # Optional CEL expression that derives an email address from a principal ID.
    email_mapping_expression: str | None = None

    @property
    def legacy_activation_timeout(self) -> timedelta:
        return timedelta(minutes=self.legacy_activation_timeout_minutes)

    @property
    def proposal_timeout(self) -> timedelta:
        return timedelta(minutes=self.proposal_timeout_minutes)


@lru_cache
def get_settings() -> Settings:
    return Settings()
