from dataclasses import dataclass, field
from typing import Any, Optional

from LSG_Database.lsg_shared import config, errors


@dataclass
class StorageEntry:
    key:        str
    size_bytes: int


@dataclass
class UsageReport:
    total_usage_bytes:    int
    usage_percentage:     float
    is_approaching_quota: bool
    largest_entries:      list[StorageEntry]
    ceiling_bytes:        int


@dataclass
class EvictionResult:
    tier:         str
    removed_keys: list[str]
    freed_bytes:  int
    dry_run:      bool = False


@dataclass
class DuplicateEntry:
    record_id:  str
    cleaned_at: int
    reason:     str
    expires_at: int


@dataclass
class DuplicateGroup:
    fingerprint: str
    keep:        str
    duplicates:  list[str]


@dataclass
class DuplicateCleanupResult:
    total_groups:     int
    total_duplicates: int
    largest_group:    int
    processed_groups: int = 0
    removed_ids:      list[str] = field(default_factory=list)
    dry_run:          bool = True


@dataclass
class RegistryStats:
    count:               int
    oldest_entry_age_ms: Optional[int]
    newest_entry_age_ms: Optional[int]
    by_reason:           dict[str, int]
    recent_24h:          int


@dataclass
class SyncRecord:
    record_id: str
    version:   float
    payload:   Any


@dataclass
class SyncResult:
    state:              str
    received:           int = 0
    batch_size:         int = 0
    applied_count:      int = 0
    written_count:      int = 0
    skipped_duplicates: int = 0
    quarantined:        list[str] = field(default_factory=list)
    abort_reason:       Optional[str] = None


@dataclass
class HealthStatus:
    store_connected: bool
    store_key_count: int
    uptime_seconds:  float


@dataclass
class GovernorConfig:
    """Caller-supplied knobs; defaults mirror ``lsg_shared.config``."""
    warn_threshold_pct:     float = config.WARN_THRESHOLD_PCT
    critical_threshold_pct: float = config.CRITICAL_THRESHOLD_PCT
    ceiling_bytes:          int = config.QUOTA_CEILING_BYTES
    essential_markers:      tuple[str, ...] = config.ESSENTIAL_KEY_MARKERS
    auth_prefixes:          tuple[str, ...] = config.AUTH_KEY_PREFIXES
    disposable_prefixes:    dict[str, int] = field(default_factory=lambda: dict(config.DISPOSABLE_PREFIXES))
    retention_seconds:      float = config.DUPLICATE_RETENTION_SECONDS
    top_n:                  int = config.REPORT_TOP_N
    refresh_on_sighting:    bool = config.REFRESH_ON_SIGHTING
    record_key_prefix:      str = config.RECORD_KEY_PREFIX

    def validate(self) -> "GovernorConfig":
        if not 0 < self.warn_threshold_pct < self.critical_threshold_pct <= 100:
            raise errors.InvalidConfigError(
                f"thresholds must satisfy 0 < warn < critical <= 100 "
                f"(warn={self.warn_threshold_pct}, critical={self.critical_threshold_pct})"
            )
        if self.ceiling_bytes <= 0:
            raise errors.InvalidConfigError(f"ceiling_bytes must be positive, got {self.ceiling_bytes}")
        if not self.essential_markers or not all(self.essential_markers):
            raise errors.InvalidConfigError("essential_markers must be a non-empty set of non-empty markers")
        if not self.auth_prefixes or not all(self.auth_prefixes):
            raise errors.InvalidConfigError("auth_prefixes must be a non-empty set of non-empty prefixes")
        for prefix in self.auth_prefixes:
            if not any(marker in prefix for marker in self.essential_markers):
                raise errors.InvalidConfigError(f"auth prefix {prefix!r} is not covered by any essential marker")
        if any(age < 0 for age in self.disposable_prefixes.values()):
            raise errors.InvalidConfigError("disposable freshness must be >= 0 seconds")
        if self.retention_seconds <= 0:
            raise errors.InvalidConfigError(f"retention_seconds must be positive, got {self.retention_seconds}")
        if self.top_n < 0:
            raise errors.InvalidConfigError(f"top_n must be >= 0, got {self.top_n}")
        return self

    def is_essential(self, key: str) -> bool:
        return any(marker in key for marker in self.essential_markers)

    def is_auth(self, key: str) -> bool:
        return any(key.startswith(prefix) for prefix in self.auth_prefixes)

    def disposable_freshness(self, key: str) -> Optional[int]:
        for prefix, max_age in self.disposable_prefixes.items():
            if key.startswith(prefix):
                return max_age
        return None
