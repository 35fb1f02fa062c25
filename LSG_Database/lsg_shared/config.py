# Redis Connection

REDIS_HOST              = "localhost"
REDIS_PORT              = 6379
REDIS_STORE_DB          = 0          # Logical DB for the Record Store
REDIS_SOCKET_TIMEOUT    = 5          # seconds

# Key Namespace

REGISTRY_KEY            = "lsg:v1:cleaned_duplicates"    # single JSON blob
WRITTEN_AT_INDEX_KEY    = "lsg:v1:idx:written_at"        # zset {key: written_at_ms}
RECORD_KEY_PREFIX       = "record:"                      # record:{record_id}
WRITE_CHECK_KEY_PREFIX  = "lsg:v1:write-check:"

# Quota Settings

STORE_CAPACITY_BYTES    = 5 * 1024 * 1024    # 5 MB hard limit of the store
QUOTA_CEILING_BYTES     = 5 * 1024 * 1024
WARN_THRESHOLD_PCT      = 80.0
CRITICAL_THRESHOLD_PCT  = 90.0
REPORT_TOP_N            = 10

# Key Classes

# Substring match. Survives standard and emergency cleanup.
ESSENTIAL_KEY_MARKERS = (
    "user",
    "auth",
    "settings",
    "onboarding",
    "supabase.auth.token",
)

# Prefix match. The only keys destructive cleanup keeps.
AUTH_KEY_PREFIXES = (
    "supabase.auth.token",
    "sb-auth-token",
)

# prefix -> freshness in seconds
DISPOSABLE_PREFIXES = {
    "cache:":         3_600,
    "syncStatus":     0,
    "operationQueue": 0,
    "storage-test-":  0,
}

# Duplicate Registry

DUPLICATE_RETENTION_SECONDS = 2_592_000     # 30 days
REFRESH_ON_SIGHTING         = True
RECENT_WINDOW_SECONDS       = 86_400        # "recent" bucket in registry stats
REGISTRY_FORMAT_VERSION     = 1
DUPLICATE_CLEANUP_MAX       = 50            # removals per automatic cleanup run

# Valid Enums (for validation)

VALID_DUPLICATE_REASONS = {"user-merge", "auto-detect"}
VALID_QUOTA_STATES      = {"NOMINAL", "APPROACHING", "CRITICAL"}
VALID_EVICTION_TIERS    = {"STANDARD", "EMERGENCY", "DESTRUCTIVE"}
VALID_SYNC_STATES       = {"IDLE", "FETCHING", "RECONCILING", "COMMITTING", "DONE", "ABORTED"}

# Sync

SYNC_ID_FIELD       = "id"
SYNC_VERSION_FIELD  = "version"
SYNC_BATCH_SIZE     = 500
