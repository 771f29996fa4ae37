# config.example.py

"""
Documentation-only module (safe to commit).

The real configuration is loaded from environment variables (optionally via a local .env file).
Do NOT commit real secrets or access tokens. Keep them in .env (local, gitignored).

This file exists to make the repo self-documenting without opening src/focus_sync/config.py.
"""

ENV_VARS = {
    # App / logging
    "FOCUS_APP_NAME": "App display name (default: focus).",
    "FOCUS_LOG_LEVEL": "Console logging level (default: INFO). The log file always gets DEBUG.",
    # Remote store (PostgREST-compatible REST endpoint)
    "FOCUS_REST_URL": "Base URL of the hosted database; /rest/v1 is appended. Empty => in-memory demo store.",
    "FOCUS_API_KEY": "Public API key sent as `apikey` (and as bearer token when signed out).",
    "FOCUS_REQUEST_TIMEOUT_SECONDS": "Per-request timeout, also the per-attempt retry timeout (default: 10).",
    # Identity (absent => signed out, tasks live in the local SQLite store)
    "FOCUS_USER_ID": "User id to sign in with at startup.",
    "FOCUS_ACCESS_TOKEN": "Access token (JWT) for that user.",
    # Paths (gitignored)
    "FOCUS_DATA_DIR": "Local data directory (default: .local/focus).",
    "FOCUS_LOCAL_DB_PATH": "Signed-out task store path (default: <data_dir>/tasks.sqlite3).",
    # Retry / conflict tuning
    "FOCUS_RETRY_MAX_RETRIES": "Retries after the first attempt for transient errors (default: 3).",
    "FOCUS_RETRY_INITIAL_DELAY_SECONDS": "First backoff delay (default: 1.0).",
    "FOCUS_RETRY_MAX_DELAY_SECONDS": "Backoff ceiling, jitter included (default: 10.0).",
    "FOCUS_RETRY_BACKOFF_FACTOR": "Backoff multiplier per attempt (default: 2.0).",
    "FOCUS_CONFLICT_MAX_ATTEMPTS": "Re-fetch attempts for update() on version conflicts (default: 3).",
}

# Accepted as fallbacks when the FOCUS_* variant is unset.
FALLBACK_VARS = {
    "SUPABASE_URL": "FOCUS_REST_URL",
    "SUPABASE_ANON_KEY": "FOCUS_API_KEY",
}
