# config.example.py

"""
Documentation-only module (safe to commit).

The real configuration is loaded from environment variables (optionally via a local .env file).
Do NOT commit real tokens. Use .env (local, gitignored).

This file exists to make the repo self-documenting even without opening .env.example.
"""

ENV_VARS = {
    # App / logging
    "TASKSYNC_APP_NAME": "App display name (default: tasksync).",
    "TASKSYNC_LOG_LEVEL": "Console logging level (default: INFO). The log file always gets DEBUG.",
    # Connectors
    "TASKSYNC_CONSOLE_ENABLED": "Run the interactive console (true/false). Off => list tasks once and exit.",
    # REST API
    "TASKSYNC_API_BASE_URL": "Task API base URL (default: http://localhost:3000).",
    "TASKSYNC_API_TOKEN": "Optional bearer token sent as Authorization header.",
    "TASKSYNC_API_TIMEOUT_SECONDS": "Per-request transport timeout (default: 10).",
    # Sync tuning
    "TASKSYNC_SYNC_MAX_RETRIES": "Auto-retries for 5xx/transport failures (default: 0 = surface immediately).",
    "TASKSYNC_SYNC_RETRY_BACKOFF_SECONDS": "Base delay for exponential retry backoff (default: 0.5).",
    # Paths (gitignored)
    "TASKSYNC_DATA_DIR": "Local data directory (default: .local/tasksync).",
    "TASKSYNC_PREFERENCES_PATH": "Saved filter/sort/search (default: <data_dir>/preferences.json).",
}
