import os
import sys

# ====================================================================================
# ENVIRONMENT CONFIGURATION: PROD / STAGE / LOCAL isolation through prefixes
# ====================================================================================
# Every secret is read with the environment prefix:
#   - PROD: PROD_BOT_TOKEN, PROD_DATABASE_URL, PROD_ADMIN_TELEGRAM_ID
#   - STAGE: STAGE_BOT_TOKEN, STAGE_DATABASE_URL, STAGE_ADMIN_TELEGRAM_ID
#   - LOCAL: LOCAL_BOT_TOKEN, LOCAL_DATABASE_URL, LOCAL_ADMIN_TELEGRAM_ID
#
# A STAGE bot can never pick up PROD_BOT_TOKEN even if both are set.
# Engine tunables (intervals, top-N, payout) are not secrets and live in
# app/core/settings.py.
# ====================================================================================

APP_ENV = os.getenv("APP_ENV", "prod").lower()
if APP_ENV not in ("prod", "stage", "local"):
    print(f"ERROR: Invalid APP_ENV={APP_ENV}. Must be one of: prod, stage, local", file=sys.stderr)
    sys.exit(1)

IS_LOCAL = APP_ENV == "local"
IS_STAGE = APP_ENV == "stage"
IS_PROD = APP_ENV == "prod"


def env(key: str, default: str = "") -> str:
    """
    Read an environment variable with the environment prefix.

    Example:
        env("BOT_TOKEN") -> value of STAGE_BOT_TOKEN (if APP_ENV=stage)
        env("LEADERBOARD_CHAT_ID", default="") -> "" if not set
    """
    env_key = f"{APP_ENV.upper()}_{key}"
    return os.getenv(env_key, default)


# Unprefixed secrets are rejected to prevent PROD/STAGE mix-ups
_direct_usage_vars = ["BOT_TOKEN", "DATABASE_URL", "ADMIN_TELEGRAM_ID", "COMMUNITY_CHAT_ID"]
for var in _direct_usage_vars:
    if os.getenv(var):
        print(f"ERROR: Direct usage of {var} is FORBIDDEN!", file=sys.stderr)
        print(f"ERROR: Use {APP_ENV.upper()}_{var} instead (via env('{var}'))", file=sys.stderr)
        sys.exit(1)

print(f"INFO: Config loaded for environment: {APP_ENV.upper()}", flush=True)


def _require_int(key: str) -> int:
    raw = env(key)
    if not raw:
        print(f"ERROR: {APP_ENV.upper()}_{key} environment variable is not set!", file=sys.stderr)
        sys.exit(1)
    try:
        return int(raw)
    except ValueError:
        print(f"ERROR: {key} must be a number, got: {raw}", file=sys.stderr)
        sys.exit(1)


def _optional_int(key: str, fallback: int) -> int:
    raw = env(key)
    if not raw:
        return fallback
    try:
        return int(raw)
    except ValueError:
        print(f"ERROR: {key} must be a number, got: {raw}", file=sys.stderr)
        sys.exit(1)


# ====================================================================================
# SECRETS: validated at startup, never logged
# Required: BOT_TOKEN, ADMIN_TELEGRAM_ID, COMMUNITY_CHAT_ID
# Optional: DATABASE_URL (required in PROD), LEADERBOARD_CHAT_ID, WINNERS_CHAT_ID
# ====================================================================================

# Telegram Bot Token (from @BotFather)
BOT_TOKEN = env("BOT_TOKEN")
if not BOT_TOKEN:
    print(f"ERROR: {APP_ENV.upper()}_BOT_TOKEN environment variable is not set!", file=sys.stderr)
    sys.exit(1)
print(f"INFO: Using BOT_TOKEN from {APP_ENV.upper()}_BOT_TOKEN", flush=True)

# Operator allowed to run /approve and /qualify
ADMIN_TELEGRAM_ID = _require_int("ADMIN_TELEGRAM_ID")

# The supergroup whose joins are attributed (the bot must be an admin there)
COMMUNITY_CHAT_ID = _require_int("COMMUNITY_CHAT_ID")

# Where the live leaderboard is pinned (defaults to the community chat)
LEADERBOARD_CHAT_ID = _optional_int("LEADERBOARD_CHAT_ID", COMMUNITY_CHAT_ID)

# Where final monthly results are posted (defaults to the leaderboard chat)
WINNERS_CHAT_ID = _optional_int("WINNERS_CHAT_ID", LEADERBOARD_CHAT_ID)

# Database; checked by database.py (PROD requires it, STAGE/LOCAL run degraded)
DATABASE_URL = env("DATABASE_URL")
