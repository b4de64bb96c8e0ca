# Centralised application configuration
# (environment variables, directories, timeouts).

import os


def _flag(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


class Settings:
    APP_NAME = os.getenv("APP_NAME", "LUX Session Generator")

    # Where the link client keeps its multi-file credentials, one dir per session
    SESSIONS_DIR = os.getenv("SESSIONS_DIR", os.path.join(os.getcwd(), "sessions"))
    # Serialized bundles filed under their short code
    CODES_DIR = os.getenv("CODES_DIR", os.path.join(os.getcwd(), "codes"))

    TOKEN_PREFIX = os.getenv("TOKEN_PREFIX", "LUX~")
    TOKEN_URLSAFE = _flag("TOKEN_URLSAFE", "false")

    SESSION_TIMEOUT_SECONDS = float(os.getenv("SESSION_TIMEOUT_SECONDS", "60"))
    PAIR_CODE_SEPARATOR = os.getenv("PAIR_CODE_SEPARATOR", "-")

    # "package.module:callable" returning an awaitable LinkClient
    LINK_CLIENT_FACTORY = os.getenv("LINK_CLIENT_FACTORY", "")

    RATE_LIMIT_ENABLED = _flag("RATE_LIMIT_ENABLED", "true")
    MAX_REQUESTS_PER_MINUTE = int(os.getenv("MAX_REQUESTS_PER_MINUTE", "10"))

    POLL_INTERVAL_MS = int(os.getenv("POLL_INTERVAL_MS", "2000"))
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

    HOST = os.getenv("HOST", "0.0.0.0")
    PORT = int(os.getenv("PORT", "3000"))


settings = Settings()
