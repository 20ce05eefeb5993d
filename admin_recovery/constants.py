"""Infrastructure and technical constants."""

from typing import Final

# Technical configuration constants
DEFAULT_PORT: Final = 8000
DEFAULT_DATABASE_URL: Final = "sqlite:///./admin_recovery.db"
SQLITE_BUSY_TIMEOUT_SECONDS: Final = 15
RESEND_API_BASE_URL: Final = "https://api.resend.com"
EMAIL_HTTP_TIMEOUT_SECONDS: Final = 10.0
