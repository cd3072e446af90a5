import os
from pathlib import Path

from dotenv import load_dotenv

# .env lives next to pyproject.toml
env_path = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(dotenv_path=env_path)

DATABASE_URL = os.getenv("DATABASE_URL")
if not DATABASE_URL:
    import warnings

    warnings.warn(
        "DATABASE_URL not set! Falling back to local SQLite file - DO NOT USE IN PRODUCTION",
        RuntimeWarning,
        stacklevel=2,
    )
    DATABASE_URL = "sqlite:///./mercado_oficio.db"

# Bearer token signing
SECRET_KEY = os.getenv("SECRET_KEY")
if not SECRET_KEY:
    import warnings

    warnings.warn(
        "SECRET_KEY not set! Tokens are signed with a development key", RuntimeWarning, stacklevel=2
    )
    SECRET_KEY = "mercado-oficio-dev-only"  # noqa: S105
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")

# Frontend origins allowed by CORS (comma separated)
CORS_ALLOW_ORIGINS = os.getenv(
    "CORS_ALLOW_ORIGINS", "http://localhost:5173,http://localhost:8080,http://localhost:3000"
)

# Escrow provider configuration
# Every call to the provider is bounded by a timeout and retried with backoff
ESCROW_API_URL = os.getenv("ESCROW_API_URL")
ESCROW_API_KEY = os.getenv("ESCROW_API_KEY")
ESCROW_CURRENCY = os.getenv("ESCROW_CURRENCY", "ARS")
ESCROW_TIMEOUT_SECONDS = float(os.getenv("ESCROW_TIMEOUT_SECONDS", "10"))
ESCROW_MAX_RETRIES = int(os.getenv("ESCROW_MAX_RETRIES", "3"))
ESCROW_RETRY_BACKOFF_SECONDS = float(os.getenv("ESCROW_RETRY_BACKOFF_SECONDS", "0.5"))

# Budget attachments (solicitation photos / videos)
MAX_ATTACHMENT_SIZE_MB = int(os.getenv("MAX_ATTACHMENT_SIZE_MB", "5"))
MAX_ATTACHMENTS_PER_BUDGET = int(os.getenv("MAX_ATTACHMENTS_PER_BUDGET", "5"))

# Scheduling
CANDIDATE_DATES_HORIZON_DAYS = int(os.getenv("CANDIDATE_DATES_HORIZON_DAYS", "60"))

# Milestone distribution rounding: the last milestone absorbs the remainder
MILESTONE_PERCENT_DECIMALS = int(os.getenv("MILESTONE_PERCENT_DECIMALS", "2"))
CURRENCY_DECIMALS = int(os.getenv("CURRENCY_DECIMALS", "2"))
