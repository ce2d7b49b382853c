"""
Runtime configuration for phiguard.

Values come from environment variables with development defaults.
Constructors across the package accept explicit overrides, so these are
only consulted when nothing is passed in.
"""

import os


def _env_flag(name: str, default: str = "false") -> bool:
    return os.environ.get(name, default).strip().lower() in ("1", "true", "yes", "on")


# Audit ledger
PHI_AUDIT_LOG = os.environ.get("PHI_AUDIT_LOG", "./audit.log")
AUDIT_HMAC_SECRET = os.environ.get(
    "AUDIT_HMAC_SECRET", "default_audit_secret_change_in_production"
)
# Raise on ledger write failure instead of degrading to a warning
AUDIT_STRICT_WRITES = _env_flag("AUDIT_STRICT_WRITES")

# Key-value stores (in-memory when unset)
REDIS_URL = os.environ.get("REDIS_URL") or None
SESSION_STORE_TTL_SECONDS = int(os.environ.get("SESSION_STORE_TTL_SECONDS", "43200"))

# Optional keyed digest for patient fingerprints
FINGERPRINT_SECRET = os.environ.get("FINGERPRINT_SECRET") or None

# API
SECRET_KEY = os.environ.get("SECRET_KEY", "change_this_to_a_secure_secret_key")
JWT_ALGORITHM = os.environ.get("JWT_ALGORITHM", "HS256")
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.environ.get("ACCESS_TOKEN_EXPIRE_MINUTES", "60"))
ENABLE_LOCAL_PHI_REDACTION = _env_flag("ENABLE_LOCAL_PHI_REDACTION", "true")

LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")
