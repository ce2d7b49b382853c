"""
phiguard API Module
"""

from phiguard.api.auth import create_access_token, get_current_user, require_user, verify_token

__all__ = ["create_access_token", "get_current_user", "require_user", "verify_token"]
