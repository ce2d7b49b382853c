"""
phiguard Guard Module
"""

from phiguard.guard.identity import GuardDecision, GuardState, IdentityGuard

__all__ = ["GuardDecision", "GuardState", "IdentityGuard"]
