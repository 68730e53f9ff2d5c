"""
Profiles module - per-user routing preferences and provider keys.

Components:
- profile: UserRoutingProfile, storage and secret-store seams
- settings: Explicit user settings commands (mode, model, keys)
"""

from modelgate.profiles.profile import RoutingMode, UserRoutingProfile

__all__ = ["RoutingMode", "UserRoutingProfile"]
