"""Per-customer aggregation triggered after analysis."""

from .profile_updater import ProfileUpdateError, ProfileUpdater

__all__ = ["ProfileUpdateError", "ProfileUpdater"]
