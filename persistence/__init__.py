"""
Deep-Check Persistence Layer

Public exports for the Redis-backed enrollment profile store.
"""

from .profile_repository import ProfileRepository, ProfileStoreError, compute_enrollment_hash

__all__ = [
    "ProfileRepository",
    "ProfileStoreError",
    "compute_enrollment_hash",
]
