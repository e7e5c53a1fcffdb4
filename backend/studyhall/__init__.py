"""Studyhall client core: auth-state synchronization, identity resolution and progress tracking."""

from .activity import ActivityRecorder
from .identity import IdentityResolver
from .models import Profile, Role, SynchronizedAuthState
from .progress import ProgressEngine
from .session_sync import SessionSync

__all__ = [
    "ActivityRecorder",
    "IdentityResolver",
    "Profile",
    "ProgressEngine",
    "Role",
    "SessionSync",
    "SynchronizedAuthState",
]
