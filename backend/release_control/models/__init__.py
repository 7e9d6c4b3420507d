"""SQLAlchemy model package for the release control backend."""

from release_control.models.release_event import ReleaseEventRecord

__all__ = [
    "ReleaseEventRecord",
]
