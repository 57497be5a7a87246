"""
Python enums for persisted status and tag values.
Values are stored as plain strings in the database.
"""

from enum import Enum


class DocStatus(str, Enum):
    READY = "ready"
    QUEUED = "queued"
    PROCESSING = "processing"
    DONE = "done"
    ERROR = "error"
    SKIPPED = "skipped"

    @property
    def is_terminal(self) -> bool:
        return self in (DocStatus.DONE, DocStatus.ERROR, DocStatus.SKIPPED)

    @property
    def is_in_progress(self) -> bool:
        return self in (DocStatus.QUEUED, DocStatus.PROCESSING)


class AuditMethod(str, Enum):
    HEURISTIC = "heuristic"
    ACCEPTED = "accepted"


class Category(str, Enum):
    INTERNSHIP = "Internship"
    HACKATHON = "Hackathon"
    COURSE = "Course"
    VOLUNTEERING = "Volunteering"
    OTHER = "Other"


SKIP_REASON_ACCEPTED = "mappingAccepted"
