"""PostMeeting: notetaker scheduling, meeting reconciliation and follow-up content."""

__version__ = "1.0.0"
