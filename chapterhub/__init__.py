"""ChapterHub: members-only API for a fraternity chapter."""

__version__ = "0.3.0"
