"""Exception hierarchy for Lorekeeper.

All Lorekeeper exceptions inherit from LoreError so callers can catch broad
(LoreError) or narrow (e.g., PatternNotFoundError). Input errors also derive
from ValueError and missing-record errors from LookupError, so code written
against the builtin categories keeps working.
"""

from __future__ import annotations


class LoreError(Exception):
    """Base exception for all Lorekeeper errors."""


class InvalidPatternError(LoreError, ValueError):
    """Raised when a pattern draft is missing required content.

    Examples: blank context and solution, blank agent role, an
    effectiveness score outside [0, 1], no source work items on creation.
    """


class InvalidRetrievalRequestError(LoreError, ValueError):
    """Raised when a retrieval request has a blank task or agent role."""


class PatternNotFoundError(LoreError, LookupError):
    """Raised when an operation targets a pattern id that is not active."""

    def __init__(self, pattern_id: str) -> None:
        super().__init__(f"Pattern not found: {pattern_id}")
        self.pattern_id = pattern_id


class ArchivedPatternNotFoundError(LoreError, LookupError):
    """Raised when restoring a pattern id that is not in the archive."""

    def __init__(self, pattern_id: str) -> None:
        super().__init__(f"Archived pattern not found: {pattern_id}")
        self.pattern_id = pattern_id
