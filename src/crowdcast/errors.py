"""Typed errors surfaced by storage and services."""

from __future__ import annotations


class CrowdcastError(Exception):
    """Base class for application errors. `code` is the machine-readable API code."""

    code = "error"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.__class__.__doc__ or self.code)
        self.message = message or self.__class__.__doc__ or self.code


class NotFoundError(CrowdcastError):
    """Requested entity does not exist."""

    code = "not_found"


class InvalidRequestError(CrowdcastError):
    """Request is well-formed but violates a domain rule."""

    code = "invalid_request"


class DuplicateVoteError(CrowdcastError):
    """You have already voted for this proposal"""

    code = "duplicate_vote"


class DuplicateConnectionError(CrowdcastError):
    """This wallet already has a linked X account"""

    code = "duplicate_connection"


class OAuthStateError(CrowdcastError):
    """Invalid or expired OAuth state"""

    code = "invalid_state"
