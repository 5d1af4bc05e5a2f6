# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Domain exceptions raised by the delivery engine.

Each exception carries a machine-readable ``code`` that the command layer
returns to callers and the HTTP layer maps to a status code.
"""

from __future__ import annotations


class NewsletterDispatchError(Exception):
    """Base class for errors raised by the delivery engine."""

    code = "error"

    def __init__(self, message: str = ""):
        super().__init__(message)


class InvalidRequestError(NewsletterDispatchError, ValueError):
    """Raised when a request carries missing or malformed parameters."""

    code = "invalid_request"


class InvalidResumeTypeError(InvalidRequestError):
    """Raised when a recovery mode is not one of failed, unsent, all."""

    def __init__(self, value: object):
        super().__init__(f"Invalid resume type: {value!r} (expected failed, unsent or all)")
        self.value = value


class NotFoundError(NewsletterDispatchError):
    code = "not_found"


class CampaignNotFoundError(NotFoundError):
    """Raised when a campaign id does not exist."""

    def __init__(self, campaign_id: str):
        super().__init__(f"Campaign '{campaign_id}' not found")
        self.campaign_id = campaign_id


class CampaignStateError(NewsletterDispatchError):
    """Raised when a campaign cannot start a run in its current state."""

    code = "invalid_state"

    def __init__(self, campaign_id: str, status: str | None, message: str | None = None):
        super().__init__(message or f"Campaign '{campaign_id}' cannot start a run from status '{status}'")
        self.campaign_id = campaign_id
        self.status = status


class InvalidTransitionError(CampaignStateError):
    code = "invalid_transition"


class CampaignLockedError(CampaignStateError):
    """Raised when another run holds the campaign lock."""

    code = "campaign_locked"

    def __init__(self, campaign_id: str, status: str | None, locked_until: int | None = None):
        super().__init__(
            campaign_id,
            status,
            f"Campaign '{campaign_id}' is already being sent (locked until {locked_until})",
        )
        self.locked_until = locked_until


class LockLostError(CampaignStateError):
    """Raised when a running dispatch finds its lock taken over by another run."""

    code = "lock_lost"

    def __init__(self, campaign_id: str):
        super().__init__(campaign_id, None, f"Campaign '{campaign_id}' run lock was taken over by another run")


class TransportConfigurationError(NewsletterDispatchError):
    """Raised when the SMTP transport is built without a host or sender address."""

    code = "missing_smtp_configuration"

    def __init__(self, message: str = "Missing SMTP host or sender address"):
        super().__init__(message)


class DispatchError(NewsletterDispatchError):
    """Raised when a run aborts on an unexpected error.

    Unless the run had lost its lock, the campaign has already been marked
    failed and the error appended to its error log when this is raised. The
    original exception is chained.
    """

    code = "dispatch_failed"

    def __init__(self, campaign_id: str, message: str):
        super().__init__(message)
        self.campaign_id = campaign_id


__all__ = [
    "CampaignLockedError",
    "CampaignNotFoundError",
    "CampaignStateError",
    "DispatchError",
    "InvalidRequestError",
    "InvalidResumeTypeError",
    "InvalidTransitionError",
    "LockLostError",
    "NewsletterDispatchError",
    "NotFoundError",
    "TransportConfigurationError",
]
