"""Exception hierarchy shared by the hashcal core.

Load boundaries catch :class:`DecodeError` and fall back to an empty
calendar; :class:`WrongPasswordError` is surfaced so the caller can re-prompt.
"""

from __future__ import annotations


class HashcalError(Exception):
    """Base class for all hashcal errors."""


class CodecError(HashcalError):
    """Raised when a fragment token cannot be turned back into state."""


class DecodeError(CodecError):
    """The token is malformed: bad tag, truncated, bad alphabet or payload."""


class WrongPasswordError(CodecError):
    """The token is encrypted and the password is missing or did not authenticate.

    Wrong passwords and tampered ciphertext are deliberately indistinguishable.
    """


AuthFailure = WrongPasswordError


class LockedError(HashcalError):
    """Raised when a mutation is attempted while the calendar is locked."""


class ExpansionBudgetExceeded(HashcalError):
    """Raised when expanding a single record takes more steps than allowed."""

    def __init__(self, source_index: int, max_steps: int) -> None:
        self.source_index = source_index
        self.max_steps = max_steps
        super().__init__(
            f"Expansion of event {source_index} exceeded the step budget of {max_steps}"
        )
