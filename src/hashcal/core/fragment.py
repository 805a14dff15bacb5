"""The address fragment that holds the persisted token.

:class:`AddressFragment` models the ``#...`` part of the shareable link.
Writes and clears replace the fragment in place (no navigation); only
:meth:`AddressFragment.navigate` represents an external change and notifies
the listener so the owner can reload.
"""

from __future__ import annotations

import logging
from collections.abc import Callable

from hashcal.core.codec import peek_is_encrypted

logger = logging.getLogger(__name__)

URL_LENGTH_WARNING_THRESHOLD = 2000
URL_LENGTH_WARNING = "Warning: long URLs may get truncated when shared."

NavigationListener = Callable[[str | None], None]


def url_length_warning(length: int) -> str | None:
    """Return the user-facing warning for a fragment of *length* characters."""
    if length > URL_LENGTH_WARNING_THRESHOLD:
        return URL_LENGTH_WARNING
    return None


class AddressFragment:
    """In-memory holder for the link fragment.

    Parameters
    ----------
    base_url:
        The link without its fragment; used by :attr:`url`.
    token:
        Initial fragment contents (without the leading ``#``), if any.
    """

    def __init__(self, base_url: str = "", token: str | None = None) -> None:
        self._base_url = base_url
        self._token: str | None = token or None
        self._listeners: list[NavigationListener] = []
        self.write_count = 0
        self.clear_count = 0

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def read(self) -> str | None:
        """Return the current token, or None when the fragment is absent."""
        return self._token

    @property
    def url(self) -> str:
        if self._token is None:
            return self._base_url
        return f"{self._base_url}#{self._token}"

    @property
    def length(self) -> int:
        """Length of the fragment including ``#`` (0 when absent)."""
        return 0 if self._token is None else len(self._token) + 1

    def is_encrypted(self) -> bool:
        return peek_is_encrypted(self._token)

    def length_warning(self) -> str | None:
        return url_length_warning(self.length)

    # ------------------------------------------------------------------
    # Writes (in place, no navigation)
    # ------------------------------------------------------------------

    def write(self, token: str) -> None:
        if token.startswith("#"):
            token = token[1:]
        self._token = token or None
        self.write_count += 1
        if self.length_warning():
            logger.warning("Fragment length %d exceeds %d", self.length, URL_LENGTH_WARNING_THRESHOLD)

    def clear(self) -> None:
        """Remove the fragment entirely, leaving the bare link."""
        if self._token is None:
            return
        self._token = None
        self.clear_count += 1
        logger.debug("Cleared address fragment")

    # ------------------------------------------------------------------
    # Navigation
    # ------------------------------------------------------------------

    def add_listener(self, listener: NavigationListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: NavigationListener) -> None:
        self._listeners.remove(listener)

    def navigate(self, token: str | None) -> None:
        """Simulate an external fragment change (pasted link, back button)."""
        if token is not None and token.startswith("#"):
            token = token[1:]
        self._token = token or None
        for listener in list(self._listeners):
            listener(self._token)
