from __future__ import annotations

from collections.abc import Callable


class TokenProvider:
    """Holds the bearer token used for calendar requests.

    The token comes from the identity provider that signed the user in; it is
    passed in at construction or refreshed with :meth:`set_token`. A missing
    token is a normal state, and every calendar tool checks it first.
    """

    def __init__(self, token: str | None = None, fetch: Callable[[], str | None] | None = None):
        self._token = token or None
        self._fetch = fetch

    def get_token(self) -> str | None:
        if self._fetch is not None:
            return self._fetch() or None
        return self._token

    def set_token(self, token: str | None) -> None:
        self._token = token or None

    def clear(self) -> None:
        self._token = None
        self._fetch = None
