"""Hooks run on a request before the proxy processes it."""

from __future__ import annotations

import abc
from typing import Any

import dns.message
import dns.rcode


class BeforeRequestError(Exception):
    """Signals that the request must be answered with response."""

    def __init__(self, err: BaseException, response: dns.message.Message) -> None:
        super().__init__(err, response)
        self.err = err
        self.response = response
        self.__cause__ = err

    def __str__(self) -> str:
        return f"{self.err}; respond with {dns.rcode.to_text(self.response.rcode())}"


class BeforeRequestHandler(abc.ABC):
    """Handles a request before it is processed by the proxy."""

    @abc.abstractmethod
    def handle_before(self, proxy: Any, dctx: Any) -> bool:
        """Inspect dctx before processing.

        Return True to let the request go on.  Raise BeforeRequestError to
        answer with its response, or any other exception to drop it.
        """


class NoopRequestHandler(BeforeRequestHandler):
    """A handler that lets every request through."""

    def handle_before(self, proxy: Any, dctx: Any) -> bool:
        return True