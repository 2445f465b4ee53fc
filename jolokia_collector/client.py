"""HTTP client for Jolokia read requests using requests."""
from dataclasses import dataclass
from typing import Optional, Tuple
import logging

import requests

logger = logging.getLogger(__name__)

USER_AGENT = "jolokia-collector"


class JolokiaClientError(Exception):
    """Raised when a request could not be completed (connection, timeout, ...)."""


@dataclass
class JolokiaResponse:
    """Status code and raw body of a Jolokia response."""
    status_code: int
    body: bytes


class JolokiaClient:
    """Interface of the HTTP collaborator used by the engine."""

    def get(self, url: str, auth: Optional[Tuple[str, str]] = None) -> JolokiaResponse:
        raise NotImplementedError()

    def close(self):
        pass


class RequestsJolokiaClient(JolokiaClient):
    """Performs GET requests over a shared requests.Session."""

    def __init__(self, timeout_s: float = 5.0, session: Optional[requests.Session] = None):
        self.timeout_s = timeout_s
        self.session = session or requests.Session()
        self.session.headers.update({"User-Agent": USER_AGENT})

    def get(self, url: str, auth: Optional[Tuple[str, str]] = None) -> JolokiaResponse:
        """
        GET ``url``, optionally with HTTP basic auth.

        Raises:
            JolokiaClientError: on connection errors and timeouts
        """
        try:
            response = self.session.get(url, auth=auth, timeout=self.timeout_s)
        except requests.RequestException as e:
            raise JolokiaClientError(f"Request to {url} failed: {e}") from e

        logger.debug(f"GET {url} -> {response.status_code}")
        return JolokiaResponse(response.status_code, response.content)

    def close(self):
        self.session.close()
