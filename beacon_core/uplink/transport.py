"""
Transport capability.

Delivers one collector request (an Observation's wire record) and reports
whether the collector accepted it.

Implementations:
- HttpTransport: POST to the collector over HTTP (httpx)
- InMemoryTransport: offline transport recording requests, optionally
  failing according to a script
"""

import logging
import threading
from abc import ABC, abstractmethod
from collections import deque
from dataclasses import dataclass
from typing import Iterable, List, Optional, Union

import httpx

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DeliveryResult:
    """
    Outcome of one delivery attempt.

    Attributes:
        success: Collector accepted the record (2xx)
        status_code: HTTP-style status code, if a response was received
        reason: Failure description
        retryable: Whether another attempt could succeed
    """

    success: bool
    status_code: Optional[int] = None
    reason: str = ""
    retryable: bool = True

    @classmethod
    def ok(cls, status_code: int = 200) -> 'DeliveryResult':
        return cls(success=True, status_code=status_code)

    @classmethod
    def failed(cls, reason: str, status_code: Optional[int] = None,
               retryable: bool = True) -> 'DeliveryResult':
        return cls(success=False, status_code=status_code, reason=reason, retryable=retryable)


class Transport(ABC):
    """Collector request/response exchange."""

    @abstractmethod
    def deliver(self, request: dict) -> DeliveryResult:
        """
        Deliver one request record.

        Args:
            request: Wire record (see Observation.to_request)

        Returns:
            DeliveryResult
        """

    def close(self):
        """Release transport resources."""


class HttpTransport(Transport):
    """
    Collector transport over HTTP.

    POSTs each record as JSON to {base_url}/{endpoint}. Any 2xx response is
    success. Connection errors, timeouts and 5xx responses are retryable;
    4xx responses are non-retryable when abandon_on_client_error is set.
    """

    def __init__(
        self,
        base_url: str,
        endpoint: str = "location/rssi",
        timeout_s: float = 5.0,
        abandon_on_client_error: bool = True,
        client: Optional[httpx.Client] = None,
    ):
        """
        Initialize HTTP transport.

        Args:
            base_url: Collector base URL (e.g., "http://192.168.0.10:8000")
            endpoint: Path of the RSSI endpoint
            timeout_s: Per-request timeout
            abandon_on_client_error: Classify 4xx responses as non-retryable
            client: Preconfigured httpx client (tests, custom TLS)
        """
        if not base_url:
            raise ValueError("base_url cannot be empty")

        self.base_url = base_url.rstrip("/")
        self.endpoint = endpoint.lstrip("/")
        self.timeout_s = timeout_s
        self.abandon_on_client_error = abandon_on_client_error
        self._client = client or httpx.Client(base_url=self.base_url, timeout=timeout_s)

    @property
    def url(self) -> str:
        return f"{self.base_url}/{self.endpoint}"

    def deliver(self, request: dict) -> DeliveryResult:
        try:
            response = self._client.post(f"/{self.endpoint}", json=request)
        except httpx.HTTPError as e:
            return DeliveryResult.failed(f"network error: {e!r}")

        status = response.status_code
        if 200 <= status < 300:
            return DeliveryResult.ok(status)

        retryable = not (400 <= status < 500 and self.abandon_on_client_error)
        return DeliveryResult.failed(f"HTTP {status}", status_code=status, retryable=retryable)

    def close(self):
        self._client.close()


Outcome = Union[DeliveryResult, bool]


class InMemoryTransport(Transport):
    """
    Offline transport.

    Records every request it receives. Scripted outcomes are consumed one
    per delivery (True/False or DeliveryResult); once the script runs out
    every delivery succeeds, unless always_fail is set.

    Usage:
        transport = InMemoryTransport(script=[False, False, True])
        transport.deliver(record)   # fails
        transport.requests          # every record seen, in order
    """

    def __init__(self, script: Iterable[Outcome] = (), always_fail: bool = False,
                 log_requests: bool = False):
        self._script = deque(script)
        self.always_fail = always_fail
        self.log_requests = log_requests
        self._lock = threading.Lock()
        self._requests: List[dict] = []
        self._delivered: List[dict] = []

    @property
    def requests(self) -> List[dict]:
        """Every request received, including failed attempts."""
        with self._lock:
            return list(self._requests)

    @property
    def delivered(self) -> List[dict]:
        """Requests that were accepted."""
        with self._lock:
            return list(self._delivered)

    def deliver(self, request: dict) -> DeliveryResult:
        with self._lock:
            self._requests.append(dict(request))
            if self._script:
                outcome = self._script.popleft()
            elif self.always_fail:
                outcome = False
            else:
                outcome = True

            if isinstance(outcome, bool):
                outcome = DeliveryResult.ok() if outcome else DeliveryResult.failed("scripted failure")
            if outcome.success:
                self._delivered.append(dict(request))

        if self.log_requests:
            logger.info(
                f"Sending... {request.get('anchorName')}, {request.get('rssi')}, "
                f"{request.get('macAddress')}"
            )
        return outcome
