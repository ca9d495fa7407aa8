"""Instrumented HTTP client built on httpx."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Mapping

import httpx

from observekit.errors import RegistryRequiredError
from observekit.handlers.tracing import sampling_decision
from observekit.observation import Observation, ObservationContext

if TYPE_CHECKING:
    from observekit.registry import ObservationRegistry

__all__ = ["HttpClientConvention", "ObservedClient", "traceparent"]

logger = logging.getLogger(__name__)

HTTP_CLIENT_OBSERVATION = "http.client.requests"

_REQUEST_KEY = "http.request"
_RESPONSE_KEY = "http.response"

# Keyword arguments accepted by httpx.Client.send() rather than build_request()
_SEND_KWARGS = ("auth", "follow_redirects")


def traceparent(context: ObservationContext) -> str:
    """W3C ``traceparent`` header value for the given observation.

    The sampled flag is set only when a TracingHandler decided to record
    this trace, so downstream services follow the same decision.
    """
    flags = "01" if sampling_decision(context) else "00"
    return f"00-{context.trace_id}-{context.span_id}-{flags}"


def _outcome(status_code: int) -> str:
    if 100 <= status_code < 200:
        return "INFORMATIONAL"
    if 200 <= status_code < 300:
        return "SUCCESS"
    if 300 <= status_code < 400:
        return "REDIRECTION"
    if 400 <= status_code < 500:
        return "CLIENT_ERROR"
    if 500 <= status_code < 600:
        return "SERVER_ERROR"
    return "UNKNOWN"


class HttpClientConvention:
    """Derives request tags once the exchange has finished.

    Low cardinality: ``method``, ``status``, ``outcome``, ``client.name``.
    High cardinality: ``http.url``.
    """

    def low_cardinality_tags(self, context: ObservationContext) -> Mapping[str, str]:
        request: httpx.Request | None = context.data.get(_REQUEST_KEY)
        response: httpx.Response | None = context.data.get(_RESPONSE_KEY)
        tags = {
            "method": request.method if request is not None else "UNKNOWN",
            "client.name": request.url.host if request is not None and request.url.host else "none",
        }
        if response is not None:
            tags["status"] = str(response.status_code)
            tags["outcome"] = _outcome(response.status_code)
        else:
            tags["status"] = "IO_ERROR"
            tags["outcome"] = "UNKNOWN"
        return tags

    def high_cardinality_tags(self, context: ObservationContext) -> Mapping[str, str]:
        request: httpx.Request | None = context.data.get(_REQUEST_KEY)
        if request is None:
            return {}
        return {"http.url": str(request.url)}


class ObservedClient:
    """httpx.Client wrapper that runs every request as a child observation.

    Each request is observed as ``http.client.requests`` with contextual
    name ``http <method>``; when it runs inside another observation the
    request becomes its child and carries a ``traceparent`` header.
    """

    def __init__(
        self,
        registry: ObservationRegistry | None,
        base_url: str | None = None,
        timeout: float = 10.0,
        convention: HttpClientConvention | None = None,
        **client_kwargs: Any,
    ) -> None:
        if registry is None:
            raise RegistryRequiredError(technical_name=HTTP_CLIENT_OBSERVATION)
        self._registry = registry
        self._convention = convention or HttpClientConvention()
        if base_url is not None:
            client_kwargs["base_url"] = base_url
        self._client = httpx.Client(timeout=timeout, **client_kwargs)

    @property
    def client(self) -> httpx.Client:
        return self._client

    def request(self, method: str, url: str | httpx.URL, **kwargs: Any) -> httpx.Response:
        """Send a request and return the response without checking its status.

        Transport errors propagate unchanged after being recorded.
        """
        send_kwargs = {k: kwargs.pop(k) for k in _SEND_KWARGS if k in kwargs}
        request = self._client.build_request(method, url, **kwargs)

        observation = Observation.create(HTTP_CLIENT_OBSERVATION, self._registry, convention=self._convention)
        observation.with_contextual_name(f"http {request.method.lower()}")
        observation.context.data[_REQUEST_KEY] = request

        def exchange() -> httpx.Response:
            request.headers["traceparent"] = traceparent(observation.context)
            response = self._client.send(request, **send_kwargs)
            observation.context.data[_RESPONSE_KEY] = response
            logger.debug("%s %s -> %s", request.method, request.url, response.status_code)
            return response

        return observation.run(exchange)

    def get(self, url: str | httpx.URL, **kwargs: Any) -> httpx.Response:
        return self.request("GET", url, **kwargs)

    def post(self, url: str | httpx.URL, **kwargs: Any) -> httpx.Response:
        return self.request("POST", url, **kwargs)

    def get_text(self, url: str | httpx.URL, **kwargs: Any) -> str:
        """GET *url* and return the body.

        Raises:
            httpx.HTTPStatusError: For 4xx and 5xx responses.
            httpx.RequestError: For transport failures.
        """
        response = self.get(url, **kwargs)
        response.raise_for_status()
        return response.text

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> ObservedClient:
        return self

    def __exit__(self, exc_type: Any, exc: Any, tb: Any) -> None:
        self.close()
