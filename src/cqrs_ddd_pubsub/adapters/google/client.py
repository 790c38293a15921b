"""GooglePubSubClient — REST client for the Cloud Pub/Sub publish endpoint.

Docs: https://cloud.google.com/pubsub/docs/reference/rest
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

import httpx

from ...exceptions import PublishRequestError
from ...result import Result

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    # Returns the full ``authorization`` header value, e.g. ``"Bearer <token>"``.
    TokenProvider = Callable[[], Awaitable[str]]

logger = logging.getLogger("cqrs_ddd.pubsub.google")

DEFAULT_BASE_URL = "https://pubsub.googleapis.com"
PUBSUB_SCOPE = "https://www.googleapis.com/auth/pubsub"


class GooglePubSubClient:
    """Publishes encoded messages over HTTP.

    Encoded messages have the Cloud Pub/Sub wire shape
    ``{"data": <base64>, "attributes": {...}}``. Token retrieval is left to the
    injected *token_provider*, which should request ``PUBSUB_SCOPE``; without
    one no ``authorization`` header is sent (the local emulator accepts that).

    Usage::

        client = GooglePubSubClient("my-project", token_provider=fetch_token)
        result = await client.publish("accounts-opened", [encoded])
        message_ids = result.unwrap()
    """

    def __init__(
        self,
        project_id: str,
        *,
        token_provider: TokenProvider | None = None,
        base_url: str = DEFAULT_BASE_URL,
        http_client: httpx.AsyncClient | None = None,
        timeout: float = 10.0,
    ) -> None:
        self.project_id = project_id
        self.base_url = base_url.rstrip("/")
        self._token_provider = token_provider
        self._http_client = http_client
        self._owns_client = http_client is None
        self._timeout = timeout

    @property
    def token_provider(self) -> TokenProvider | None:
        return self._token_provider

    def topic_path(self, topic: str) -> str:
        return f"projects/{self.project_id}/topics/{topic}"

    def subscription_path(self, subscription: str) -> str:
        return f"projects/{self.project_id}/subscriptions/{subscription}"

    def publish_url(self, topic: str) -> str:
        return f"{self.base_url}/v1/{self.topic_path(topic)}:publish"

    async def publish(
        self, topic: str, messages: dict[str, Any] | list[dict[str, Any]]
    ) -> Result[list[str]]:
        """POST *messages* to the topic and return the assigned message ids."""
        if isinstance(messages, dict):
            messages = [messages]
        try:
            client = self._get_client()
            response = await client.post(
                self.publish_url(topic),
                json={"messages": messages},
                headers=await self._headers(),
            )
        except httpx.HTTPError as exc:
            logger.warning("Publish request to %s failed: %s", topic, exc)
            return Result.failure(exc)
        return self._parse_response(topic, response)

    async def close(self) -> None:
        """Close the underlying HTTP client if this instance created it."""
        if self._http_client is not None and self._owns_client:
            await self._http_client.aclose()
            self._http_client = None

    # ── Helpers ──────────────────────────────────────────────────

    def _get_client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self._timeout)
            self._owns_client = True
        return self._http_client

    async def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self._token_provider is not None:
            headers["authorization"] = await self._token_provider()
        return headers

    @staticmethod
    def _parse_response(topic: str, response: httpx.Response) -> Result[list[str]]:
        if not 200 <= response.status_code <= 299:
            logger.warning(
                "Publish to %s rejected: HTTP %d - %s",
                topic,
                response.status_code,
                response.text,
            )
            return Result.failure(
                PublishRequestError(
                    f"Publish to {topic!r} failed with HTTP {response.status_code}",
                    status_code=response.status_code,
                    body=response.text,
                )
            )
        try:
            message_ids = response.json()["messageIds"]
        except (ValueError, KeyError, TypeError):
            return Result.failure(
                PublishRequestError(
                    f"Unexpected publish response from {topic!r}",
                    status_code=response.status_code,
                    body=response.text,
                )
            )
        return Result.success([str(message_id) for message_id in message_ids])
