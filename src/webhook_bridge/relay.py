"""
Relay: one inbound broker message -> one HTTP POST + one broker reply.

HTTP sends are fire-and-forget on a bounded worker pool; the dispatching
thread never waits for the response. The reply goes out right after the
POST is dispatched, independent of its outcome.

Each inbound message is dumped at INFO (so also at DEBUG and TRACE); the
warn and error levels keep it quiet.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Callable, Optional

import httpx

from webhook_bridge.config import TargetEndpoint
from webhook_bridge.errors import TransportError
from webhook_bridge.events import InboundMessage, ReplyMessage
from webhook_bridge.headers import translate_properties

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class OutboundRequest:
    host: str
    port: int
    path: str
    headers: dict[str, str] = field(default_factory=dict)
    body: bytes = b""
    method: str = "POST"
    scheme: str = "https"

    @property
    def url(self) -> str:
        path = self.path if self.path.startswith("/") else f"/{self.path}"
        return f"{self.scheme}://{self.host}:{self.port}{path}"


def build_request(message: InboundMessage, target: TargetEndpoint) -> OutboundRequest:
    headers = {
        "Content-Type": "application/json",
        "Content-Length": str(len(message.payload)),
    }
    # properties are applied after the fixed headers and win on collision
    headers = translate_properties(message.user_properties, base=headers)
    return OutboundRequest(
        host=target.host,
        port=target.port,
        path=target.path,
        headers=headers,
        body=message.payload,
        scheme=target.scheme,
    )


def build_reply(message: InboundMessage) -> ReplyMessage:
    # Gateway mode correlates on the application message id, not the
    # broker correlation id, so both fields are set explicitly.
    return ReplyMessage(
        correlation_id=message.application_message_id,
        destination=message.reply_to,
    )


class Relay:
    """Forwards messages to the target endpoint and replies to the broker."""

    def __init__(
        self,
        target: TargetEndpoint,
        reply: Callable[[ReplyMessage], None],
        *,
        max_workers: int = 8,
        client: Optional[httpx.Client] = None,
    ) -> None:
        self.target = target
        self._reply = reply
        self._client = client or httpx.Client(timeout=target.timeout_s)
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="relay-http"
        )

    def relay(self, message: InboundMessage) -> None:
        if logger.isEnabledFor(logging.INFO):
            logger.info("Received message\n%s", message.dump())

        request = build_request(message, self.target)
        try:
            self._executor.submit(self._send, request)
        except RuntimeError as exc:
            # executor already shut down
            logger.error("Cannot forward message to %s: %s", request.url, exc)

        self._reply(build_reply(message))

    def _send(self, request: OutboundRequest) -> None:
        try:
            response = self._post(request)
        except TransportError as exc:
            logger.error("Webhook forward failed: %s", exc)
            return
        except Exception:
            # pool futures are never inspected, so nothing else would report this
            logger.exception("Unexpected error forwarding to %s", request.url)
            return
        if response.is_success:
            logger.debug("Webhook forwarded to %s: %s", request.url, response.status_code)
        else:
            logger.warning("Webhook target %s answered %s", request.url, response.status_code)

    def _post(self, request: OutboundRequest) -> httpx.Response:
        try:
            http_request = self._client.build_request(
                request.method,
                request.url,
                headers=request.headers,
                content=request.body,
            )
            return self._client.send(http_request)
        except (httpx.HTTPError, httpx.InvalidURL, ValueError) as exc:
            raise TransportError(f"{request.method} {request.url}: {exc}") from exc

    def close(self) -> None:
        self._executor.shutdown(wait=False, cancel_futures=True)
        self._client.close()
