from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass
from typing import Any, AsyncGenerator, Optional, Sequence

import httpx
from pydantic import ValidationError

from .budget import select_within_budget
from .config import ProxyConfig
from .errors import err_invalid_request, err_stream_payload, err_upstream_status
from .metrics import MetricsAggregator, MetricSample
from .models import ChatRequest, Message
from .providers import ProviderConfig, resolve_provider
from .sse import DONE_SENTINEL, iter_events

logger = logging.getLogger(__name__)


@dataclass
class ForwardedStream:
    provider: str
    model: str
    messages_received: int
    messages_sent: int
    started_at: float
    first_token_at: Optional[float] = None
    chars_out: int = 0
    chunks: Optional[AsyncGenerator[bytes, None]] = None


def extract_delta(data: str) -> str:
    """Return the first choice's text delta from one upstream event payload."""

    try:
        obj = json.loads(data)
    except json.JSONDecodeError as exc:
        raise err_stream_payload("invalid JSON", data) from exc
    choices = obj.get("choices") if isinstance(obj, dict) else None
    if not isinstance(choices, list):
        raise err_stream_payload("missing choices", data)
    if not choices:
        # Azure opens with a choice-less content filter chunk
        return ""
    first = choices[0]
    delta = first.get("delta") if isinstance(first, dict) else None
    if not isinstance(delta, dict):
        raise err_stream_payload("missing delta", data)
    content = delta.get("content")
    return content if isinstance(content, str) else ""


class ChatForwarder:
    def __init__(
        self,
        cfg: ProxyConfig,
        metrics: MetricsAggregator,
        client: httpx.AsyncClient | None = None,
    ):
        self.cfg = cfg
        self.metrics = metrics
        self.client = client or httpx.AsyncClient(
            timeout=cfg.backend_timeout_ms / 1000
        )

    async def aclose(self) -> None:
        await self.client.aclose()

    def resolve_provider(self) -> ProviderConfig:
        return resolve_provider(
            default_model=self.cfg.default_model,
            azure_api_version=self.cfg.azure_api_version,
        )

    def build_payload(
        self, provider: ProviderConfig, messages: Sequence[Message]
    ) -> dict[str, Any]:
        return {
            "model": provider.model,
            "frequency_penalty": self.cfg.frequency_penalty,
            "max_tokens": self.cfg.max_tokens,
            "messages": [
                {"role": "system", "content": self.cfg.system_prompt},
                *({"role": m.role, "content": m.content} for m in messages),
            ],
            "presence_penalty": self.cfg.presence_penalty,
            "stream": True,
            "temperature": self.cfg.temperature,
            "top_p": self.cfg.top_p,
        }

    async def handle_chat(self, payload: Any) -> ForwardedStream:
        if not isinstance(payload, dict):
            raise err_invalid_request("body must be a JSON object")
        try:
            request = ChatRequest(**payload)
        except ValidationError as exc:
            raise err_invalid_request(str(exc)) from exc

        messages = select_within_budget(request.messages, self.cfg.char_budget)
        if len(messages) < len(request.messages):
            logger.info(
                "[forwarder] Character budget %d kept %d of %d messages",
                self.cfg.char_budget,
                len(messages),
                len(request.messages),
            )

        provider = self.resolve_provider()
        upstream = self.client.build_request(
            "POST",
            provider.endpoint_url,
            json=self.build_payload(provider, messages),
            headers=provider.headers(),
        )
        started_at = time.time()
        logger.debug(
            "[forwarder] POST %s provider=%s messages=%d",
            provider.endpoint_url,
            provider.kind,
            len(messages),
        )
        resp = await self.client.send(upstream, stream=True)
        if resp.status_code != 200:
            await resp.aclose()
            raise err_upstream_status(resp.status_code, resp.reason_phrase)

        forwarded = ForwardedStream(
            provider=provider.kind,
            model=provider.model,
            messages_received=len(request.messages),
            messages_sent=len(messages),
            started_at=started_at,
        )
        forwarded.chunks = self._relay(resp, forwarded)
        return forwarded

    async def _relay(
        self, resp: httpx.Response, forwarded: ForwardedStream
    ) -> AsyncGenerator[bytes, None]:
        try:
            async for event in iter_events(resp.aiter_text()):
                if event.data == DONE_SENTINEL:
                    return
                text = extract_delta(event.data)
                if not text:
                    continue
                if forwarded.first_token_at is None:
                    forwarded.first_token_at = time.time()
                forwarded.chars_out += len(text)
                yield text.encode("utf-8")
        finally:
            # Runs on completion, error and cancellation (client disconnect)
            await resp.aclose()

    def record_metrics(self, forwarded: ForwardedStream) -> None:
        first = forwarded.first_token_at
        if first is None:
            return
        duration = time.time() - forwarded.started_at
        cps = forwarded.chars_out / duration if duration > 0 else 0.0
        self.metrics.add(
            MetricSample(
                ts=time.time(),
                provider=forwarded.provider,
                model=forwarded.model,
                ttft_ms=(first - forwarded.started_at) * 1000,
                chars_out=forwarded.chars_out,
                duration_ms=duration * 1000,
                chars_per_second=cps,
            )
        )
