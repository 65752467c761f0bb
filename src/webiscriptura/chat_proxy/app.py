from __future__ import annotations

import logging
import time
from dataclasses import asdict
from typing import Any

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, PlainTextResponse, StreamingResponse

from .config import ProxyConfig
from .config_loader import list_env_overrides, load_file_config
from .errors import InvalidRequestError
from .forwarder import ChatForwarder, ForwardedStream
from .logging_utils import JsonlLogger
from .metrics import MetricsAggregator

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


_cfg = ProxyConfig.load()
_metrics = MetricsAggregator()
_logger = JsonlLogger(_cfg.log_path, _cfg.max_log_bytes)
_forwarder = ChatForwarder(_cfg, _metrics)

CONFIG_PRECEDENCE = [
    "Environment variables (WEBISCRIPTURA_*)",
    "Config file (configs/webiscriptura.toml)",
    "Built-in defaults",
]

app = FastAPI(title="WebiScriptura Chat Proxy", version="0.1")


def _log_request(status: str, forwarded: ForwardedStream | None = None, **extra):
    record: dict[str, Any] = {
        "ts": time.strftime("%Y-%m-%dT%H:%M:%S", time.gmtime()),
        "status": status,
    }
    if forwarded is not None:
        record.update(
            {
                "provider": forwarded.provider,
                "model": forwarded.model,
                "messages_received": forwarded.messages_received,
                "messages_sent": forwarded.messages_sent,
                "chars_out": forwarded.chars_out,
            }
        )
    record.update(extra)
    _logger.log(record)


@app.on_event("shutdown")
async def _shutdown():  # pragma: no cover
    await _forwarder.aclose()


@app.post("/api/chat-completion")
async def chat_completion(req: Request):
    try:
        payload = await req.json()
        forwarded = await _forwarder.handle_chat(payload)
    except (ValueError, InvalidRequestError) as exc:
        # Malformed JSON or a rejected body never reaches a provider
        logger.exception("[app] Invalid chat request: %s", exc)
        _metrics.add_invalid()
        _log_request("invalid", error=type(exc).__name__)
        return PlainTextResponse("Error", status_code=500)
    except Exception as exc:  # noqa: BLE001
        logger.exception("[app] Chat completion failed: %s", exc)
        _metrics.add_failure(_forwarder.resolve_provider().kind)
        _log_request("error", error=type(exc).__name__)
        return PlainTextResponse("Error", status_code=500)

    async def streamer():
        chunks = forwarded.chunks
        # Anything that is not a normal end or an Exception is the client leaving
        outcome, error = "cancelled", None
        try:
            async for chunk in chunks:
                yield chunk
            outcome = "ok"
        except Exception as exc:
            outcome, error = "aborted", type(exc).__name__
            logger.exception("[app] Upstream stream aborted: %s", exc)
            _metrics.add_failure(forwarded.provider)
            raise
        finally:
            await chunks.aclose()
            if outcome == "ok":
                _forwarder.record_metrics(forwarded)
            elif outcome == "cancelled":
                logger.info("[app] Client went away; upstream stream closed.")
            extra = {"error": error} if error else {}
            _log_request(outcome, forwarded, **extra)

    return StreamingResponse(streamer(), media_type="text/plain; charset=utf-8")


@app.get("/v1/metrics")
async def metrics_api():
    if not _cfg.enable_metrics:
        return JSONResponse(
            status_code=404,
            content={
                "error": {
                    "type": "metrics_disabled",
                    "code": 404,
                    "message": "Metrics disabled",
                }
            },
        )
    return _metrics.summary()


@app.get("/v1/config")
async def read_config():
    return {
        "runtime": asdict(_cfg),
        "file": load_file_config(),
        "env_overrides": list_env_overrides(),
        "config_file": _cfg.config_file_path,
        "precedence": CONFIG_PRECEDENCE,
    }


@app.get("/v1/health")
async def health():
    return {"status": "ok", "uptime_seconds": _metrics.summary().get("uptime_seconds")}


def main():  # pragma: no cover
    import uvicorn

    uvicorn.run(app, host=_cfg.host, port=_cfg.port)


if __name__ == "__main__":  # pragma: no cover
    main()
