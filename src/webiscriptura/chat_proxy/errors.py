from __future__ import annotations


class ProxyError(Exception):
    def __init__(self, err_type: str, message: str):
        super().__init__(message)
        self.err_type = err_type
        self.message = message


class InvalidRequestError(ProxyError):
    pass


class UpstreamError(ProxyError):
    def __init__(self, status_code: int, status_text: str):
        super().__init__(
            "upstream_error",
            "The upstream completion API has encountered an error with a status "
            f"code of {status_code} and message {status_text}",
        )
        self.status_code = status_code
        self.status_text = status_text


class StreamPayloadError(ProxyError):
    pass


def err_invalid_request(reason: str) -> InvalidRequestError:
    return InvalidRequestError("invalid_request", f"Invalid chat request: {reason}")


def err_upstream_status(status_code: int, status_text: str) -> UpstreamError:
    return UpstreamError(status_code, status_text)


def err_stream_payload(reason: str, data: str) -> StreamPayloadError:
    return StreamPayloadError(
        "stream_payload", f"Malformed upstream event ({reason}): {data[:200]!r}"
    )
