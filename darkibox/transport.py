# transport.py
import concurrent.futures
import io
import logging
import threading
from typing import Any, Optional

import requests

from .exceptions import (
    DecodeError,
    OperationCancelled,
    RateLimitExceeded,
    RemoteError,
    TransportError,
)
from .pacer import Pacer

RETRY_STATUS_CODES = (429, 500, 502, 503, 504, 509)
CHUNK_SIZE = 64 * 1024
# How often an in-flight request checks its cancel event.
CANCEL_POLL_INTERVAL = 0.05
MAX_INFLIGHT = 32


class _BodyReader:
    """
    File-like wrapper around an upload stream.

    Advertises a fixed length so requests sends a Content-Length header, and
    checks the cancel event before handing out each chunk.
    """

    def __init__(self, stream, length: int, cancel: Optional[threading.Event] = None):
        self._stream = stream
        self._remaining = length
        self._length = length
        self._cancel = cancel

    def __len__(self):
        return self._length

    def read(self, size: int = -1) -> bytes:
        if self._cancel is not None and self._cancel.is_set():
            raise OperationCancelled("Upload cancelled while sending the body")
        if self._remaining <= 0:
            return b""
        if size is None or size < 0 or size > self._remaining:
            size = self._remaining
        chunk = self._stream.read(size)
        self._remaining -= len(chunk)
        return chunk

    def __iter__(self):
        while True:
            chunk = self.read(CHUNK_SIZE)
            if not chunk:
                break
            yield chunk


def _error_message(response: requests.Response) -> str:
    """Pulls a human readable message out of an error response."""
    try:
        payload = response.json()
    except ValueError:
        return (response.text or "").strip()[:500]
    if isinstance(payload, dict):
        for key in ("error", "message", "msg"):
            if payload.get(key):
                return str(payload[key])
    return str(payload)[:500]


def _streams(body, files: Optional[dict]) -> list:
    streams = [body] if body is not None else []
    for value in (files or {}).values():
        fileobj = value[1] if isinstance(value, tuple) else value
        if hasattr(fileobj, "read"):
            streams.append(fileobj)
    return streams


def _positions(streams: list) -> Optional[list]:
    """Returns the current offset of every stream, or None if any of them cannot seek."""
    positions = []
    for stream in streams:
        try:
            if not stream.seekable():
                return None
            positions.append(stream.tell())
        except (AttributeError, OSError):
            return None
    return positions


def _close_abandoned(future: concurrent.futures.Future):
    """Releases the connection of a response nobody is waiting for anymore."""
    if not future.cancelled() and future.exception() is None:
        future.result().close()


def _retry_after(response: requests.Response) -> Optional[float]:
    value = response.headers.get("Retry-After")
    if not value:
        return None
    try:
        return max(float(value), 0.0)
    except ValueError:
        return None


class RestTransport:
    """
    The single choke point for HTTP calls to the remote.

    One instance is meant to be created by whoever wires the adapters
    together and shared between them; every request goes through the same
    Pacer so the pacing budget is global.
    """

    def __init__(
        self,
        base_url: str,
        pacer: Optional[Pacer] = None,
        session: Optional[requests.Session] = None,
        timeout: float = 60.0,
        retries: int = 10,
    ):
        if retries < 1:
            raise ValueError("retries must be at least 1")
        self.base_url = base_url.rstrip("/")
        self.pacer = pacer or Pacer()
        self.session = session or requests.Session()
        self.timeout = timeout
        self.retries = retries
        self._executor = concurrent.futures.ThreadPoolExecutor(
            max_workers=MAX_INFLIGHT, thread_name_prefix="darkibox-request"
        )

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    def close(self):
        self._executor.shutdown(wait=False, cancel_futures=True)
        self.session.close()

    def _send(self, method: str, target: str, cancel: Optional[threading.Event], **kwargs) -> requests.Response:
        """
        Performs one HTTP round trip. With a cancel event the call runs on a
        worker thread so the caller can walk away from it as soon as the
        event is set; the abandoned response is closed when it arrives.
        """
        if cancel is None:
            return self.session.request(method, target, **kwargs)

        future = self._executor.submit(self.session.request, method, target, **kwargs)
        while True:
            done, _ = concurrent.futures.wait([future], timeout=CANCEL_POLL_INTERVAL)
            if done:
                return future.result()
            if cancel.is_set():
                future.add_done_callback(_close_abandoned)
                raise OperationCancelled(f"{method} {target} cancelled while in flight")

    def _target(self, path: str, url: Optional[str]) -> str:
        if url:
            return url
        return f"{self.base_url}/{path.lstrip('/')}"

    def execute(
        self,
        method: str,
        path: str = "",
        *,
        params: Optional[dict] = None,
        headers: Optional[dict] = None,
        body: Any = None,
        content_length: Optional[int] = None,
        data: Optional[dict] = None,
        files: Optional[dict] = None,
        url: Optional[str] = None,
        cancel: Optional[threading.Event] = None,
    ) -> requests.Response:
        """
        Sends one logical request, retrying transient failures.

        `body` may be bytes or a binary stream; `content_length` is required
        for streams. `data`/`files` are passed through for multipart forms.
        `url` overrides base_url + path for absolute endpoints.
        """
        target = self._target(path, url)

        if isinstance(body, (bytes, bytearray)):
            if content_length is None:
                content_length = len(body)
            body = io.BytesIO(bytes(body))
        if body is not None and content_length is None:
            raise ValueError("content_length is required for streamed bodies")

        streams = _streams(body, files)
        starts = _positions(streams)
        # A body we cannot rewind can only be sent once.
        attempts = self.retries if starts is not None else 1

        last_error: Optional[Exception] = None
        for attempt in range(1, attempts + 1):
            if starts:
                for stream, position in zip(streams, starts):
                    stream.seek(position)
            payload = data
            if body is not None:
                payload = _BodyReader(body, content_length, cancel)

            self.pacer.begin_call(cancel)
            try:
                response = self._send(
                    method,
                    target,
                    cancel,
                    params=params,
                    headers=headers,
                    data=payload,
                    files=files,
                    timeout=self.timeout,
                )
            except OperationCancelled:
                self.pacer.end_call(retry=False)
                raise
            except (requests.ConnectionError, requests.Timeout) as e:
                self.pacer.end_call(retry=True)
                last_error = TransportError(f"{method} {target} failed: {e}", path=path)
                logging.warning(
                    f"Transport error on {method} {target} (attempt {attempt}/{attempts}): {e}"
                )
                continue

            if response.status_code in RETRY_STATUS_CODES:
                self.pacer.end_call(retry=True, retry_after=_retry_after(response))
                message = _error_message(response)
                response.close()
                if response.status_code == 429:
                    last_error = RateLimitExceeded(
                        f"{method} {target} still throttled after {attempt} attempts: {message}",
                        path=path,
                        attempts=attempt,
                    )
                else:
                    last_error = RemoteError(response.status_code, message, path=path)
                logging.warning(
                    f"Retryable HTTP {response.status_code} on {method} {target} "
                    f"(attempt {attempt}/{attempts})"
                )
                continue

            self.pacer.end_call(retry=False)
            if not response.ok:
                raise RemoteError(response.status_code, _error_message(response), path=path)
            return response

        logging.error(f"Giving up on {method} {target} after {attempts} attempts: {last_error}")
        raise last_error

    def call_json(self, method: str, path: str = "", **kwargs) -> Any:
        """Like execute, but decodes the response body as JSON."""
        response = self.execute(method, path, **kwargs)
        try:
            return response.json()
        except ValueError as e:
            raise DecodeError(
                f"Invalid JSON in response to {method} {path or kwargs.get('url')}: {e}",
                path=path,
            ) from e
