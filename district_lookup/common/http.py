"""HTTP client with retries, timeouts, and host-aware rate limiting."""

from __future__ import annotations

import os
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from types import TracebackType
from typing import Any, Mapping
from urllib.parse import urlparse

import requests
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential_jitter

from district_lookup.common.constants import USER_AGENT
from district_lookup.common.errors import StageError
from district_lookup.common.fs import ensure_dir

RETRYABLE_STATUS_CODES = {408, 425, 429, 500, 502, 503, 504}
DOWNLOAD_CHUNK_SIZE = 1024 * 128
DEFAULT_RATE_LIMITS = {"geocoder": 5.0}


@dataclass(frozen=True)
class TimeoutConfig:
    connect: float = 20.0
    read: float = 120.0

    @classmethod
    def bounded(cls, seconds: float) -> "TimeoutConfig":
        return cls(connect=seconds, read=seconds)


@dataclass(frozen=True)
class RetryConfig:
    max_attempts: int = 3
    multiplier: float = 1.0
    max_wait: float = 10.0


class HttpRequestError(StageError):
    error_code = "HTTP_ERROR"


class RetryableHttpError(HttpRequestError):
    pass


class RequestPacer:
    """Token bucket shared by every request of one source type to one host."""

    def __init__(self, rate_per_sec: float, burst: float | None = None) -> None:
        self.rate_per_sec = rate_per_sec
        self.burst = burst if burst is not None else max(rate_per_sec, 1.0)
        self.available = self.burst
        self.refilled_at = time.monotonic()
        self.lock = threading.Lock()

    def wait_turn(self) -> None:
        while True:
            with self.lock:
                now = time.monotonic()
                self.available = min(self.burst, self.available + (now - self.refilled_at) * self.rate_per_sec)
                self.refilled_at = now
                if self.available >= 1.0:
                    self.available -= 1.0
                    return
                pause = max((1.0 - self.available) / self.rate_per_sec, 0.01)
            time.sleep(pause)


class HttpClient:
    def __init__(
        self,
        *,
        timeout: TimeoutConfig | None = None,
        retry: RetryConfig | None = None,
        rate_limits: Mapping[str, float] | None = None,
    ) -> None:
        self.timeout = timeout or TimeoutConfig()
        self.retry = retry or RetryConfig()
        self.session = requests.Session()
        self.rate_limits = dict(DEFAULT_RATE_LIMITS if rate_limits is None else rate_limits)
        self._pacers: dict[tuple[str, str], RequestPacer] = {}
        self._pacers_lock = threading.Lock()

    def close(self) -> None:
        self.session.close()

    def __enter__(self) -> "HttpClient":
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()

    def _pace(self, url: str, source_type: str) -> None:
        rate = self.rate_limits.get(source_type)
        if not rate:
            return
        key = (source_type, urlparse(url).netloc)
        with self._pacers_lock:
            pacer = self._pacers.get(key)
            if pacer is None:
                pacer = self._pacers[key] = RequestPacer(rate)
        pacer.wait_turn()

    def _headers(self, headers: dict[str, str] | None, accept: str = "application/json") -> dict[str, str]:
        out = {"User-Agent": USER_AGENT, "Accept": accept}
        if headers:
            out.update(headers)
        return out

    def _raise_for_status_or_retry(self, response: requests.Response) -> None:
        status = response.status_code
        if status in RETRYABLE_STATUS_CODES:
            raise RetryableHttpError(f"Retryable HTTP status: {status}")
        if status >= 400:
            raise HttpRequestError(f"HTTP status: {status}")

    def _send(self, url: str, **kwargs: Any) -> requests.Response:
        try:
            return self.session.request(url=url, **kwargs)
        except (requests.Timeout, requests.ConnectionError) as exc:
            raise RetryableHttpError(f"Transport failure for {url}: {exc}") from exc
        except requests.RequestException as exc:
            raise HttpRequestError(f"Request failed for {url}: {exc}") from exc

    def _retrying(self, func):
        return retry(
            stop=stop_after_attempt(self.retry.max_attempts),
            wait=wait_exponential_jitter(
                initial=self.retry.multiplier,
                max=self.retry.max_wait,
                jitter=1.0,
            ),
            retry=retry_if_exception_type(RetryableHttpError),
            reraise=True,
        )(func)

    def _request_json(
        self,
        method: str,
        url: str,
        *,
        source_type: str,
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
        timeout: TimeoutConfig | None = None,
    ) -> dict[str, Any]:
        req_timeout = timeout or self.timeout
        self._pace(url, source_type)

        response = self._send(
            url,
            method=method,
            params=params,
            headers=self._headers(headers),
            timeout=(req_timeout.connect, req_timeout.read),
        )
        self._raise_for_status_or_retry(response)

        try:
            payload = response.json()
        except ValueError as exc:
            raise HttpRequestError(f"Invalid JSON payload from {url}") from exc

        return payload

    def get_json(
        self,
        url: str,
        *,
        source_type: str,
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
        timeout: TimeoutConfig | None = None,
    ) -> dict[str, Any]:
        def _wrapped() -> dict[str, Any]:
            return self._request_json(
                "GET",
                url,
                source_type=source_type,
                params=params,
                headers=headers,
                timeout=timeout,
            )

        return self._retrying(_wrapped)()

    def _download_once(self, url: str, target_path: Path, timeout: TimeoutConfig) -> Path:
        ensure_dir(target_path.parent)
        part_path = target_path.with_name(f"{target_path.name}.part")
        response = self._send(
            url,
            method="GET",
            headers=self._headers(None, accept="*/*"),
            timeout=(timeout.connect, timeout.read),
            stream=True,
        )
        try:
            self._raise_for_status_or_retry(response)
            with part_path.open("wb") as f:
                for chunk in response.iter_content(chunk_size=DOWNLOAD_CHUNK_SIZE):
                    if chunk:
                        f.write(chunk)
        except requests.RequestException as exc:
            part_path.unlink(missing_ok=True)
            raise RetryableHttpError(f"Stream interrupted for {url}: {exc}") from exc
        except BaseException:
            part_path.unlink(missing_ok=True)
            raise
        finally:
            response.close()

        os.replace(part_path, target_path)
        return target_path

    def download_to(self, url: str, target_path: Path, *, timeout: TimeoutConfig | None = None) -> Path:
        """Stream ``url`` into ``target_path``; the target only appears once the body is complete."""
        req_timeout = timeout or self.timeout
        return self._retrying(lambda: self._download_once(url, target_path, req_timeout))()
