from __future__ import annotations

import http.client
import json
import logging
import threading
import urllib.error
import urllib.request
from pathlib import Path
from typing import Any, Dict, Optional, Protocol

from .errors import NetworkError, OperationCancelled, ParseError

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30.0
DOWNLOAD_CHUNK_SIZE = 64 * 1024


class Transport(Protocol):
    def post_json(
        self, url: str, payload: Any, headers: Optional[Dict[str, str]] = None
    ) -> Any:  # pragma: no cover - protocol
        ...

    def download(
        self,
        url: str,
        dest: Path,
        headers: Optional[Dict[str, str]] = None,
        cancel: Optional[threading.Event] = None,
    ) -> None:  # pragma: no cover - protocol
        ...


def _build_request(url: str, headers: Optional[Dict[str, str]], **kwargs: Any) -> urllib.request.Request:
    request = urllib.request.Request(url, **kwargs)
    if headers:
        for key, value in headers.items():
            if value is not None:
                request.add_header(key, value)
    return request


class UrllibTransport:
    """Blocking HTTP with a bounded timeout and no retries.

    The timeout applies to the connection attempt and to every socket read.
    """

    def __init__(self, timeout: float = DEFAULT_TIMEOUT) -> None:
        self.timeout = timeout

    def post_json(self, url: str, payload: Any, headers: Optional[Dict[str, str]] = None) -> Any:
        body = json.dumps(payload).encode("utf-8")
        merged = {"Content-Type": "application/json", "Accept": "application/json"}
        merged.update(headers or {})
        logger.debug("POST %s (%d bytes)", url, len(body))
        try:
            request = _build_request(url, merged, data=body, method="POST")
            with urllib.request.urlopen(request, timeout=self.timeout) as response:
                raw = response.read()
        except urllib.error.HTTPError as exc:
            detail = exc.read().decode("utf-8", errors="ignore")
            message = detail or exc.reason
            raise NetworkError(f"HTTP {exc.code} error posting to {url}: {message}") from exc
        except urllib.error.URLError as exc:
            raise NetworkError(f"Network error posting to {url}: {exc.reason}") from exc
        except (TimeoutError, OSError) as exc:
            raise NetworkError(f"Network error posting to {url}: {exc}") from exc
        except http.client.HTTPException as exc:
            raise NetworkError(f"Bad HTTP response from {url}: {exc!r}") from exc
        except ValueError as exc:
            raise NetworkError(f"Cannot request {url!r}: {exc}") from exc

        try:
            return json.loads(raw.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise ParseError(f"Invalid JSON payload from {url}: {exc}") from exc

    def download(
        self,
        url: str,
        dest: Path,
        headers: Optional[Dict[str, str]] = None,
        cancel: Optional[threading.Event] = None,
    ) -> None:
        dest.parent.mkdir(parents=True, exist_ok=True)
        logger.debug("GET %s -> %s", url, dest)
        try:
            request = _build_request(url, headers)
            with urllib.request.urlopen(request, timeout=self.timeout) as response, dest.open("wb") as handle:
                for chunk in iter(lambda: response.read(DOWNLOAD_CHUNK_SIZE), b""):
                    if cancel is not None and cancel.is_set():
                        raise OperationCancelled(f"Download of {url} cancelled")
                    handle.write(chunk)
        except urllib.error.HTTPError as exc:
            raise NetworkError(f"HTTP {exc.code} error downloading {url}: {exc.reason}") from exc
        except urllib.error.URLError as exc:
            raise NetworkError(f"Failed to download {url}: {exc.reason}") from exc
        except (TimeoutError, ConnectionError) as exc:
            raise NetworkError(f"Failed to download {url}: {exc}") from exc
        except http.client.HTTPException as exc:
            raise NetworkError(f"Bad HTTP response downloading {url}: {exc!r}") from exc
        except ValueError as exc:
            raise NetworkError(f"Cannot download {url!r}: {exc}") from exc
