"""GET-JSON helper with bounded retries for the reference-rate endpoints.

stdlib urllib only; the rate providers are the sole callers. Retries back off
exponentially and every failure mode collapses into `HttpError` so callers
have one thing to catch.
"""

from __future__ import annotations

import json
import logging
import time
import urllib.error
import urllib.request
from typing import Any, Dict, Mapping, Optional

logger = logging.getLogger("cuentas.http")

DEFAULT_HEADERS = {"Accept": "application/json", "User-Agent": "cuentas/0.1"}


class HttpError(Exception):
    def __init__(self, message: str, url: str):
        super().__init__(message)
        self.url = url


def get_json(
    url: str,
    *,
    timeout: float = 5.0,
    retries: int = 2,
    backoff: float = 0.5,
    headers: Optional[Mapping[str, str]] = None,
) -> Dict[str, Any]:
    request = urllib.request.Request(url, headers={**DEFAULT_HEADERS, **(headers or {})})
    last_err: Optional[Exception] = None
    for attempt in range(retries + 1):
        try:
            with urllib.request.urlopen(request, timeout=timeout) as resp:  # nosec B310
                if resp.status >= 400:
                    raise HttpError(f"HTTP {resp.status} for {url}", url)
                payload = json.loads(resp.read().decode("utf-8"))
                if not isinstance(payload, dict):
                    raise ValueError("expected a JSON object")
                return payload
        except (
            urllib.error.URLError,
            TimeoutError,
            HttpError,
            ValueError,
        ) as e:  # ValueError covers bad JSON
            last_err = e
            logger.warning(
                "rate endpoint request failed",
                extra={"url": url, "attempt": attempt + 1, "error": str(e)},
            )
            if attempt == retries:
                break
            time.sleep(backoff * (2**attempt))
    raise HttpError(f"Failed to fetch JSON from {url}: {last_err}", url)
