from __future__ import annotations

import json
import logging
import os
import ssl
import time
from functools import lru_cache
from urllib.error import HTTPError
from urllib.parse import urlencode
from urllib.request import Request, urlopen

import certifi

LOGGER = logging.getLogger("kalshi_deployer")


@lru_cache(maxsize=1)
def _ssl_context() -> ssl.SSLContext:
    # SSL_CERT_FILE / SSL_CERT_DIR override the bundled CA store.
    env_capath = os.getenv("SSL_CERT_DIR")
    if env_capath and not os.getenv("SSL_CERT_FILE"):
        return ssl.create_default_context(capath=env_capath)
    return ssl.create_default_context(cafile=os.getenv("SSL_CERT_FILE") or certifi.where())


def get_json(
    url: str,
    params: dict[str, str] | None = None,
    timeout: float = 10.0,
    retries: int = 3,
    backoff_seconds: float = 2.0,
):
    if params:
        query = urlencode(params)
        separator = "&" if "?" in url else "?"
        full_url = f"{url}{separator}{query}"
    else:
        full_url = url

    request = Request(
        full_url,
        headers={"User-Agent": "kalshi-deployer/0.1", "Accept": "application/json"},
    )
    attempts = max(1, retries)
    for attempt in range(attempts):
        try:
            with urlopen(request, timeout=timeout, context=_ssl_context()) as response:
                body = response.read().decode("utf-8")
            return json.loads(body)
        except HTTPError as exc:
            if exc.code != 429:
                raise
            if attempt == attempts - 1:
                LOGGER.warning("rate_limited url=%s attempt=%s giving up", url, attempt + 1)
                break
            # 4s, then 8s with the default backoff
            delay = backoff_seconds * (2 ** (attempt + 1))
            LOGGER.warning("rate_limited url=%s attempt=%s wait=%.1fs", url, attempt + 1, delay)
            time.sleep(delay)
    raise RuntimeError(f"Max retries exceeded (rate limited) url={url}")
