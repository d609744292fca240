"""Reachability Verifier.

Filters discovered candidates down to domains that resolve to a live site.
LLM discovery regularly invents or mangles domains, so every candidate is
probed before any expensive extraction is spent on it.
"""

from __future__ import annotations

import logging
from typing import Optional

import httpx

from ...constants import PROBE_USER_AGENT
from .http_client import Timeouts
from .urls import normalize_url, www_variant

logger = logging.getLogger(__name__)


async def _probe(client: httpx.AsyncClient, url: str, timeout: float) -> bool:
    """HEAD *url*; True on 2xx/3xx. Never raises."""
    try:
        response = await client.head(
            url,
            timeout=timeout,
            headers={"User-Agent": PROBE_USER_AGENT},
        )
    except httpx.TimeoutException:
        print(f"⚠️ [VERIFY] Timeout probing {url}")
        return False
    except Exception as exc:
        logger.debug("Probe failed for %s: %s", url, exc)
        return False
    return 200 <= response.status_code < 400


async def verify_url_accessible(
    domain: str,
    *,
    client: Optional[httpx.AsyncClient] = None,
    timeout: float = Timeouts.VERIFY,
) -> bool:
    """Return True if *domain* (or its ``www.`` variant) answers a HEAD probe.

    Parameters
    ----------
    domain:
        Bare domain or scheme-prefixed URL. ``https://`` is assumed when the
        scheme is missing.
    client:
        Optional shared ``httpx.AsyncClient``; a short-lived one is created
        otherwise.
    timeout:
        Per-attempt timeout in seconds.

    Returns
    -------
    bool
        Never raises — every failure is reported as ``False``.
    """
    if not domain or not domain.strip():
        return False

    url = normalize_url(domain)
    attempts = (url, www_variant(url))

    try:
        if client is not None:
            return await _probe_all(client, attempts, timeout)
        async with httpx.AsyncClient(follow_redirects=True) as own_client:
            return await _probe_all(own_client, attempts, timeout)
    except Exception as exc:
        print(f"❌ [VERIFY] Verification failed for {domain}: {exc}")
        return False


async def _probe_all(client: httpx.AsyncClient, attempts: tuple[str, ...], timeout: float) -> bool:
    for attempt, url in enumerate(attempts):
        if await _probe(client, url, timeout):
            if attempt > 0:
                print(f"✅ [VERIFY] {url} reachable via www fallback")
            return True
    print(f"❌ [VERIFY] Unreachable: {attempts[0]}")
    return False
