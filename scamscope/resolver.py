"""
resolver.py — Redirect Chain Resolver
=====================================

Follows real HTTP redirects for a URL, up to a hop cap, so the final
destination of a shortened or cloaked link can be inspected.

Mechanics:
    1. The start URL is normalised (defanged forms accepted) and validated
    2. Loopback / private / link-local hosts are refused before any I/O,
       including integer, short and hex IPv4 spellings and hostnames whose
       DNS answers point into those ranges
    3. Each hop issues HEAD (GET only when HEAD answers 405/501) with
       redirects disabled and reads ``Location``
    4. The chase stops on a non-redirect answer, a repeated URL, the hop cap,
       a per-hop timeout, or cancellation

Failures are reported as ``RedirectError`` values on the result. Nothing is
retried and nothing is raised for network problems.

The HTTP call itself is an injected ``fetch`` capability. ``RequestsFetcher``
runs a blocking ``requests`` call in a worker thread.
"""

import asyncio
import ipaddress
import logging
import re
import socket
from dataclasses import dataclass
from typing import Awaitable, Callable, List, Optional, Set
from urllib.parse import urljoin

import requests

from scamscope.models import RedirectError, RedirectResolution
from scamscope.urls import norm_host, normalize_to_url_string, safe_parse_url

logger = logging.getLogger(__name__)


DEFAULT_MAX_HOPS = 5
DEFAULT_TIMEOUT_MS = 2500
MIN_TIMEOUT_MS = 300


@dataclass
class FetchResponse:
    status: int
    location: Optional[str] = None


Fetch = Callable[[str, str, float], Awaitable[FetchResponse]]
Lookup = Callable[[str], Awaitable[List[str]]]


class _Cancelled(Exception):
    pass


class RequestsFetcher:
    """``fetch`` capability backed by a ``requests.Session``."""

    def __init__(self, session: Optional[requests.Session] = None, user_agent: str = "scamscope-resolver/1.0"):
        self._session = session or requests.Session()
        self._session.headers.setdefault("User-Agent", user_agent)

    async def __call__(self, url: str, method: str, timeout: float) -> FetchResponse:
        return await asyncio.to_thread(self._fetch, url, method, timeout)

    def _fetch(self, url: str, method: str, timeout: float) -> FetchResponse:
        resp = self._session.request(method, url, allow_redirects=False, timeout=timeout, stream=True)
        try:
            return FetchResponse(status=resp.status_code, location=resp.headers.get("location"))
        finally:
            resp.close()


_NUMERIC_HOST = re.compile(r'^(0x[0-9a-f]+|[0-9]+)(\.(0x[0-9a-f]+|[0-9]+)){0,3}$')


def _literal_ip(host: str):
    """Parse ``host`` as an IP, accepting the integer, short and hex IPv4
    spellings (``2130706433``, ``127.1``, ``0x7f000001``) that HTTP clients
    still connect to."""
    try:
        return ipaddress.ip_address(host.split("%", 1)[0])
    except ValueError:
        pass
    if not _NUMERIC_HOST.match(host):
        return None
    try:
        return ipaddress.IPv4Address(socket.inet_aton(host))
    except OSError:
        return None


def _is_internal_ip(ip) -> bool:
    mapped = getattr(ip, "ipv4_mapped", None)
    if mapped is not None:
        ip = mapped
    return (ip.is_loopback or ip.is_private or ip.is_link_local or ip.is_unspecified
            or ip.is_reserved or ip.is_multicast)


def is_blocked_host(host: str) -> bool:
    """True for localhost and for loopback, private, link-local, reserved,
    multicast or unspecified IP literals. No DNS lookup happens here."""
    h = norm_host(host).strip("[]")
    if not h:
        return True
    if h == "localhost" or h.endswith(".localhost"):
        return True
    ip = _literal_ip(h)
    return ip is not None and _is_internal_ip(ip)


async def system_lookup(host: str) -> List[str]:
    """Addresses ``host`` resolves to, or [] when it does not resolve."""
    try:
        infos = await asyncio.to_thread(socket.getaddrinfo, host, None)
    except (socket.gaierror, UnicodeError, OSError) as exc:
        logger.debug(f"Lookup failed for {host}: {exc}")
        return []
    return [info[4][0] for info in infos]


async def resolves_to_blocked(host: str, lookup: Lookup) -> bool:
    """True when any address ``lookup`` returns for ``host`` is internal.

    An unresolvable host is not blocked; the fetch itself fails later.
    """
    for addr in await lookup(norm_host(host).strip("[]")):
        ip = _literal_ip(str(addr))
        if ip is not None and _is_internal_ip(ip):
            logger.warning(f"Host {host} resolves to internal address {addr}")
            return True
    return False


async def _guarded(fetch: Fetch, url: str, method: str, timeout: float,
                   cancel: Optional[asyncio.Event]) -> FetchResponse:
    """Run one fetch bounded by ``timeout`` and interruptible by ``cancel``."""
    task = asyncio.ensure_future(fetch(url, method, timeout))
    if cancel is None:
        return await asyncio.wait_for(task, timeout)

    waiter = asyncio.ensure_future(cancel.wait())
    try:
        done, _ = await asyncio.wait({task, waiter}, timeout=timeout,
                                     return_when=asyncio.FIRST_COMPLETED)
    finally:
        waiter.cancel()

    if task in done:
        return task.result()
    task.cancel()
    if waiter in done:
        raise _Cancelled()
    raise asyncio.TimeoutError()


async def resolve_redirect_chain(
    start_url: str,
    fetch: Optional[Fetch] = None,
    max_hops: int = DEFAULT_MAX_HOPS,
    timeout_ms: int = DEFAULT_TIMEOUT_MS,
    cancel: Optional[asyncio.Event] = None,
    lookup: Optional[Lookup] = system_lookup,
) -> RedirectResolution:
    """Follow redirects from ``start_url``.

    Args:
        start_url: URL as found in text; defanged forms are accepted.
        fetch: Async HTTP capability. When None the result carries
            ``FETCH_UNAVAILABLE``.
        max_hops: Maximum redirects followed.
        timeout_ms: Per-hop timeout (floored at 300 ms).
        cancel: Event that aborts the chase when set.
        lookup: Async host-to-addresses capability checked before every
            fetch; hosts resolving to internal addresses are refused.
            None skips the DNS check.

    Returns:
        RedirectResolution with the visited chain, status codes and the
        typed error, if any.
    """
    normalized = normalize_to_url_string(start_url or "")
    parts = safe_parse_url(normalized)
    if parts is None:
        return RedirectResolution(start_url=start_url, final_url=start_url, error=RedirectError.INVALID_URL)
    if parts.scheme.lower() not in ("http", "https"):
        return RedirectResolution(start_url=normalized, chain=[normalized], final_url=normalized,
                                  error=RedirectError.UNSUPPORTED_PROTOCOL)
    if is_blocked_host(parts.hostname or ""):
        return RedirectResolution(start_url=normalized, chain=[normalized], final_url=normalized,
                                  error=RedirectError.BLOCKED_HOST)

    hops_cap = max(0, int(max_hops))
    timeout = max(MIN_TIMEOUT_MS, int(timeout_ms)) / 1000.0

    seen: Set[str] = set()
    chain = []
    status_chain = []

    def result(final_url: str, hops: int, error: Optional[RedirectError] = None) -> RedirectResolution:
        if error is not None:
            logger.warning(f"Redirect chase stopped | {normalized} | hops={hops} | {error.value}")
        return RedirectResolution(start_url=normalized, chain=list(chain), final_url=final_url,
                                  hops=hops, status_chain=list(status_chain), error=error)

    current = normalized
    for hop in range(hops_cap + 1):
        if current in seen:
            chain.append(current)
            return result(current, hop, RedirectError.LOOP_DETECTED)
        seen.add(current)
        chain.append(current)

        cur_parts = safe_parse_url(current)
        if cur_parts is None:
            return result(current, hop, RedirectError.INVALID_URL)
        if is_blocked_host(cur_parts.hostname or ""):
            return result(current, hop, RedirectError.BLOCKED_HOST)
        if fetch is None:
            return result(current, hop, RedirectError.FETCH_UNAVAILABLE)
        if cancel is not None and cancel.is_set():
            return result(current, hop, RedirectError.CANCELLED)
        if lookup is not None and await resolves_to_blocked(cur_parts.hostname or "", lookup):
            return result(current, hop, RedirectError.BLOCKED_HOST)

        try:
            resp = await _guarded(fetch, current, "HEAD", timeout, cancel)
            if resp.status in (405, 501):
                resp = await _guarded(fetch, current, "GET", timeout, cancel)
        except _Cancelled:
            return result(current, hop, RedirectError.CANCELLED)
        except (asyncio.TimeoutError, requests.Timeout):
            return result(current, hop, RedirectError.TIMEOUT)
        except (requests.RequestException, OSError) as exc:
            logger.debug(f"Fetch failed for {current}: {exc}")
            return result(current, hop, RedirectError.FETCH_FAILED)
        except Exception:
            logger.exception(f"Unexpected fetch error for {current}")
            return result(current, hop, RedirectError.FETCH_FAILED)

        status_chain.append(resp.status)
        if 300 <= resp.status < 400 and resp.location:
            try:
                current = normalize_to_url_string(urljoin(current, resp.location.strip()))
            except ValueError:
                return result(current, hop, RedirectError.INVALID_URL)
            continue

        return result(current, hop)

    return result(chain[-1] if chain else normalized, hops_cap, RedirectError.MAX_HOPS_REACHED)
