"""Redirect chain resolver, driven by in-memory fake fetchers."""

import asyncio

import requests

from scamscope.models import RedirectError
from scamscope.resolver import FetchResponse, RequestsFetcher, is_blocked_host, resolve_redirect_chain


class FakeFetch:
    """Answers from a ``{url: (status, location)}`` table and records calls."""

    def __init__(self, routes, default=(200, None)):
        self.routes = routes
        self.default = default
        self.calls = []

    async def __call__(self, url, method, timeout):
        self.calls.append((method, url))
        answer = self.routes.get((method, url)) or self.routes.get(url) or self.default
        if isinstance(answer, Exception):
            raise answer
        status, location = answer
        return FetchResponse(status=status, location=location)


async def no_lookup(host):
    return []


def resolve(url, fetch, **kwargs):
    kwargs.setdefault("lookup", no_lookup)
    return asyncio.run(resolve_redirect_chain(url, fetch=fetch, **kwargs))


# ============================================================================
# Chains
# ============================================================================

def test_single_redirect():
    fetch = FakeFetch({"https://a.example/": (301, "https://b.example/")})
    res = resolve("https://a.example/", fetch)

    assert res.error is None
    assert res.chain == ["https://a.example/", "https://b.example/"]
    assert res.final_url == "https://b.example/"
    assert res.hops == 1
    assert res.status_chain == [301, 200]


def test_relative_location_is_joined():
    fetch = FakeFetch({"https://a.example/start": (302, "/landing")})
    res = resolve("https://a.example/start", fetch)
    assert res.final_url == "https://a.example/landing"


def test_loop_is_detected():
    fetch = FakeFetch({
        "https://a.example/": (301, "https://b.example/"),
        "https://b.example/": (301, "https://a.example/"),
    })
    res = resolve("https://a.example/", fetch)

    assert res.error == RedirectError.LOOP_DETECTED
    assert res.chain == ["https://a.example/", "https://b.example/", "https://a.example/"]


def test_head_not_allowed_falls_back_to_get():
    fetch = FakeFetch({
        ("HEAD", "https://a.example/"): (405, None),
        ("GET", "https://a.example/"): (200, None),
    })
    res = resolve("https://a.example/", fetch)

    assert res.error is None
    assert [m for m, _ in fetch.calls] == ["HEAD", "GET"]
    assert res.status_chain == [200]


def test_hop_cap():
    class Endless(FakeFetch):
        async def __call__(self, url, method, timeout):
            self.calls.append((method, url))
            return FetchResponse(status=302, location=f"https://h{len(self.calls)}.example/")

    fetch = Endless({})
    res = resolve("https://h0.example/", fetch, max_hops=2)

    assert res.error == RedirectError.MAX_HOPS_REACHED
    assert len(res.chain) == 3
    assert res.hops == 2


# ============================================================================
# Refusals and failures
# ============================================================================

def test_blocked_hosts_are_refused_before_io():
    fetch = FakeFetch({})
    for url in ("http://127.0.0.1/", "http://localhost:8080/x", "http://192.168.0.10/admin"):
        assert resolve(url, fetch).error == RedirectError.BLOCKED_HOST
    assert fetch.calls == []


def test_redirect_into_private_network_is_refused():
    fetch = FakeFetch({"https://a.example/": (302, "http://10.0.0.1/")})
    res = resolve("https://a.example/", fetch)

    assert res.error == RedirectError.BLOCKED_HOST
    assert res.final_url == "http://10.0.0.1/"
    assert len(fetch.calls) == 1


def test_blocked_host_predicate():
    assert is_blocked_host("localhost")
    assert is_blocked_host("169.254.1.1")
    assert is_blocked_host("")
    assert not is_blocked_host("8.8.8.8")
    assert not is_blocked_host("example.com")


def test_numeric_ipv4_spellings_are_refused_before_io():
    fetch = FakeFetch({})
    for url in ("http://2130706433/admin", "http://127.1/admin", "http://0x7f000001/", "http://0x7f.0.0.1/"):
        res = resolve(url, fetch)
        assert res.error == RedirectError.BLOCKED_HOST, url
    assert fetch.calls == []


def test_numeric_host_predicate():
    assert is_blocked_host("2130706433")
    assert is_blocked_host("127.1")
    assert is_blocked_host("0x7f000001")
    assert is_blocked_host("[::ffff:127.0.0.1]")
    assert is_blocked_host("224.0.0.1")
    assert not is_blocked_host("134744072")


def test_redirect_to_numeric_loopback_is_refused():
    fetch = FakeFetch({"https://a.example/": (302, "http://2130706433/")})
    res = resolve("https://a.example/", fetch)

    assert res.error == RedirectError.BLOCKED_HOST
    assert len(fetch.calls) == 1


def test_hostname_resolving_to_internal_address_is_refused():
    async def lookup(host):
        return {"a.example": ["93.184.216.34"], "intranet.example": ["10.1.2.3"]}.get(host, [])

    fetch = FakeFetch({"https://a.example/": (302, "https://intranet.example/")})
    res = resolve("https://a.example/", fetch, lookup=lookup)

    assert res.error == RedirectError.BLOCKED_HOST
    assert res.final_url == "https://intranet.example/"
    assert fetch.calls == [("HEAD", "https://a.example/")]


def test_unresolvable_hostname_is_left_to_the_fetch():
    fetch = FakeFetch({})
    res = resolve("https://nowhere.example/", fetch)

    assert res.error is None
    assert fetch.calls == [("HEAD", "https://nowhere.example/")]


def test_malformed_location_is_reported_not_raised():
    fetch = FakeFetch({"https://a.example/": (302, "http://[::1")})
    res = resolve("https://a.example/", fetch)

    assert res.error == RedirectError.INVALID_URL
    assert res.chain == ["https://a.example/"]
    assert res.status_chain == [302]


def test_unexpected_fetch_error_is_reported_not_raised():
    fetch = FakeFetch({"https://a.example/": RuntimeError("fetcher bug")})
    res = resolve("https://a.example/", fetch)

    assert res.error == RedirectError.FETCH_FAILED
    assert res.final_url == "https://a.example/"


def test_missing_fetch_capability():
    res = resolve("https://a.example/", None)
    assert res.error == RedirectError.FETCH_UNAVAILABLE
    assert res.chain == ["https://a.example/"]


def test_invalid_url():
    res = resolve("not a url", FakeFetch({}))
    assert res.error == RedirectError.INVALID_URL


def test_timeout():
    async def slow(url, method, timeout):
        await asyncio.sleep(1)
        return FetchResponse(status=200)

    res = resolve("https://a.example/", slow, timeout_ms=300)
    assert res.error == RedirectError.TIMEOUT


def test_cancelled_before_start():
    fetch = FakeFetch({})

    async def run():
        cancel = asyncio.Event()
        cancel.set()
        return await resolve_redirect_chain("https://a.example/", fetch=fetch, cancel=cancel, lookup=no_lookup)

    res = asyncio.run(run())
    assert res.error == RedirectError.CANCELLED
    assert fetch.calls == []


def test_cancelled_mid_flight():
    async def run():
        cancel = asyncio.Event()

        async def hanging(url, method, timeout):
            cancel.set()
            await asyncio.sleep(5)
            return FetchResponse(status=200)

        return await resolve_redirect_chain("https://a.example/", fetch=hanging, cancel=cancel, timeout_ms=3000,
                                            lookup=no_lookup)

    assert asyncio.run(run()).error == RedirectError.CANCELLED


def test_network_error():
    fetch = FakeFetch({"https://a.example/": requests.ConnectionError("refused")})
    res = resolve("https://a.example/", fetch)
    assert res.error == RedirectError.FETCH_FAILED


# ============================================================================
# requests-backed fetcher
# ============================================================================

class FakeSession:
    def __init__(self):
        self.headers = {}
        self.calls = []

    def request(self, method, url, **kwargs):
        self.calls.append((method, url, kwargs))
        return FakeResponse()


class FakeResponse:
    status_code = 301
    headers = {"location": "https://next.example/"}
    closed = False

    def close(self):
        FakeResponse.closed = True


def test_requests_fetcher_disables_redirects():
    session = FakeSession()
    fetcher = RequestsFetcher(session=session)

    resp = asyncio.run(fetcher("https://a.example/", "HEAD", 2.5))

    assert (resp.status, resp.location) == (301, "https://next.example/")
    method, url, kwargs = session.calls[0]
    assert (method, url) == ("HEAD", "https://a.example/")
    assert kwargs["allow_redirects"] is False
    assert kwargs["timeout"] == 2.5
    assert FakeResponse.closed
    assert session.headers["User-Agent"].startswith("scamscope-resolver")
