"""Unit tests for PublicIPResolver."""

from typing import Dict, List, Union

import pytest

from cloudflare_ddns.errors import ErrorKind, ResolveError, TransportError
from cloudflare_ddns.models import AddressFamily
from cloudflare_ddns.resolver import DEFAULT_IPV6_URLS, PublicIPResolver
from cloudflare_ddns.transport import Transport


class LookupTransport(Transport):
    """Maps URL to a body (str) or an exception."""

    def __init__(self, replies: Dict[str, Union[str, Exception]]):
        self.replies = replies
        self.urls: List[str] = []

    def request(self, method, url, *, body=None, headers=None) -> str:
        self.urls.append(url)
        reply = self.replies[url]
        if isinstance(reply, Exception):
            raise reply
        return reply


def down() -> TransportError:
    return TransportError("connection refused", ErrorKind.NETWORK_TRANSIENT)


class TestIPv4:
    def test_returns_stripped_address(self) -> None:
        transport = LookupTransport({"https://api4.ipify.org": "203.0.113.9\n"})
        resolver = PublicIPResolver(transport)

        assert resolver.get_ipv4() == "203.0.113.9"
        assert resolver.resolve(AddressFamily.IPV4) == "203.0.113.9"

    def test_invalid_body_raises(self) -> None:
        transport = LookupTransport({"https://api4.ipify.org": "<html>rate limited</html>"})
        resolver = PublicIPResolver(transport)

        with pytest.raises(ResolveError) as exc:
            resolver.get_ipv4()
        assert exc.value.retryable

    def test_ipv6_body_is_not_an_ipv4_address(self) -> None:
        transport = LookupTransport({"https://api4.ipify.org": "2001:db8::1"})

        with pytest.raises(ResolveError):
            PublicIPResolver(transport).get_ipv4()

    def test_transport_failure_raises(self) -> None:
        transport = LookupTransport({"https://api4.ipify.org": down()})

        with pytest.raises(ResolveError):
            PublicIPResolver(transport).get_ipv4()


class TestIPv6:
    def test_falls_back_to_next_mirror(self) -> None:
        first, second, third = DEFAULT_IPV6_URLS
        transport = LookupTransport({first: down(), second: "2001:db8::42\n", third: "2001:db8::99"})
        resolver = PublicIPResolver(transport)

        assert resolver.resolve(AddressFamily.IPV6) == "2001:db8::42"
        assert transport.urls == [first, second]

    def test_skips_mirror_with_invalid_body(self) -> None:
        first, second, third = DEFAULT_IPV6_URLS
        transport = LookupTransport({first: "203.0.113.9", second: "garbage", third: "2001:db8::7"})

        assert PublicIPResolver(transport).get_ipv6() == "2001:db8::7"

    def test_all_mirrors_failing_raises(self) -> None:
        transport = LookupTransport({url: down() for url in DEFAULT_IPV6_URLS})

        with pytest.raises(ResolveError):
            PublicIPResolver(transport).get_ipv6()
        assert transport.urls == list(DEFAULT_IPV6_URLS)

    def test_custom_mirrors(self) -> None:
        transport = LookupTransport({"http://mirror.test": "2001:db8::1"})
        resolver = PublicIPResolver(transport, ipv6_urls=["http://mirror.test"])

        assert resolver.get_ipv6() == "2001:db8::1"
