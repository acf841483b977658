"""Unit tests for the HTTP collaborators: reputation lookups and code delivery."""

import json

import httpx
import pytest
import respx

from adaptive_mfa.core.auth.factors import (
    LoggingDeliveryChannel,
    WebhookDeliveryChannel,
    mask_destination,
)
from adaptive_mfa.core.auth.models import GeoLocation
from adaptive_mfa.core.auth.reputation import (
    HttpReputationService,
    IPReputation,
    StaticGeoResolver,
    StaticReputationService,
)


class TestReputation:
    """Tests for IP and domain reputation lookups."""

    async def test_static_service(self):
        """Test configured lists drive the static service."""
        service = StaticReputationService(
            ["Mailinator.com"], {"198.51.100.7": IPReputation(is_tor=True)}
        )

        assert (await service.lookup_ip("198.51.100.7")).unwrap().is_tor
        assert (await service.lookup_ip("192.0.2.1")).unwrap() == IPReputation()
        assert (await service.lookup_domain("MAILINATOR.COM")).unwrap().is_disposable
        assert not (await service.lookup_domain("example.com")).unwrap().is_disposable

    @respx.mock
    async def test_http_service_parses_payload(self):
        """Test the HTTP service maps the response and clamps the threat score."""
        route = respx.get("https://reputation.test/ip/192.0.2.1").mock(
            return_value=httpx.Response(200, json={"is_proxy": True, "threat_score": 250})
        )

        service = HttpReputationService("https://reputation.test/", ["mailinator.com"])
        result = await service.lookup_ip("192.0.2.1")

        assert route.call_count == 1
        reputation = result.unwrap()
        assert reputation.is_proxy and not reputation.is_tor
        assert reputation.threat_score == 100

    @respx.mock
    async def test_http_service_errors(self):
        """Test failures surface as Err values, never exceptions."""
        service = HttpReputationService("https://r.test", [])
        respx.get("https://r.test/ip/1.2.3.4").mock(return_value=httpx.Response(503))
        respx.get("https://r.test/ip/5.6.7.8").mock(side_effect=httpx.ConnectTimeout)

        unavailable = await service.lookup_ip("1.2.3.4")
        timed_out = await service.lookup_ip("5.6.7.8")

        assert unavailable.is_err()
        assert "503" in unavailable.err_value
        assert timed_out.is_err()
        assert "timed out" in timed_out.err_value

    async def test_static_geo_resolver(self):
        """Test only listed, parseable addresses resolve."""
        resolver = StaticGeoResolver({"198.51.100.7": GeoLocation(country="ru")})

        located = await resolver.resolve("198.51.100.7")
        assert located is not None and located.country == "RU"
        assert await resolver.resolve("192.0.2.1") is None
        assert await resolver.resolve("not-an-address") is None


class TestDelivery:
    """Tests for the delivery channels."""

    @pytest.mark.parametrize(
        ("destination", "masked"),
        [
            ("+15550109999", "***9999"),
            ("alice@example.com", "a***@example.com"),
        ],
    )
    def test_mask_destination(self, destination, masked):
        """Test destinations are masked for display and logs."""
        assert mask_destination(destination) == masked

    async def test_logging_channel_never_logs_message(self, caplog):
        """Test the development channel logs only metadata."""
        caplog.set_level("INFO")

        assert await LoggingDeliveryChannel("SMS").send("+15550109999", "Your code is 123456")

        assert "123456" not in caplog.text
        assert "***9999" in caplog.text

    @respx.mock
    async def test_webhook_posts_payload(self):
        """Test the webhook channel posts the destination and message."""
        route = respx.post("https://sms.test/send").mock(return_value=httpx.Response(202))

        channel = WebhookDeliveryChannel("https://sms.test/send")
        assert await channel.send("+15550109999", "hello")

        assert route.call_count == 1
        assert json.loads(route.calls.last.request.content) == {
            "to": "+15550109999",
            "message": "hello",
        }

    @respx.mock
    async def test_webhook_failures_return_false(self):
        """Test rejected or unreachable gateways report failure."""
        respx.post("https://sms.test/rejected").mock(return_value=httpx.Response(500))
        respx.post("https://sms.test/unreachable").mock(side_effect=httpx.ConnectError)

        assert not await WebhookDeliveryChannel("https://sms.test/rejected").send("+1555", "m")
        assert not await WebhookDeliveryChannel("https://sms.test/unreachable").send("+1555", "m")
