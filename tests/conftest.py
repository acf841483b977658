"""Test configuration and shared fixtures.

Everything runs against the in-memory record store with a hand-driven clock,
so time windows, expiry and TOTP steps are exact.
"""

import re
from collections.abc import Awaitable, Callable
from datetime import datetime, timedelta, timezone
from typing import Any

import pytest

from adaptive_mfa.core.auth.components import AuthComponents, build_components
from adaptive_mfa.core.auth.factors import DeliveryChannel
from adaptive_mfa.core.auth.models import AuthContext, DeviceInfo, FactorType
from adaptive_mfa.core.config import Settings, clear_settings_cache
from adaptive_mfa.storage import InMemoryStorage
from adaptive_mfa.storage.base import Row

START = datetime(2025, 7, 1, 14, 0, 0, tzinfo=timezone.utc)
PASSWORD = "Correct-Horse-42!"
USER_EMAIL = "alice@example.com"
USER_AGENT = "Mozilla/5.0 (X11; Linux x86_64) pytest"
HOME_ADDRESS = "203.0.113.10"


class MutableClock:
    """Clock the tests move by hand."""

    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta: float) -> datetime:
        self.now += timedelta(**delta)
        return self.now


class RecordingDeliveryChannel(DeliveryChannel):
    """Keeps every message instead of sending it."""

    def __init__(self, accept: bool = True) -> None:
        self.accept = accept
        self.sent: list[tuple[str, str]] = []

    async def send(self, destination: str, message: str) -> bool:
        self.sent.append((destination, message))
        return self.accept

    @property
    def last_code(self) -> str:
        match = re.search(r"code is (\d+)", self.sent[-1][1])
        assert match is not None
        return match.group(1)


@pytest.fixture(autouse=True)
def _reset_settings_cache() -> None:
    clear_settings_cache()


@pytest.fixture
def settings() -> Settings:
    """Fast bcrypt and a dedicated secret."""
    return Settings(
        bcrypt_rounds=4,
        secret_key="test-secret-key-for-the-adaptive-mfa-suite-0123456789",
    )


@pytest.fixture
def clock() -> MutableClock:
    return MutableClock(START)


@pytest.fixture
def storage() -> InMemoryStorage:
    return InMemoryStorage()


@pytest.fixture
def sms_channel() -> RecordingDeliveryChannel:
    return RecordingDeliveryChannel()


@pytest.fixture
def email_channel() -> RecordingDeliveryChannel:
    return RecordingDeliveryChannel()


@pytest.fixture
def make_components(
    settings: Settings,
    storage: InMemoryStorage,
    clock: MutableClock,
    sms_channel: RecordingDeliveryChannel,
    email_channel: RecordingDeliveryChannel,
) -> Callable[..., AuthComponents]:
    """Build components over the shared storage and clock, with overrides."""

    def _make(custom: Settings | None = None, **overrides: Any) -> AuthComponents:
        options: dict[str, Any] = {
            "clock": clock,
            "sms_channel": sms_channel,
            "email_channel": email_channel,
        }
        options.update(overrides)
        return build_components(custom or settings, storage, **options)

    return _make


@pytest.fixture
def components(make_components: Callable[..., AuthComponents]) -> AuthComponents:
    return make_components()


@pytest.fixture
async def user(components: AuthComponents) -> Row:
    """An account with no second factor."""
    result = await components.passwords.create_user(USER_EMAIL, PASSWORD)
    return result.unwrap()


@pytest.fixture
def make_context(clock: MutableClock) -> Callable[..., AuthContext]:
    """Attempt context stamped with the current test time."""

    def _make(ip_address: str = HOME_ADDRESS, **fields: Any) -> AuthContext:
        fields.setdefault("user_agent", USER_AGENT)
        fields.setdefault(
            "device", DeviceInfo(platform="linux", timezone="UTC", language="en-US")
        )
        return AuthContext(ip_address=ip_address, timestamp=clock(), **fields)

    return _make


@pytest.fixture
def enroll_totp(
    components: AuthComponents, clock: MutableClock
) -> Callable[[str], Awaitable[tuple[str, list[str]]]]:
    """Enroll and confirm TOTP through the orchestrator.

    Returns the secret and the backup codes issued with the first factor. The
    clock moves one step on so the confirming code's step is not reused.
    """

    async def _enroll(user_id: str) -> tuple[str, list[str]]:
        begun = await components.orchestrator.enroll_factor(user_id, FactorType.TOTP, {})
        material = begun.unwrap()
        assert material.secret is not None and material.factor is not None
        confirmed = await components.orchestrator.enroll_factor(
            user_id,
            FactorType.TOTP,
            {
                "factor_id": material.factor.id,
                "code": components.totp.current_code(material.secret),
            },
        )
        codes = confirmed.unwrap().backup_codes
        clock.advance(seconds=components.settings.totp_interval)
        return material.secret, codes

    return _enroll
