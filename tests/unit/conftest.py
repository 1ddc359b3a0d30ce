"""Shared unit-test fixtures: fake key sources, clocks, timers and certificates."""

from __future__ import annotations

import base64
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from typing import Any

import httpx
import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.x509.oid import NameOID

from keystore.client import KeySourceClient


def _base64url_uint(value: int) -> str:
    """Encode an integer to base64url without padding."""
    value_bytes = value.to_bytes((value.bit_length() + 7) // 8, "big")
    return base64.urlsafe_b64encode(value_bytes).rstrip(b"=").decode("ascii")


def generate_rsa_key() -> rsa.RSAPrivateKey:
    """Create an ephemeral RSA private key."""
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


def build_public_jwk(private_key: rsa.RSAPrivateKey, kid: str) -> dict[str, str]:
    """Build RS256 public JWK document for a private key."""
    numbers = private_key.public_key().public_numbers()
    return {
        "kty": "RSA",
        "use": "sig",
        "alg": "RS256",
        "kid": kid,
        "n": _base64url_uint(numbers.n),
        "e": _base64url_uint(numbers.e),
    }


def build_certificate_pem(common_name: str) -> str:
    """Create a self-signed PEM certificate with the given subject common name."""
    private_key = generate_rsa_key()
    name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, common_name)])
    now = datetime.now(UTC)
    certificate = (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(private_key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - timedelta(minutes=1))
        .not_valid_after(now + timedelta(days=1))
        .sign(private_key, hashes.SHA256())
    )
    return certificate.public_bytes(serialization.Encoding.PEM).decode("utf-8")


def build_private_key_pem() -> str:
    """Create a PEM block of type PRIVATE KEY."""
    return (
        generate_rsa_key()
        .private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.PKCS8,
            encryption_algorithm=serialization.NoEncryption(),
        )
        .decode("utf-8")
    )


class FakeSource:
    """Mutable HTTP key source counting every request it serves."""

    def __init__(self, payload: Any, cache_control: str | None = "max-age=3600") -> None:
        self.payload = payload
        self.cache_control = cache_control
        self.status_code = 200
        self.fail = False
        self.calls = 0

    def handler(self, request: httpx.Request) -> httpx.Response:
        """Serve the current payload or simulate a network failure."""
        self.calls += 1
        if self.fail:
            raise httpx.ConnectError("network down", request=request)
        headers = {"Cache-Control": self.cache_control} if self.cache_control is not None else {}
        if isinstance(self.payload, str):
            return httpx.Response(self.status_code, text=self.payload, headers=headers)
        return httpx.Response(self.status_code, json=self.payload, headers=headers)

    def client(self) -> KeySourceClient:
        """Build a KeySourceClient routed to this source."""
        transport = httpx.MockTransport(self.handler)
        return KeySourceClient(http_client=httpx.Client(transport=transport))


class FakeClock:
    """Controllable wall clock for expiry tests."""

    def __init__(self) -> None:
        self.current = datetime(2026, 1, 1, 12, 0, 0, 500000, tzinfo=UTC)

    def now(self) -> datetime:
        """Return current synthetic time."""
        return self.current

    def advance(self, seconds: float) -> None:
        self.current += timedelta(seconds=seconds)


class RecordingTimer:
    """Timer stand-in that never fires on its own."""

    def __init__(self, interval: float, function: Callable[[], Any]) -> None:
        self.interval = interval
        self.function = function
        self.started = False
        self.cancelled = False

    def start(self) -> None:
        self.started = True

    def cancel(self) -> None:
        self.cancelled = True

    def fire(self) -> Any:
        """Run the timer callback as the timer thread would."""
        return self.function()


class TimerRecorder:
    """Timer factory capturing every timer a store arms."""

    def __init__(self) -> None:
        self.timers: list[RecordingTimer] = []

    def __call__(self, interval: float, function: Callable[[], Any]) -> RecordingTimer:
        timer = RecordingTimer(interval, function)
        self.timers.append(timer)
        return timer

    @property
    def last(self) -> RecordingTimer:
        return self.timers[-1]


@pytest.fixture
def rsa_key() -> rsa.RSAPrivateKey:
    """Ephemeral RSA key shared within one test."""
    return generate_rsa_key()


@pytest.fixture
def jwks_source(public_jwk: dict[str, str]) -> FakeSource:
    """Source publishing one RS256 key with kid k1."""
    return FakeSource({"keys": [public_jwk]})


@pytest.fixture
def certificate_source() -> FakeSource:
    """Source publishing one certificate with identifier c1."""
    return FakeSource({"c1": build_certificate_pem("c1.example.test")})


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def timers() -> TimerRecorder:
    return TimerRecorder()


@pytest.fixture
def public_jwk(rsa_key: rsa.RSAPrivateKey) -> dict[str, str]:
    """Public JWK for rsa_key under kid k1."""
    return build_public_jwk(rsa_key, "k1")


@pytest.fixture
def make_jwk() -> Callable[[str], dict[str, str]]:
    """Factory building a fresh public JWK for a kid."""
    return lambda kid: build_public_jwk(generate_rsa_key(), kid)


@pytest.fixture
def make_certificate_pem() -> Callable[[str], str]:
    """Factory building a self-signed PEM certificate for a common name."""
    return build_certificate_pem


@pytest.fixture
def private_key_pem() -> str:
    return build_private_key_pem()


@pytest.fixture
def make_source() -> Callable[..., FakeSource]:
    """Factory building fake sources for arbitrary payloads."""
    return FakeSource
