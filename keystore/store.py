"""Self-refreshing key and certificate stores backed by a remote source."""

from __future__ import annotations

import random
import threading
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any, Generic, Protocol, TypeVar

import structlog
from cryptography import x509

from keystore.client import KeySourceClient
from keystore.config import Settings, get_settings
from keystore.exceptions import KeyStoreError
from keystore.policy import (
    MIN_RELOAD_INTERVAL,
    expiry_timestamp,
    jitter_width,
    next_reload_duration,
    parse_cache_age,
)
from keystore.types import CertificateSet, FetchResult, KeySet, SnapshotT

ItemT = TypeVar("ItemT")

logger = structlog.get_logger(__name__)


class Timer(Protocol):
    """One-shot timer handle."""

    def start(self) -> None: ...

    def cancel(self) -> None: ...


TimerFactory = Callable[[float, Callable[[], Any]], Timer]


def _daemon_timer(interval: float, function: Callable[[], Any]) -> Timer:
    """Build a daemon thread timer so pending reloads never keep the process alive."""
    timer = threading.Timer(interval, function)
    timer.daemon = True
    return timer


def _utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass(frozen=True)
class _StoreState(Generic[SnapshotT]):
    """Snapshot plus the expiry and jitter derived from its advertised cache age."""

    snapshot: SnapshotT
    expiry: datetime
    jitter: timedelta


class ExpiringStore(ABC, Generic[SnapshotT, ItemT]):
    """Cache a remote snapshot and keep it fresh with a self-rescheduling timer.

    Readers take a single reference to an immutable state object, so a lookup
    never observes a half-applied refresh. Writers swap that reference under
    ``_lock``, which also guards the timer handle.
    """

    kind: str = "snapshot"

    def __init__(
        self,
        uri: str,
        client: KeySourceClient | None = None,
        settings: Settings | None = None,
        now: Callable[[], datetime] | None = None,
        rng: random.Random | None = None,
        timer_factory: TimerFactory | None = None,
    ) -> None:
        """Fetch the source once and arm the first background reload.

        Raises ``FetchError``, ``DecodeError`` or ``ParseError`` when the initial
        fetch fails; no store is created in that case.
        """
        self._uri = uri
        self._owns_client = client is None
        self._client = client or KeySourceClient.from_settings(settings or get_settings())
        self._now = now or _utcnow
        self._rng = rng or random.Random()
        self._timer_factory = timer_factory or _daemon_timer
        self._lock = threading.Lock()
        self._timer: Timer | None = None
        self._closed = False

        try:
            result = self._fetch()
        except KeyStoreError:
            if self._owns_client:
                self._client.close()
            raise

        age = parse_cache_age(result.cache_control)
        self._state = self._build_state(result.snapshot, age)
        with self._lock:
            self._schedule(next_reload_duration(self._state.jitter, age, self._rng))
        logger.info(
            "keystore_opened",
            uri=uri,
            kind=self.kind,
            entries=len(result.snapshot),
            expiry=self._state.expiry.isoformat(),
        )

    @property
    def uri(self) -> str:
        return self._uri

    @property
    def snapshot(self) -> SnapshotT:
        """Return the snapshot currently served, without forcing a refresh."""
        return self._state.snapshot

    @property
    def expiry(self) -> datetime:
        return self._state.expiry

    @property
    def jitter(self) -> timedelta:
        return self._state.jitter

    @property
    def closed(self) -> bool:
        return self._closed

    def get(self, identifier: str) -> ItemT | None:
        """Return material for identifier, refreshing synchronously if the snapshot expired."""
        return self._select(self._fresh_state().snapshot, identifier)

    def reload(self) -> bool:
        """Fetch the source again and re-arm the reload timer.

        Failures of any kind keep the current snapshot and schedule a retry
        within half the jitter window. Returns whether the snapshot was replaced.
        """
        try:
            result = self._fetch()
        except KeyStoreError as exc:
            delay = self._retry_delay()
            logger.warning(
                "keystore_reload_failed",
                uri=self._uri,
                kind=self.kind,
                error=str(exc),
                retry_in_seconds=delay.total_seconds(),
            )
            with self._lock:
                self._schedule(delay)
            return False
        except Exception:
            delay = self._retry_delay()
            logger.exception(
                "keystore_reload_failed",
                uri=self._uri,
                kind=self.kind,
                retry_in_seconds=delay.total_seconds(),
            )
            with self._lock:
                self._schedule(delay)
            return False

        age = parse_cache_age(result.cache_control)
        state = self._build_state(result.snapshot, age)
        delay = next_reload_duration(state.jitter, age, self._rng)
        with self._lock:
            self._state = state
            self._schedule(delay)
        logger.info(
            "keystore_reloaded",
            uri=self._uri,
            kind=self.kind,
            entries=len(result.snapshot),
            next_reload_seconds=delay.total_seconds(),
        )
        return True

    def close(self) -> None:
        """Stop background reloads. Safe to call more than once."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
        logger.info("keystore_closed", uri=self._uri, kind=self.kind)

    def __enter__(self) -> ExpiringStore[SnapshotT, ItemT]:
        return self

    def __exit__(self, exc_type: Any, exc: Any, tb: Any) -> None:
        """Stop reloads and release an owned client; expired lookups then serve stale data."""
        del exc_type, exc, tb
        self.close()
        if self._owns_client:
            self._client.close()

    def _fresh_state(self) -> _StoreState[SnapshotT]:
        """Return current state, reloading first when it is past expiry."""
        state = self._state
        if self._now() > state.expiry:
            logger.info("keystore_expired_lookup", uri=self._uri, kind=self.kind)
            self.reload()
            state = self._state
        return state

    def _retry_delay(self) -> timedelta:
        jitter = self._state.jitter
        return next_reload_duration(jitter, jitter / 2, self._rng)

    def _build_state(self, snapshot: SnapshotT, age: timedelta) -> _StoreState[SnapshotT]:
        return _StoreState(
            snapshot=snapshot,
            expiry=expiry_timestamp(age, now=self._now()),
            jitter=jitter_width(age),
        )

    def _schedule(self, delay: timedelta) -> None:
        """Replace the pending timer. Caller must hold ``_lock``."""
        if self._closed:
            return
        # max-age=0 sources reload at most once per interval.
        delay = max(delay, MIN_RELOAD_INTERVAL)
        if self._timer is not None:
            self._timer.cancel()
        self._timer = self._timer_factory(delay.total_seconds(), self.reload)
        self._timer.start()

    @abstractmethod
    def _fetch(self) -> FetchResult[SnapshotT]:
        """Fetch and decode the source."""

    @abstractmethod
    def _select(self, snapshot: SnapshotT, identifier: str) -> ItemT | None:
        """Pick the material for identifier out of a snapshot."""


class KeyStore(ExpiringStore[KeySet, dict[str, Any]]):
    """JWKS-backed store resolving JWKs by key ID."""

    kind = "jwks"

    def get_all(self, kid: str) -> list[dict[str, Any]]:
        """Return every JWK published under kid."""
        return [entry.jwk for entry in self._fresh_state().snapshot.find_all(kid)]

    def _fetch(self) -> FetchResult[KeySet]:
        return self._client.fetch_key_set(self._uri)

    def _select(self, snapshot: KeySet, identifier: str) -> dict[str, Any] | None:
        entry = snapshot.find(identifier)
        return entry.jwk if entry is not None else None


class CertificateStore(ExpiringStore[CertificateSet, x509.Certificate]):
    """OAuth2 certificate-backed store resolving X.509 certificates by identifier."""

    kind = "certificates"

    def _fetch(self) -> FetchResult[CertificateSet]:
        return self._client.fetch_certificate_set(self._uri)

    def _select(self, snapshot: CertificateSet, identifier: str) -> x509.Certificate | None:
        entry = snapshot.find(identifier)
        return entry.certificate if entry is not None else None


def open_key_store(uri: str, **kwargs: Any) -> KeyStore:
    """Fetch a JWKS and return a store that keeps it fresh."""
    return KeyStore(uri, **kwargs)


def open_certificate_store(uri: str, **kwargs: Any) -> CertificateStore:
    """Fetch an OAuth2 certificate map and return a store that keeps it fresh."""
    return CertificateStore(uri, **kwargs)
