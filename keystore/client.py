"""Blocking HTTP client that fetches and decodes JWKS and OAuth2 certificate sources."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import httpx
from cryptography import x509

from keystore.exceptions import DecodeError, FetchError, ParseError
from keystore.types import CertificateEntry, CertificateSet, FetchResult, KeyEntry, KeySet

if TYPE_CHECKING:
    from keystore.config import Settings

DEFAULT_TIMEOUT = httpx.Timeout(connect=2.0, read=5.0, write=5.0, pool=5.0)
CERTIFICATE_BLOCK_TYPE = "CERTIFICATE"
_PEM_BEGIN = "-----BEGIN "


def pem_block_type(text: str) -> str | None:
    """Return the type named by the first PEM BEGIN line in text."""
    _, found, rest = text.partition(_PEM_BEGIN)
    if not found:
        return None
    block_type, found, _ = rest.partition("-----")
    return block_type if found else None


class KeySourceClient:
    """Client for fetching verification material from a remote source."""

    def __init__(
        self,
        timeout: httpx.Timeout | float | None = None,
        http_client: httpx.Client | None = None,
        headers: dict[str, str] | None = None,
    ) -> None:
        """Create client with sane defaults and optional injected transport."""
        self._owns_client = http_client is None
        self._client = http_client or httpx.Client(
            timeout=timeout or DEFAULT_TIMEOUT,
            headers=headers,
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> KeySourceClient:
        """Build a client using configured HTTP timeouts and user agent."""
        timeout = httpx.Timeout(
            connect=settings.http.connect_timeout_seconds,
            read=settings.http.read_timeout_seconds,
            write=settings.http.read_timeout_seconds,
            pool=settings.http.read_timeout_seconds,
        )
        return cls(timeout=timeout, headers={"User-Agent": settings.http.user_agent})

    def fetch_key_set(self, uri: str) -> FetchResult[KeySet]:
        """Fetch a JWKS document and return its keys with the Cache-Control header."""
        response = self._get(uri)
        payload = self._json_object(uri, response)
        keys = payload.get("keys")
        if not isinstance(keys, list):
            raise DecodeError(uri, "JWKS document has no 'keys' array")

        entries: list[KeyEntry] = []
        for item in keys:
            if not isinstance(item, dict):
                raise DecodeError(uri, "JWKS key entry is not an object")
            kty = item.get("kty")
            if not isinstance(kty, str) or not kty:
                raise DecodeError(uri, "JWKS key entry has no 'kty'")
            kid = item.get("kid")
            entries.append(KeyEntry(kid=kid if isinstance(kid, str) else "", jwk=dict(item)))
        return FetchResult(
            snapshot=KeySet(keys=tuple(entries)),
            cache_control=self._cache_control(response),
        )

    def fetch_certificate_set(self, uri: str) -> FetchResult[CertificateSet]:
        """Fetch an identifier-to-PEM map and parse every certificate in it."""
        response = self._get(uri)
        payload = self._json_object(uri, response)

        entries: list[CertificateEntry] = []
        for identifier, value in payload.items():
            if not isinstance(value, str):
                raise DecodeError(uri, f"certificate {identifier} is not a string")
            if pem_block_type(value) != CERTIFICATE_BLOCK_TYPE:
                raise ParseError(identifier, uri)
            try:
                certificate = x509.load_pem_x509_certificate(value.encode("utf-8"))
            except ValueError as exc:
                raise ParseError(identifier, uri, exc) from exc
            entries.append(CertificateEntry(identifier=identifier, certificate=certificate))
        return FetchResult(
            snapshot=CertificateSet(certificates=tuple(entries)),
            cache_control=self._cache_control(response),
        )

    def close(self) -> None:
        """Close underlying HTTP client if owned by this instance."""
        if self._owns_client:
            self._client.close()

    def __enter__(self) -> KeySourceClient:
        return self

    def __exit__(self, exc_type: Any, exc: Any, tb: Any) -> None:
        del exc_type, exc, tb
        self.close()

    def _get(self, uri: str) -> httpx.Response:
        """Execute GET and normalize transport failures."""
        if self._client.is_closed:
            raise FetchError(uri, "HTTP client is closed")
        try:
            response = self._client.get(uri)
        except httpx.RequestError as exc:
            raise FetchError(uri, exc) from exc

        if response.status_code >= 400:
            raise FetchError(uri, f"unexpected status {response.status_code}")
        return response

    @staticmethod
    def _json_object(uri: str, response: httpx.Response) -> dict[str, Any]:
        """Return response JSON as object."""
        try:
            payload = response.json()
        except (ValueError, RecursionError) as exc:
            raise DecodeError(uri, exc) from exc
        if not isinstance(payload, dict):
            raise DecodeError(uri, "response is not a JSON object")
        return payload

    @staticmethod
    def _cache_control(response: httpx.Response) -> str:
        return response.headers.get("cache-control", "")
