"""Snapshot types served by key and certificate stores."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Generic, TypeVar

from cryptography import x509
from jose import jwk as jose_jwk


@dataclass(frozen=True)
class KeyEntry:
    """One JSON Web Key as published by the source."""

    kid: str
    jwk: dict[str, Any] = field(hash=False)

    @property
    def algorithm(self) -> str | None:
        """Return the advertised JWA algorithm, if any."""
        alg = self.jwk.get("alg")
        return alg if isinstance(alg, str) and alg else None

    def public_key(self, algorithm: str | None = None) -> Any:
        """Construct a python-jose key object for signature verification."""
        return jose_jwk.construct(self.jwk, algorithm=algorithm or self.algorithm)


@dataclass(frozen=True)
class KeySet:
    """Immutable ordered JWK set."""

    keys: tuple[KeyEntry, ...] = ()

    def find(self, kid: str) -> KeyEntry | None:
        """Return the first key matching kid."""
        for entry in self.keys:
            if entry.kid == kid:
                return entry
        return None

    def find_all(self, kid: str) -> list[KeyEntry]:
        """Return every key matching kid in source order."""
        return [entry for entry in self.keys if entry.kid == kid]

    def __len__(self) -> int:
        return len(self.keys)


@dataclass(frozen=True)
class CertificateEntry:
    """An OAuth2 signing certificate keyed by its identifier."""

    identifier: str
    certificate: x509.Certificate


@dataclass(frozen=True)
class CertificateSet:
    """Immutable certificate set; order follows the source document."""

    certificates: tuple[CertificateEntry, ...] = ()

    def find(self, identifier: str) -> CertificateEntry | None:
        """Return the first certificate matching identifier."""
        for entry in self.certificates:
            if entry.identifier == identifier:
                return entry
        return None

    def __len__(self) -> int:
        return len(self.certificates)


SnapshotT = TypeVar("SnapshotT", KeySet, CertificateSet)


@dataclass(frozen=True)
class FetchResult(Generic[SnapshotT]):
    """Decoded snapshot together with the Cache-Control header it was served with."""

    snapshot: SnapshotT
    cache_control: str
