"""Keystore exception hierarchy."""

from __future__ import annotations


class KeyStoreError(Exception):
    """Base class for all keystore-specific exceptions."""


class FetchError(KeyStoreError):
    """Raised when a key source cannot be reached or answers with an error status."""

    def __init__(self, uri: str, cause: object) -> None:
        """Initialize with the source URI and underlying failure."""
        super().__init__(f"failed to connect to {uri}: {cause}")
        self.uri = uri
        self.cause = cause


class DecodeError(KeyStoreError):
    """Raised when a key source returns a malformed JSON document."""

    def __init__(self, uri: str, cause: object) -> None:
        """Initialize with the source URI and decoding failure."""
        super().__init__(f"error reading {uri}: {cause}")
        self.uri = uri
        self.cause = cause


class ParseError(KeyStoreError):
    """Raised when a certificate entry is not a valid PEM encoded X.509 certificate."""

    def __init__(self, identifier: str, uri: str, cause: object | None = None) -> None:
        """Initialize with the offending entry identifier and source URI."""
        message = f"error parsing certificate {identifier} from {uri}"
        if cause is not None:
            message = f"{message}: {cause}"
        super().__init__(message)
        self.identifier = identifier
        self.uri = uri
        self.cause = cause
