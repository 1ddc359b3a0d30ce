"""Public keystore exports."""

from keystore.client import KeySourceClient
from keystore.exceptions import DecodeError, FetchError, KeyStoreError, ParseError
from keystore.store import (
    CertificateStore,
    ExpiringStore,
    KeyStore,
    open_certificate_store,
    open_key_store,
)

__all__ = [
    "CertificateStore",
    "DecodeError",
    "ExpiringStore",
    "FetchError",
    "KeySourceClient",
    "KeyStore",
    "KeyStoreError",
    "ParseError",
    "open_certificate_store",
    "open_key_store",
]
