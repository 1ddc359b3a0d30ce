"""CLI entrypoints for inspecting remote key sources."""

from __future__ import annotations

import argparse
import json
from collections.abc import Sequence
from typing import Any

from cryptography import x509
from cryptography.hazmat.primitives import hashes

from keystore.config import configure_structlog, get_settings
from keystore.exceptions import KeyStoreError
from keystore.store import ExpiringStore, open_certificate_store, open_key_store


def _describe_certificate(certificate: x509.Certificate) -> dict[str, Any]:
    """Summarize certificate fields worth printing."""
    return {
        "subject": certificate.subject.rfc4514_string(),
        "issuer": certificate.issuer.rfc4514_string(),
        "serial_number": str(certificate.serial_number),
        "not_valid_after": certificate.not_valid_after_utc.isoformat(),
        "sha256_fingerprint": certificate.fingerprint(hashes.SHA256()).hex(),
    }


def _run_lookup(kind: str, uri: str, identifier: str) -> int:
    """Open a store for uri, resolve identifier once and print the result."""
    settings = get_settings()
    configure_structlog(settings)
    opener = open_key_store if kind == "jwks" else open_certificate_store
    try:
        store: ExpiringStore[Any, Any] = opener(uri, settings=settings)
    except KeyStoreError as exc:
        print(json.dumps({"uri": uri, "error": str(exc)}))
        return 2

    with store:
        material = store.get(identifier)
        expiry = store.expiry

    if material is None:
        print(json.dumps({"uri": uri, "id": identifier, "found": False}))
        return 1

    description = (
        material if isinstance(material, dict) else _describe_certificate(material)
    )
    print(
        json.dumps(
            {
                "uri": uri,
                "id": identifier,
                "found": True,
                "expiry": expiry.isoformat(),
                "material": description,
            }
        )
    )
    return 0


def _build_parser() -> argparse.ArgumentParser:
    """Build command-line parser for supported commands."""
    parser = argparse.ArgumentParser(prog="python -m keystore.cli")
    subcommands = parser.add_subparsers(dest="command", required=True)

    lookup_parser = subcommands.add_parser("lookup")
    lookup_parser.add_argument(
        "--kind",
        choices=("jwks", "certificates"),
        default="jwks",
        help="Source format: a JWKS document or an identifier-to-PEM certificate map.",
    )
    lookup_parser.add_argument("uri")
    lookup_parser.add_argument("identifier")
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    """Run CLI command."""
    parser = _build_parser()
    args = parser.parse_args(argv)
    if args.command == "lookup":
        return _run_lookup(kind=args.kind, uri=args.uri, identifier=args.identifier)
    parser.error("Unsupported command")
    return 2


if __name__ == "__main__":
    raise SystemExit(main())
