"""SD-JWT verification: check the issuer signature and resolve disclosures.

Digests are recomputed over the disclosure strings exactly as presented, using
the algorithm named by ``_sd_alg`` (default: sha-256).

CLI Usage:
    python -m sdjwt.verifier --help
    python -m sdjwt.verifier verify --sd-jwt token.txt --public-key issuer.jwk
    python -m sdjwt.verifier decode --sd-jwt token.txt
"""

import argparse
import json
import sys
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from joserfc import jws

from sdjwt._crypto import import_public_key as _import_public_key
from sdjwt._crypto import load_public_key as _load_public_key
from sdjwt._crypto import resolve_public_key_alg as _alg_for_key
from sdjwt.disclosure import (
    ARRAY_DIGEST_KEY,
    DEFAULT_HASH_ALG,
    SD_ALG_KEY,
    SD_DIGESTS_KEY,
    Disclosure,
    Hasher,
    decode_disclosure,
    get_hasher,
)
from sdjwt.encoding import decode_json_segment
from sdjwt.errors import ConfigurationError, VerificationError
from sdjwt.keys import PublicKeyType

SD_JWT_SEPARATOR = "~"


@dataclass
class SDJWT:
    """A parsed (not yet verified) SD-JWT compact serialization."""

    issuer_jwt: str
    disclosures: list[str] = field(default_factory=list)
    key_binding_jwt: str | None = None

    @property
    def header(self) -> dict:
        return decode_json_segment(self.issuer_jwt.split(".")[0])

    @property
    def payload(self) -> dict:
        return decode_json_segment(self.issuer_jwt.split(".")[1])


def parse_sd_jwt(sd_jwt: str) -> SDJWT:
    """Split an SD-JWT into issuer JWT, disclosures and optional KB-JWT.

    Raises:
        VerificationError: If the string is not a well-formed SD-JWT.
    """
    parts = sd_jwt.split(SD_JWT_SEPARATOR)
    if len(parts) < 2:
        raise VerificationError("Invalid SD-JWT format: missing separator")

    issuer_jwt = parts[0]
    if len(issuer_jwt.split(".")) != 3:
        raise VerificationError("Invalid SD-JWT format: issuer JWT is not a JWS")

    # Last element is the KB-JWT slot (empty after issuance)
    disclosures = parts[1:-1]
    if any(not d for d in disclosures):
        raise VerificationError("Invalid SD-JWT format: empty disclosure")

    return SDJWT(
        issuer_jwt=issuer_jwt,
        disclosures=disclosures,
        key_binding_jwt=parts[-1] or None,
    )


def unpack_claims(payload: dict, disclosures: list[str], hasher: Hasher) -> dict:
    """Rebuild the disclosed claim tree from a payload and its disclosures.

    Withheld claims and decoy digests are dropped. ``_sd`` and ``_sd_alg``
    are removed from the result.

    Raises:
        VerificationError: If a disclosure is malformed, duplicated, not
            referenced by the payload, or conflicts with a plaintext claim.
    """
    by_digest: dict[str, Disclosure] = {}
    for encoded in disclosures:
        try:
            disclosure = decode_disclosure(encoded, hasher)
        except ValueError as e:
            raise VerificationError(str(e)) from e
        if disclosure.digest in by_digest:
            raise VerificationError("Duplicate disclosure presented")
        by_digest[disclosure.digest] = disclosure

    resolver = _Resolver(by_digest)
    claims = resolver.resolve(payload)
    claims.pop(SD_ALG_KEY, None)

    unused = set(by_digest) - resolver.used
    if unused:
        digest = sorted(unused)[0]
        raise VerificationError(
            f"Disclosure hash {digest[:16]}... not found in the payload "
            f"({len(unused)} unreferenced disclosure(s))"
        )
    return claims


class _Resolver:
    """Substitutes disclosures for digests, tracking each digest's use."""

    def __init__(self, by_digest: dict[str, Disclosure]):
        self._by_digest = by_digest
        self._seen: set[str] = set()
        self.used: set[str] = set()

    def resolve(self, node: Any) -> Any:
        if isinstance(node, Mapping):
            return self._resolve_object(node)
        if isinstance(node, list):
            return self._resolve_array(node)
        return node

    def _resolve_object(self, node: Mapping) -> dict:
        result = {k: self.resolve(v) for k, v in node.items() if k != SD_DIGESTS_KEY}

        digests = node.get(SD_DIGESTS_KEY, [])
        if not isinstance(digests, list):
            raise VerificationError("'_sd' must be an array of digests")

        for digest in digests:
            disclosure = self._lookup(digest)
            if disclosure is None:
                continue
            if disclosure.is_array_element:
                raise VerificationError(
                    "Array element disclosure referenced from an '_sd' array"
                )
            if disclosure.key in (SD_DIGESTS_KEY, ARRAY_DIGEST_KEY):
                raise VerificationError(
                    f"Disclosure uses reserved claim name {disclosure.key!r}"
                )
            if disclosure.key in result:
                raise VerificationError(
                    f"Disclosed claim {disclosure.key!r} already exists in the payload"
                )
            result[disclosure.key] = self.resolve(disclosure.value)
        return result

    def _resolve_array(self, node: list) -> list:
        result = []
        for element in node:
            if isinstance(element, Mapping) and set(element) == {ARRAY_DIGEST_KEY}:
                disclosure = self._lookup(element[ARRAY_DIGEST_KEY])
                if disclosure is None:
                    continue
                if not disclosure.is_array_element:
                    raise VerificationError(
                        "Object property disclosure referenced from an array element"
                    )
                result.append(self.resolve(disclosure.value))
            else:
                result.append(self.resolve(element))
        return result

    def _lookup(self, digest: Any) -> Disclosure | None:
        if not isinstance(digest, str):
            raise VerificationError(f"Digest must be a string, got {digest!r}")
        if digest in self._seen:
            raise VerificationError(f"Digest {digest[:16]}... appears more than once")
        self._seen.add(digest)

        disclosure = self._by_digest.get(digest)
        if disclosure is not None:
            self.used.add(digest)
        return disclosure


def verify_sd_jwt(
    sd_jwt: str,
    public_key: PublicKeyType,
    *,
    expected_typ: str | None = None,
    hasher: Hasher | None = None,
) -> dict:
    """Verify an SD-JWT and return all disclosed claims.

    Args:
        sd_jwt: SD-JWT compact string (<issuer-jwt>~<disclosure1>~...~).
        public_key: Issuer's public key (P-256 or Ed25519).
        expected_typ: If provided, the header ``typ`` must match.
        hasher: Custom digest algorithm; must match ``_sd_alg``. By default
            the built-in hasher named by ``_sd_alg`` is used.

    Returns:
        Dict with the plaintext claims plus every presented disclosure.

    Raises:
        VerificationError: If the signature is invalid or disclosures don't match.
    """
    token = parse_sd_jwt(sd_jwt)

    key = _import_public_key(public_key)
    alg = _alg_for_key(public_key)

    try:
        result = jws.deserialize_compact(token.issuer_jwt, key, algorithms=[alg])
    except Exception as e:
        raise VerificationError(f"SD-JWT signature verification failed: {e}") from e

    header = result.headers()
    if expected_typ is not None and header.get("typ") != expected_typ:
        raise VerificationError(
            f"Unexpected typ: expected {expected_typ!r}, got {header.get('typ')!r}"
        )

    try:
        payload = json.loads(result.payload)
    except ValueError as e:
        raise VerificationError(f"SD-JWT payload is not JSON: {e}") from e
    if not isinstance(payload, dict):
        raise VerificationError("SD-JWT payload must be a JSON object")

    sd_alg = payload.get(SD_ALG_KEY, DEFAULT_HASH_ALG)
    if hasher is None:
        try:
            hasher = get_hasher(sd_alg)
        except ConfigurationError as e:
            raise VerificationError(str(e)) from e
    elif hasher.alg != sd_alg:
        raise VerificationError(
            f"Hash algorithm mismatch: payload uses {sd_alg!r}, "
            f"hasher is {hasher.alg!r}"
        )

    return unpack_claims(payload, token.disclosures, hasher)


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------


def _read_token(source: str) -> str:
    if source == "-":
        return sys.stdin.read().strip()
    return Path(source).read_text().strip()


def main():
    """CLI entry point for SD-JWT verification."""
    parser = argparse.ArgumentParser(
        prog="sdjwt.verifier",
        description="Verify and inspect SD-JWTs",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python -m sdjwt.verifier verify --sd-jwt token.txt --public-key issuer.jwk
  cat token.txt | python -m sdjwt.verifier decode --sd-jwt -
        """,
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    verify_parser = subparsers.add_parser(
        "verify",
        help="Verify an SD-JWT and show disclosed claims",
        description="Verify the issuer signature and resolve all disclosures.",
    )
    verify_parser.add_argument(
        "--sd-jwt", required=True, help="SD-JWT file or '-' for stdin"
    )
    verify_parser.add_argument(
        "--public-key", required=True, help="Issuer public key (JWK file)"
    )
    verify_parser.add_argument("--typ", help="Expected header typ (optional)")

    decode_parser = subparsers.add_parser(
        "decode",
        help="Decode an SD-JWT without verifying it",
        description="Print the header, payload and decoded disclosures.",
    )
    decode_parser.add_argument(
        "--sd-jwt", required=True, help="SD-JWT file or '-' for stdin"
    )

    args = parser.parse_args()

    if args.command is None:
        parser.print_help()
        sys.exit(0)

    if args.command == "verify":
        sd_jwt = _read_token(args.sd_jwt)
        public_key = _load_public_key(args.public_key)
        try:
            claims = verify_sd_jwt(sd_jwt, public_key, expected_typ=args.typ)
        except VerificationError as e:
            print(f"Verification failed: {e}", file=sys.stderr)
            sys.exit(1)
        print(json.dumps(claims, indent=2, ensure_ascii=False))

    elif args.command == "decode":
        try:
            token = parse_sd_jwt(_read_token(args.sd_jwt))
            header, payload = token.header, token.payload
            hasher = get_hasher(payload.get(SD_ALG_KEY, DEFAULT_HASH_ALG))
            disclosures = [
                {"digest": d.digest, "disclosure": d.to_array()}
                for d in (decode_disclosure(s, hasher) for s in token.disclosures)
            ]
        except (ValueError, ConfigurationError, VerificationError) as e:
            print(f"Decoding failed: {e}", file=sys.stderr)
            sys.exit(1)
        output = {"header": header, "payload": payload, "disclosures": disclosures}
        print(json.dumps(output, indent=2, ensure_ascii=False))


if __name__ == "__main__":
    main()
