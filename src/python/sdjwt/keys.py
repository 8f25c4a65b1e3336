"""Key generation, JWK export/import and JWK thumbprints for Ed25519 and P-256.

CLI Usage:
    python -m sdjwt.keys --help
    python -m sdjwt.keys generate --algorithm ES256
    python -m sdjwt.keys thumbprint --input key.jwk
"""

import argparse
import json
import sys
from pathlib import Path

from cryptography.hazmat.primitives.asymmetric.ec import (
    SECP256R1,
    EllipticCurvePrivateKey,
    EllipticCurvePrivateNumbers,
    EllipticCurvePublicKey,
    EllipticCurvePublicNumbers,
    generate_private_key,
)
from cryptography.hazmat.primitives.asymmetric.ed25519 import (
    Ed25519PrivateKey,
    Ed25519PublicKey,
)
from cryptography.hazmat.primitives.serialization import (
    Encoding,
    NoEncryption,
    PrivateFormat,
    PublicFormat,
)
from joserfc.jwk import ECKey, OKPKey

from sdjwt.encoding import b64url_decode, b64url_encode

# Union type for keys supported by this module
PrivateKey = Ed25519PrivateKey | EllipticCurvePrivateKey
PublicKeyType = Ed25519PublicKey | EllipticCurvePublicKey

# JWK key classes by "kty"
_JWK_KEY_TYPES = {"EC": ECKey, "OKP": OKPKey}


# ---------------------------------------------------------------------------
# Generation
# ---------------------------------------------------------------------------


def generate_ed25519_keypair() -> tuple[Ed25519PrivateKey, Ed25519PublicKey]:
    """Generate a fresh Ed25519 key pair."""
    private_key = Ed25519PrivateKey.generate()
    return private_key, private_key.public_key()


def generate_p256_keypair() -> tuple[EllipticCurvePrivateKey, EllipticCurvePublicKey]:
    """Generate a fresh P-256 (secp256r1) key pair."""
    private_key = generate_private_key(SECP256R1())
    return private_key, private_key.public_key()


# ---------------------------------------------------------------------------
# JWK export
# ---------------------------------------------------------------------------


def public_key_to_jwk(public_key: PublicKeyType) -> dict:
    """Export a public key as a JWK dict (OKP/Ed25519 or EC/P-256)."""
    if isinstance(public_key, Ed25519PublicKey):
        raw_public = public_key.public_bytes(Encoding.Raw, PublicFormat.Raw)
        return {"kty": "OKP", "crv": "Ed25519", "x": b64url_encode(raw_public)}
    if isinstance(public_key, EllipticCurvePublicKey):
        numbers = public_key.public_numbers()
        return {
            "kty": "EC",
            "crv": "P-256",
            "x": b64url_encode(numbers.x.to_bytes(32, "big")),
            "y": b64url_encode(numbers.y.to_bytes(32, "big")),
        }
    raise TypeError(f"Unsupported key type: {type(public_key)}")


def private_key_to_jwk(private_key: PrivateKey) -> dict:
    """Export a private key as a JWK dict, including the public members."""
    jwk = public_key_to_jwk(private_key.public_key())
    if isinstance(private_key, Ed25519PrivateKey):
        raw_private = private_key.private_bytes(
            Encoding.Raw, PrivateFormat.Raw, NoEncryption()
        )
        jwk["d"] = b64url_encode(raw_private)
    else:
        d = private_key.private_numbers().private_value
        jwk["d"] = b64url_encode(d.to_bytes(32, "big"))
    return jwk


# ---------------------------------------------------------------------------
# JWK import
# ---------------------------------------------------------------------------


def public_key_from_jwk(jwk: dict) -> PublicKeyType:
    """Reconstruct a public key from a JWK dict."""
    if jwk.get("kty") == "EC" and jwk.get("crv") == "P-256":
        x = int.from_bytes(b64url_decode(jwk["x"]), "big")
        y = int.from_bytes(b64url_decode(jwk["y"]), "big")
        return EllipticCurvePublicNumbers(x, y, SECP256R1()).public_key()
    elif jwk.get("kty") == "OKP" and jwk.get("crv") == "Ed25519":
        return Ed25519PublicKey.from_public_bytes(b64url_decode(jwk["x"]))
    raise ValueError(f"Unsupported key type: {jwk.get('kty')}/{jwk.get('crv')}")


def private_key_from_jwk(jwk: dict) -> PrivateKey:
    """Reconstruct a private key from a JWK dict with a ``d`` member."""
    if "d" not in jwk:
        raise ValueError("JWK has no private key material ('d')")

    if jwk.get("kty") == "EC" and jwk.get("crv") == "P-256":
        x = int.from_bytes(b64url_decode(jwk["x"]), "big")
        y = int.from_bytes(b64url_decode(jwk["y"]), "big")
        d = int.from_bytes(b64url_decode(jwk["d"]), "big")
        pub_nums = EllipticCurvePublicNumbers(x, y, SECP256R1())
        return EllipticCurvePrivateNumbers(d, pub_nums).private_key()
    elif jwk.get("kty") == "OKP" and jwk.get("crv") == "Ed25519":
        return Ed25519PrivateKey.from_private_bytes(b64url_decode(jwk["d"]))
    raise ValueError(f"Unsupported key type: {jwk.get('kty')}/{jwk.get('crv')}")


def jwk_thumbprint(jwk: dict) -> str:
    """Compute the RFC 7638 SHA-256 thumbprint of a JWK."""
    try:
        key_type = _JWK_KEY_TYPES[jwk["kty"]]
    except KeyError:
        raise ValueError(f"Unsupported key type: {jwk.get('kty')}") from None
    return key_type.import_key(jwk).thumbprint()


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------


def main():
    """CLI entry point for key operations."""
    parser = argparse.ArgumentParser(
        prog="sdjwt.keys",
        description="SD-JWT issuer key management CLI",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python -m sdjwt.keys generate --algorithm ES256 --output issuer.jwk
  python -m sdjwt.keys generate --algorithm EdDSA --public-only
  python -m sdjwt.keys thumbprint --input issuer.jwk
        """,
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    gen_parser = subparsers.add_parser(
        "generate",
        help="Generate a new keypair (P-256 or Ed25519)",
        description="Generate a keypair for SD-JWT signing or holder binding.",
    )
    gen_parser.add_argument(
        "--algorithm",
        "-a",
        choices=["ES256", "EdDSA"],
        default="ES256",
        help="Algorithm: ES256 (P-256) or EdDSA (Ed25519). Default: ES256",
    )
    gen_parser.add_argument("--output", "-o", help="Output file (default: stdout)")
    gen_parser.add_argument(
        "--public-only", action="store_true", help="Output only the public key"
    )

    tp_parser = subparsers.add_parser(
        "thumbprint",
        help="Print the RFC 7638 thumbprint of a JWK",
        description="Compute a JWK thumbprint, e.g. for use as a kid.",
    )
    tp_parser.add_argument("--input", "-i", required=True, help="JWK file")

    args = parser.parse_args()

    if args.command is None:
        parser.print_help()
        sys.exit(0)

    if args.command == "generate":
        if args.algorithm == "ES256":
            priv, pub = generate_p256_keypair()
        else:  # EdDSA
            priv, pub = generate_ed25519_keypair()
        jwk = public_key_to_jwk(pub) if args.public_only else private_key_to_jwk(priv)

        output = json.dumps(jwk, indent=2)
        if args.output:
            Path(args.output).write_text(output)
            print(f"Key written to {args.output}", file=sys.stderr)
        else:
            print(output)

    elif args.command == "thumbprint":
        jwk = json.loads(Path(args.input).read_text())
        try:
            print(jwk_thumbprint(jwk))
        except (KeyError, ValueError) as e:
            print(f"Invalid JWK: {e}", file=sys.stderr)
            sys.exit(1)


if __name__ == "__main__":
    main()
