"""Shared helpers for key import, algorithm resolution and JWK files.

Internal module — used by signer, issuer and verifier.
"""

import json
from pathlib import Path

from cryptography.hazmat.primitives.asymmetric.ec import (
    EllipticCurvePrivateKey,
    EllipticCurvePublicKey,
)
from cryptography.hazmat.primitives.asymmetric.ed25519 import (
    Ed25519PrivateKey,
    Ed25519PublicKey,
)
from joserfc.jwk import ECKey, OKPKey

from sdjwt.keys import (
    PrivateKey,
    PublicKeyType,
    private_key_from_jwk,
    private_key_to_jwk,
    public_key_from_jwk,
    public_key_to_jwk,
)


def import_private_key(private_key: PrivateKey, alg: str) -> ECKey | OKPKey:
    """Import a cryptography private key into a joserfc JWK."""
    if isinstance(private_key, EllipticCurvePrivateKey):
        return ECKey.import_key(private_key_to_jwk(private_key), {"alg": alg})
    elif isinstance(private_key, Ed25519PrivateKey):
        return OKPKey.import_key(private_key_to_jwk(private_key), {"alg": alg})
    raise TypeError(f"Unsupported key type: {type(private_key)}")


def import_public_key(public_key: PublicKeyType) -> ECKey | OKPKey:
    """Import a cryptography public key into a joserfc JWK."""
    if isinstance(public_key, EllipticCurvePublicKey):
        return ECKey.import_key(public_key_to_jwk(public_key))
    elif isinstance(public_key, Ed25519PublicKey):
        return OKPKey.import_key(public_key_to_jwk(public_key))
    raise TypeError(f"Unsupported key type: {type(public_key)}")


def resolve_private_key_alg(private_key: PrivateKey, alg: str | None) -> str:
    """Determine the JWS algorithm from a private key type."""
    if alg is not None:
        return alg
    if isinstance(private_key, EllipticCurvePrivateKey):
        return "ES256"
    if isinstance(private_key, Ed25519PrivateKey):
        return "EdDSA"
    raise TypeError(f"Unsupported key type: {type(private_key)}")


def resolve_public_key_alg(public_key: PublicKeyType) -> str:
    """Determine the JWS algorithm from a public key type."""
    if isinstance(public_key, EllipticCurvePublicKey):
        return "ES256"
    if isinstance(public_key, Ed25519PublicKey):
        return "EdDSA"
    raise TypeError(f"Unsupported key type: {type(public_key)}")


def load_private_key(jwk_path: str) -> tuple[PrivateKey, str]:
    """Load a private key from JWK file and return (key, alg)."""
    jwk = json.loads(Path(jwk_path).read_text())
    private_key = private_key_from_jwk(jwk)
    return private_key, resolve_private_key_alg(private_key, jwk.get("alg"))


def load_public_key(jwk_path: str) -> PublicKeyType:
    """Load a public key from JWK file."""
    jwk = json.loads(Path(jwk_path).read_text())
    return public_key_from_jwk(jwk)
