"""sdjwt - Selective Disclosure JWT issuance and verification.

This package provides:
- Disclosure-frame packing of nested claims (objects and arrays)
- SD-JWT issuance with pluggable signer, hasher and salt source
- A default JWS signer (ES256 / EdDSA)
- SD-JWT verification and disclosure resolution
- Key generation and JWK helpers

Usage:
    from sdjwt import IssuerConfig, JWSSigner, get_hasher, issue_sd_jwt
    from sdjwt.packer import pack_claims, pack_claims_async
    from sdjwt.verifier import verify_sd_jwt
"""


# Use lazy imports to avoid RuntimeWarning when running modules directly
def __getattr__(name):
    """Lazy import to avoid import cycle when running modules directly."""
    if name in (
        "SDJWTError",
        "ConfigurationError",
        "PackingError",
        "SigningError",
        "VerificationError",
    ):
        from sdjwt import errors

        return getattr(errors, name)
    elif name in ("Disclosure", "Hasher", "generate_salt", "get_hasher"):
        from sdjwt import disclosure

        return getattr(disclosure, name)
    elif name in ("PackedClaims", "pack_claims", "pack_claims_async"):
        from sdjwt import packer

        return getattr(packer, name)
    elif name in (
        "SD_JWT_TYPE",
        "IssuerConfig",
        "issue_sd_jwt",
        "issue_sd_jwt_async",
    ):
        from sdjwt import issuer

        return getattr(issuer, name)
    elif name == "JWSSigner":
        from sdjwt import signer

        return signer.JWSSigner
    elif name in ("SDJWT", "parse_sd_jwt", "unpack_claims", "verify_sd_jwt"):
        from sdjwt import verifier

        return getattr(verifier, name)
    elif name in (
        "PrivateKey",
        "PublicKeyType",
        "generate_ed25519_keypair",
        "generate_p256_keypair",
        "public_key_to_jwk",
        "private_key_to_jwk",
        "jwk_thumbprint",
    ):
        from sdjwt import keys

        return getattr(keys, name)
    raise AttributeError(f"module 'sdjwt' has no attribute {name!r}")


__all__ = [
    # Errors
    "SDJWTError",
    "ConfigurationError",
    "PackingError",
    "SigningError",
    "VerificationError",
    # Disclosures
    "Disclosure",
    "Hasher",
    "generate_salt",
    "get_hasher",
    # Packing
    "PackedClaims",
    "pack_claims",
    "pack_claims_async",
    # Issuance
    "SD_JWT_TYPE",
    "IssuerConfig",
    "issue_sd_jwt",
    "issue_sd_jwt_async",
    "JWSSigner",
    # Verification
    "SDJWT",
    "parse_sd_jwt",
    "unpack_claims",
    "verify_sd_jwt",
    # Keys
    "PrivateKey",
    "PublicKeyType",
    "generate_ed25519_keypair",
    "generate_p256_keypair",
    "public_key_to_jwk",
    "private_key_to_jwk",
    "jwk_thumbprint",
]
