"""Default JWS signer for SD-JWT issuance (ES256 over P-256, EdDSA over Ed25519).

The issuer serializes the protected header and payload itself, so the signer
signs exactly ``json_segment(header) + "." + json_segment(payload)`` and
returns only the third compact-serialization segment.
"""

from cryptography.hazmat.primitives.asymmetric.ec import (
    SECP256R1,
    EllipticCurvePrivateKey,
)
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey
from joserfc.jws import JWSRegistry

from sdjwt._crypto import import_private_key as _import_private_key
from sdjwt._crypto import resolve_private_key_alg as _resolve_alg
from sdjwt.encoding import b64url_encode, json_segment
from sdjwt.errors import ConfigurationError
from sdjwt.keys import PrivateKey


def signing_input(header: dict, payload: dict) -> bytes:
    """Return the JWS signing input for a header/payload pair."""
    return f"{json_segment(header)}.{json_segment(payload)}".encode("ascii")


class JWSSigner:
    """Signer callback backed by a local private key.

    Args:
        private_key: P-256 or Ed25519 private key.
        alg: Algorithm override. Default: ES256 for P-256, EdDSA for Ed25519.
        kid: Key ID for the JOSE header. ``"thumbprint"`` uses the RFC 7638
            thumbprint of the public key.
    """

    def __init__(
        self,
        private_key: PrivateKey,
        *,
        alg: str | None = None,
        kid: str | None = None,
    ):
        self.alg = _resolve_alg(private_key, alg)
        if self.alg == "ES256":
            if not isinstance(private_key, EllipticCurvePrivateKey) or not isinstance(
                private_key.curve, SECP256R1
            ):
                raise ConfigurationError("ES256 requires a P-256 private key")
        elif self.alg == "EdDSA":
            if not isinstance(private_key, Ed25519PrivateKey):
                raise ConfigurationError("EdDSA requires an Ed25519 private key")
        else:
            raise ConfigurationError(f"Unsupported signing algorithm: {self.alg}")

        self._key = _import_private_key(private_key, self.alg)
        self._algorithm = JWSRegistry.algorithms[self.alg]
        self.kid = self._key.thumbprint() if kid == "thumbprint" else kid

    def header(self) -> dict:
        """Header fields this signer requires in the protected header."""
        header = {"alg": self.alg}
        if self.kid is not None:
            header["kid"] = self.kid
        return header

    def __call__(self, header: dict, payload: dict) -> str:
        if header.get("alg") != self.alg:
            raise ValueError(
                f"Header alg {header.get('alg')!r} does not match "
                f"signer alg {self.alg!r}"
            )
        return b64url_encode(self.sign(signing_input(header, payload)))

    def sign(self, data: bytes) -> bytes:
        """Produce a raw JWS signature over ``data`` (r||s for ES256)."""
        return self._algorithm.sign(data, self._key)
