"""SD-JWT issuance: pack claims, sign, and serialize.

Output format: ``<header>.<payload>.<signature>~<disclosure1>~...~`` where the
final, empty segment is reserved for a Key Binding JWT added by the holder.

CLI Usage:
    python -m sdjwt.issuer --help
    python -m sdjwt.issuer issue --claims claims.json --frame frame.json --key key.jwk
"""

import argparse
import inspect
import json
import logging
import sys
from collections.abc import Awaitable, Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

from sdjwt._crypto import load_private_key as _load_private_key
from sdjwt.disclosure import SD_ALG_KEY, SD_DIGESTS_KEY, Hasher, SaltSource, get_hasher
from sdjwt.encoding import json_segment
from sdjwt.errors import ConfigurationError, PackingError, SDJWTError, SigningError
from sdjwt.keys import public_key_from_jwk, public_key_to_jwk
from sdjwt.packer import PackedClaims, pack_claims, pack_claims_async
from sdjwt.signer import JWSSigner

logger = logging.getLogger(__name__)

SD_JWT_TYPE = "sd-jwt"
SD_JWT_SEPARATOR = "~"
CNF_KEY = "cnf"


class Signer(Protocol):
    def __call__(self, header: dict, payload: dict) -> str | Awaitable[str]: ...


@dataclass
class IssuerConfig:
    """Collaborators for one or more issuance calls.

    Attributes:
        signer: Callback ``(protected_header, claims) -> signature``. May
            return an awaitable when used with :func:`issue_sd_jwt_async`.
            An optional ``header()`` method supplies default header fields.
        hasher: Digest algorithm and callback for disclosures. The callback
            may be async only with :func:`issue_sd_jwt_async`.
        salt_source: Salt generator (default: 128-bit random salts).
        cnf: Holder confirmation claim, e.g. ``{"jwk": holder_public_jwk}``.
        include_sd_alg: Add ``_sd_alg`` when any digest is emitted.
    """

    signer: Signer | None
    hasher: Hasher | None
    salt_source: SaltSource | None = None
    cnf: dict | None = None
    include_sd_alg: bool = True


def issue_sd_jwt(
    header: Mapping | None,
    payload: dict,
    frame: Mapping | None,
    config: IssuerConfig,
) -> str:
    """Issue an SD-JWT.

    Args:
        header: Caller header fields. They are merged over ``signer.header()``
            when the signer provides one (as :class:`~sdjwt.signer.JWSSigner`
            does), so ``None`` is enough for the default signer. A ``typ``
            given here replaces the default ``sd-jwt``.
        payload: Claims to issue.
        frame: Disclosure frame selecting the disclosable claims.
        config: Signer, hasher, salt source and optional ``cnf``.

    Returns:
        SD-JWT compact string: <issuer-jwt>~<disclosure1>~...~

    Raises:
        ConfigurationError: If the signer or hasher is missing or unusable,
            or the header is not JSON-serializable.
        PackingError: If the frame does not fit the payload, the payload is
            not JSON-serializable, or the hasher is async.
        SigningError: If the signer fails.
    """
    _validate_config(config, frame)
    packed = pack_claims(payload, frame, config.hasher, config.salt_source)
    token = _prepare(header, packed, config)

    try:
        signature = config.signer(token.header, token.claims)
    except SigningError:
        raise
    except Exception as e:
        raise SigningError(f"Signer failed: {e}") from e

    if inspect.isawaitable(signature):
        if inspect.iscoroutine(signature):
            signature.close()
        raise SigningError(
            "Signer returned an awaitable; use issue_sd_jwt_async for async signers"
        )

    return token.serialize(signature)


async def issue_sd_jwt_async(
    header: Mapping | None,
    payload: dict,
    frame: Mapping | None,
    config: IssuerConfig,
) -> str:
    """Same as :func:`issue_sd_jwt`, awaiting the hasher and signer if async."""
    _validate_config(config, frame)
    packed = await pack_claims_async(
        payload, frame, config.hasher, config.salt_source
    )
    token = _prepare(header, packed, config)

    try:
        signature = config.signer(token.header, token.claims)
        if inspect.isawaitable(signature):
            signature = await signature
    except SigningError:
        raise
    except Exception as e:
        raise SigningError(f"Signer failed: {e}") from e

    return token.serialize(signature)


def _validate_config(config: IssuerConfig, frame: Mapping | None) -> None:
    if config.signer is None or not callable(config.signer):
        raise ConfigurationError("Signer function is required")
    if config.hasher is None or not callable(getattr(config.hasher, "callback", None)):
        raise ConfigurationError("Hasher callback is required")
    if not config.hasher.alg:
        raise ConfigurationError("Hasher must declare its algorithm identifier")
    if config.cnf is not None:
        if not isinstance(config.cnf, Mapping):
            raise ConfigurationError("cnf must be an object")
        selected = frame.get(SD_DIGESTS_KEY, ()) if isinstance(frame, Mapping) else ()
        if CNF_KEY in selected:
            raise ConfigurationError("cnf cannot be selectively disclosable")


@dataclass
class _UnsignedToken:
    """Protected header, claims and disclosures waiting for a signature."""

    header: dict
    claims: dict
    signing_input: str
    disclosures: list[str]

    def serialize(self, signature: object) -> str:
        if not isinstance(signature, str) or not signature:
            raise SigningError(
                f"Signer returned {type(signature).__name__}, "
                "expected a non-empty string"
            )
        if "." in signature or SD_JWT_SEPARATOR in signature:
            raise SigningError("Signature contains a reserved separator character")

        issuer_jwt = f"{self.signing_input}.{signature}"
        # Compose SD-JWT: issuer-jwt~disclosure1~disclosure2~...~
        parts = [issuer_jwt] + self.disclosures + [""]
        return SD_JWT_SEPARATOR.join(parts)


def _prepare(
    header: Mapping | None, packed: PackedClaims, config: IssuerConfig
) -> _UnsignedToken:
    """Build the protected header and final claims, encoded before signing."""
    signer_header = getattr(config.signer, "header", None)
    protected_header = {
        "typ": SD_JWT_TYPE,
        **(signer_header() if callable(signer_header) else {}),
        **(header or {}),
    }
    if protected_header["typ"] != SD_JWT_TYPE:
        logger.debug("Caller header overrides typ with %r", protected_header["typ"])

    claims = packed.claims
    if config.cnf is not None:
        claims[CNF_KEY] = dict(config.cnf)

    if config.include_sd_alg and (packed.disclosures or packed.decoys):
        claims[SD_ALG_KEY] = config.hasher.alg

    try:
        header_segment = json_segment(protected_header)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"Header is not JSON-serializable: {e}") from e
    try:
        payload_segment = json_segment(claims)
    except (TypeError, ValueError) as e:
        raise PackingError(f"Payload is not JSON-serializable: {e}") from e

    logger.debug(
        "Issuing SD-JWT (typ=%s, disclosures=%d, cnf=%s)",
        protected_header["typ"],
        len(packed.disclosures),
        config.cnf is not None,
    )
    return _UnsignedToken(
        header=protected_header,
        claims=claims,
        signing_input=f"{header_segment}.{payload_segment}",
        disclosures=packed.encoded_disclosures,
    )


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------


def main():
    """CLI entry point for SD-JWT issuance."""
    parser = argparse.ArgumentParser(
        prog="sdjwt.issuer",
        description="Issue SD-JWTs with selective disclosure",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Disclose "email" and, inside "address", "city"
  echo '{"_sd": ["email"], "address": {"_sd": ["city"]}}' > frame.json
  python -m sdjwt.issuer issue --claims claims.json --frame frame.json --key issuer.jwk

  # SD-JWT VC with holder binding
  python -m sdjwt.issuer issue --claims claims.json --key issuer.jwk \\
      --typ vc+sd-jwt --holder-key holder.jwk -o token.txt
        """,
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    issue_parser = subparsers.add_parser(
        "issue",
        help="Issue an SD-JWT",
        description="Issue an SD-JWT from a claims file and a disclosure frame.",
    )
    issue_parser.add_argument(
        "--claims", required=True, help="JSON file with the claims to issue"
    )
    issue_parser.add_argument(
        "--frame", help="JSON file with the disclosure frame (default: none)"
    )
    issue_parser.add_argument(
        "--key", "-k", required=True, help="Issuer private key (JWK file)"
    )
    issue_parser.add_argument("--header", help="JSON file with extra header fields")
    issue_parser.add_argument("--typ", help=f"Header typ (default: {SD_JWT_TYPE})")
    issue_parser.add_argument(
        "--kid", help="Key ID for the header ('thumbprint' derives it from the key)"
    )
    issue_parser.add_argument(
        "--holder-key", help="Holder public key (JWK file) for the cnf claim"
    )
    issue_parser.add_argument(
        "--hash-alg",
        default="sha-256",
        choices=["sha-256", "sha-384", "sha-512"],
        help="Disclosure digest algorithm. Default: sha-256",
    )
    issue_parser.add_argument("--output", "-o", help="Output file (default: stdout)")

    args = parser.parse_args()

    if args.command is None:
        parser.print_help()
        sys.exit(0)

    if args.command == "issue":
        claims = json.loads(Path(args.claims).read_text())
        frame = json.loads(Path(args.frame).read_text()) if args.frame else None
        header = json.loads(Path(args.header).read_text()) if args.header else {}

        private_key, alg = _load_private_key(args.key)
        signer = JWSSigner(private_key, alg=alg, kid=args.kid)
        if args.typ:
            header["typ"] = args.typ

        cnf = None
        if args.holder_key:
            holder_jwk = json.loads(Path(args.holder_key).read_text())
            cnf = {"jwk": public_key_to_jwk(public_key_from_jwk(holder_jwk))}

        config = IssuerConfig(
            signer=signer, hasher=get_hasher(args.hash_alg), cnf=cnf
        )
        try:
            sd_jwt = issue_sd_jwt(header, claims, frame, config)
        except SDJWTError as e:
            print(f"Issuance failed: {e}", file=sys.stderr)
            sys.exit(1)

        if args.output:
            Path(args.output).write_text(sd_jwt)
            print(f"SD-JWT written to {args.output}", file=sys.stderr)
        else:
            print(sd_jwt)


if __name__ == "__main__":
    main()
