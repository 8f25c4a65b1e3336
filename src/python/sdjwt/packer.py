"""Disclosure-frame packing.

Walks a claim tree alongside a disclosure frame and replaces every selected
claim with a digest. A frame is a dict mirroring the claims::

    {
        "_sd": ["given_name", "email"],      # keys of this object to disclose
        "_sd_decoy": 2,                      # decoy digests for this object
        "address": {"_sd": ["street"]},      # frame for a child object
        "nationalities": {"_sd": [0, 1]},    # indices of a child array
    }

The walk is post-order: a disclosed value is packed before it is wrapped, so
nested disclosures always precede the disclosure that contains them.

Frame directives share the namespace of claim names. A claim literally named
``_sd_decoy`` can still be selected through ``_sd``, but it cannot be given a
sub-frame of its own: at that position the frame always means a decoy count.

The walk itself is a generator that yields each encoded disclosure (or decoy)
and is sent back its digest. :func:`pack_claims` drives it with a synchronous
hash callback; :func:`pack_claims_async` also awaits callbacks that return an
awaitable, e.g. a digest computed by a remote KMS.
"""

import inspect
import logging
from collections.abc import Generator, Mapping
from dataclasses import dataclass
from typing import Any

from sdjwt.disclosure import (
    ARRAY_DIGEST_KEY,
    SD_DECOY_KEY,
    SD_DIGESTS_KEY,
    Disclosure,
    Hasher,
    SaltSource,
    encode_disclosure,
    generate_salt,
    get_hasher,
)
from sdjwt.encoding import b64url_encode
from sdjwt.errors import PackingError

logger = logging.getLogger(__name__)

_FRAME_DIRECTIVES = (SD_DIGESTS_KEY, SD_DECOY_KEY)
_RESERVED_CLAIMS = (SD_DIGESTS_KEY, ARRAY_DIGEST_KEY)

# Yields encoded strings to hash, receives their digests, returns the node
_Walk = Generator[str, Any, Any]


@dataclass(frozen=True)
class PackedClaims:
    """Result of packing: the redacted claims and the disclosures, in order."""

    claims: dict
    disclosures: tuple[Disclosure, ...]
    decoys: int = 0

    @property
    def encoded_disclosures(self) -> list[str]:
        return [d.encoded for d in self.disclosures]


def pack_claims(
    claims: dict,
    frame: Mapping | None = None,
    hasher: Hasher | None = None,
    salt_source: SaltSource | None = None,
) -> PackedClaims:
    """Redact ``claims`` according to ``frame``.

    Args:
        claims: The claim tree to issue. Never mutated.
        frame: Disclosure frame; ``None`` or ``{}`` discloses nothing.
        hasher: Digest algorithm (default: sha-256). Its callback must
            return the digest directly; see :func:`pack_claims_async`.
        salt_source: Zero-argument callable returning a fresh salt string.

    Returns:
        PackedClaims with the redacted claims and the ordered disclosures.

    Raises:
        PackingError: If the frame does not fit the claims, the salt source
            misbehaves, or the hash callback fails.
    """
    packer = _Packer(hasher or get_hasher(), salt_source or generate_salt)
    walk = packer.walk(_check_claims(claims), frame, ())
    try:
        encoded = next(walk)
        while True:
            digest = packer.hash(encoded)
            if inspect.isawaitable(digest):
                if inspect.iscoroutine(digest):
                    digest.close()
                raise PackingError(
                    f"Hash callback ({packer.alg}) returned an awaitable; "
                    "use pack_claims_async or issue_sd_jwt_async for async hashers"
                )
            encoded = walk.send(digest)
    except StopIteration as done:
        return packer.result(done.value)


async def pack_claims_async(
    claims: dict,
    frame: Mapping | None = None,
    hasher: Hasher | None = None,
    salt_source: SaltSource | None = None,
) -> PackedClaims:
    """Same as :func:`pack_claims`, awaiting the hash callback if it is async.

    Digests are requested one at a time, in disclosure order.
    """
    packer = _Packer(hasher or get_hasher(), salt_source or generate_salt)
    walk = packer.walk(_check_claims(claims), frame, ())
    try:
        encoded = next(walk)
        while True:
            digest = packer.hash(encoded)
            if inspect.isawaitable(digest):
                try:
                    digest = await digest
                except Exception as e:
                    raise PackingError(
                        f"Hash callback ({packer.alg}) failed: {e!r}"
                    ) from e
            encoded = walk.send(digest)
    except StopIteration as done:
        return packer.result(done.value)


def _check_claims(claims: Any) -> Mapping:
    if not isinstance(claims, Mapping):
        raise PackingError(f"Claims must be an object, got {type(claims).__name__}")
    return claims


def _pointer(path: tuple) -> str:
    """Render a path as a JSON pointer for error messages."""
    if not path:
        return "/"
    return "".join(f"/{p}" for p in path)


class _Packer:
    """State for a single packing call: emitted salts and disclosures."""

    def __init__(self, hasher: Hasher, salt_source: SaltSource):
        self._hasher = hasher
        self._salt_source = salt_source
        self._salts: set[str] = set()
        self.disclosures: list[Disclosure] = []
        self.decoys = 0

    @property
    def alg(self) -> str:
        return self._hasher.alg

    def hash(self, encoded: str) -> Any:
        """Invoke the hash callback; the result may still be an awaitable."""
        try:
            return self._hasher.callback(encoded)
        except Exception as e:
            raise PackingError(f"Hash callback ({self.alg}) failed: {e!r}") from e

    def result(self, redacted: dict) -> PackedClaims:
        logger.debug(
            "Packed claims with %d disclosure(s) and %d decoy(s)",
            len(self.disclosures),
            self.decoys,
        )
        return PackedClaims(
            claims=redacted, disclosures=tuple(self.disclosures), decoys=self.decoys
        )

    def walk(self, node: Any, frame: Mapping | None, path: tuple) -> _Walk:
        frame = _check_frame(frame, path)
        if isinstance(node, Mapping):
            return (yield from self._walk_object(node, frame, path))
        if isinstance(node, list):
            return (yield from self._walk_array(node, frame, path))
        if frame:
            raise PackingError(
                f"Frame at {_pointer(path)} addresses a scalar "
                f"({type(node).__name__}) value"
            )
        return node

    # -- node kinds ---------------------------------------------------------

    def _walk_object(self, node: Mapping, frame: Mapping, path: tuple) -> _Walk:
        selected = set()
        for key in frame.get(SD_DIGESTS_KEY, ()):
            if not isinstance(key, str):
                raise PackingError(
                    f"Frame at {_pointer(path)} selects {key!r}, "
                    "but object members are selected by name"
                )
            if key in _RESERVED_CLAIMS:
                raise PackingError(
                    f"Claim name {key!r} at {_pointer(path)} is reserved"
                )
            if key not in node:
                raise PackingError(
                    f"Frame selects missing claim {_pointer(path + (key,))}"
                )
            selected.add(key)

        for key in frame:
            if key in _FRAME_DIRECTIVES:
                continue
            if key not in node:
                raise PackingError(
                    f"Frame references missing claim {_pointer(path + (key,))}"
                )

        decoys = _decoy_count(frame, path)
        if (selected or decoys) and SD_DIGESTS_KEY in node:
            raise PackingError(
                f"Object at {_pointer(path)} already contains reserved "
                f"claim {SD_DIGESTS_KEY!r}"
            )

        result = {}
        digests = []
        for key, value in node.items():
            sub_frame = None if key in _FRAME_DIRECTIVES else frame.get(key)
            packed = yield from self.walk(value, sub_frame, path + (key,))
            if key in selected:
                digests.append((yield from self._disclose(key, packed, path + (key,))))
            else:
                result[key] = packed

        for _ in range(decoys):
            digests.append((yield from self._decoy()))

        if digests:
            result[SD_DIGESTS_KEY] = sorted(digests)
        return result

    def _walk_array(self, node: list, frame: Mapping, path: tuple) -> _Walk:
        if SD_DECOY_KEY in frame:
            raise PackingError(
                f"Frame at {_pointer(path)}: decoys are only supported on objects"
            )

        selected = set()
        for index in frame.get(SD_DIGESTS_KEY, ()):
            selected.add(_array_index(index, node, path))

        children = {}
        for key, sub_frame in frame.items():
            if key in _FRAME_DIRECTIVES:
                continue
            children[_array_index(key, node, path)] = sub_frame

        result = []
        for i, value in enumerate(node):
            packed = yield from self.walk(value, children.get(i), path + (i,))
            if i in selected:
                digest = yield from self._disclose(None, packed, path + (i,))
                result.append({ARRAY_DIGEST_KEY: digest})
            else:
                result.append(packed)
        return result

    # -- disclosures --------------------------------------------------------

    def _disclose(self, key: str | None, value: Any, path: tuple) -> _Walk:
        salt = self._next_salt()
        try:
            encoded = encode_disclosure(salt, key, value)
        except (TypeError, ValueError) as e:
            raise PackingError(
                f"Claim {_pointer(path)} is not JSON-serializable: {e}"
            ) from e

        digest = yield from self._digest(encoded)
        self.disclosures.append(
            Disclosure(salt=salt, key=key, value=value, encoded=encoded, digest=digest)
        )
        return digest

    def _decoy(self) -> _Walk:
        self.decoys += 1
        return (yield from self._digest(b64url_encode(self._next_salt().encode())))

    def _next_salt(self) -> str:
        try:
            salt = self._salt_source()
        except Exception as e:
            raise PackingError(f"Salt source failed: {e!r}") from e

        if not isinstance(salt, str) or not salt:
            raise PackingError(f"Salt source returned an invalid salt: {salt!r}")
        if salt in self._salts:
            raise PackingError("Salt source returned a duplicate salt")
        self._salts.add(salt)
        return salt

    def _digest(self, encoded: str) -> _Walk:
        digest = yield encoded
        if not isinstance(digest, str) or not digest:
            raise PackingError(
                f"Hash callback ({self.alg}) returned {type(digest).__name__}, "
                "expected a non-empty string"
            )
        return digest


# -- frame validation -------------------------------------------------------


def _check_frame(frame: Mapping | None, path: tuple) -> Mapping:
    if frame is None:
        return {}
    if not isinstance(frame, Mapping):
        raise PackingError(
            f"Frame at {_pointer(path)} must be an object, got {type(frame).__name__}"
        )
    selection = frame.get(SD_DIGESTS_KEY, ())
    if not isinstance(selection, (list, tuple)):
        raise PackingError(f"Frame at {_pointer(path)}: '_sd' must be a list")
    return frame


def _decoy_count(frame: Mapping, path: tuple) -> int:
    count = frame.get(SD_DECOY_KEY, 0)
    if isinstance(count, bool) or not isinstance(count, int) or count < 0:
        raise PackingError(
            f"Frame at {_pointer(path)}: '_sd_decoy' must be a non-negative integer"
        )
    return count


def _array_index(index: Any, node: list, path: tuple) -> int:
    """Normalize an array selector (int or decimal string) and range-check it."""
    if isinstance(index, str) and index.isdigit():
        index = int(index)
    if isinstance(index, bool) or not isinstance(index, int):
        raise PackingError(
            f"Frame at {_pointer(path)} selects {index!r}, "
            "but array elements are selected by index"
        )
    if not 0 <= index < len(node):
        raise PackingError(
            f"Frame selects missing array element {_pointer(path + (index,))}"
        )
    return index
