"""Error taxonomy shared by packing, issuance and verification."""


class SDJWTError(Exception):
    """Base class for every error raised by this package."""


class ConfigurationError(SDJWTError):
    """Raised before any work starts when the issuer is misconfigured."""


class PackingError(SDJWTError):
    """Raised when claims cannot be packed against a disclosure frame."""


class SigningError(SDJWTError):
    """Raised when the signer callback fails or returns garbage."""


class VerificationError(SDJWTError):
    """Raised when an SD-JWT fails signature or disclosure verification."""
