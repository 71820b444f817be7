"""Exception types raised by the Vibe Trader core."""

from typing import Any, Optional


class VibeTraderError(Exception):
    """Base class for all agent errors."""


class SigningError(VibeTraderError):
    """Request could not be signed (invalid key material or unencodable params)."""


class ExchangeError(VibeTraderError):
    """The venue rejected the request or could not be reached."""

    def __init__(
        self,
        message: str,
        status: Optional[int] = None,
        code: Optional[Any] = None,
        body: Optional[str] = None,
    ):
        """
        Initialize an exchange error.

        Args:
            message: Venue message (``msg``) or a transport description
            status: HTTP status code, None for transport failures
            code: Venue machine-readable error code when the body was parseable
            body: Raw response body when it was not parseable
        """
        self.status = status
        self.code = code
        self.message = message
        self.body = body
        if code is not None:
            text = f"Aster API error {code}: {message}"
        elif status is not None:
            text = f"Aster API error: HTTP {status} {message}"
        else:
            text = f"Aster API unreachable: {message}"
        super().__init__(text)


class ProtocolError(VibeTraderError):
    """The venue answered successfully but the body could not be understood."""

    def __init__(self, message: str, body: Optional[str] = None):
        self.body = body
        super().__init__(message)


class OracleValidationError(VibeTraderError):
    """Oracle output failed to parse or validate. Never escapes the parser."""


class PersistenceError(VibeTraderError):
    """The persistence collaborator could not read or write records."""
