"""Web3 request signing for the Aster V3 futures API.

Aster authenticates a request by recomputing a canonical JSON string from the
submitted parameters, ABI-encoding it together with the user address, the API
signer address and a nonce, hashing the result with Keccak-256 and verifying an
EIP-191 personal-message signature over that hash. Signer and verifier must
agree byte for byte, so the canonical form below mirrors the venue's reference
client exactly, quirks included:

* top-level ``None`` values are dropped;
* every value is turned into a string; nested mappings and lists are
  canonicalized recursively and then embedded as their own JSON string rather
  than as nested JSON;
* top-level keys are sorted by code point and serialized without whitespace.
"""

import json
import logging
import time
from typing import Any, Dict, Mapping, Optional

from eth_abi import encode
from eth_account import Account
from eth_account.messages import encode_defunct
from web3 import Web3

from vibe_trader.errors import SigningError
from vibe_trader.models import SignedRequest


logger = logging.getLogger(__name__)

ABI_LAYOUT = ["string", "address", "address", "uint256"]


def _dumps(value: Any) -> str:
    # Matches JSON.stringify: no whitespace, non-ASCII left as-is
    return json.dumps(value, separators=(",", ":"), ensure_ascii=False)


def stringify_value(value: Any) -> str:
    """Convert one parameter value to its canonical text form."""
    if isinstance(value, bool):
        return "true" if value else "false"
    if value is None:
        return "null"
    if isinstance(value, Mapping):
        return _dumps(stringify_params(value))
    if isinstance(value, (list, tuple)):
        return _dumps([_stringify_item(item) for item in value])
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def _stringify_item(item: Any) -> str:
    # An array inside an array is canonicalized as an index-keyed object
    if isinstance(item, (list, tuple)):
        return _dumps(stringify_params({str(index): value for index, value in enumerate(item)}))
    return stringify_value(item)


def stringify_params(params: Mapping[str, Any]) -> Dict[str, str]:
    """Recursively stringify every value, keeping key order."""
    return {str(key): stringify_value(value) for key, value in params.items()}


def canonicalize(params: Mapping[str, Any]) -> str:
    """
    Build the canonical JSON string the venue recomputes for verification.

    Args:
        params: Request parameters in any insertion order

    Returns:
        Compact JSON object string with keys in code-point order
    """
    clean = {key: value for key, value in params.items() if value is not None}
    stringified = stringify_params(clean)
    ordered = {key: stringified[key] for key in sorted(stringified)}
    return _dumps(ordered)


class RequestSigner:
    """Signs Aster API requests on behalf of a (user, signer) pair."""

    def __init__(self, user_address: str, signer_address: str, private_key: Optional[str]):
        """
        Initialize the signer.

        Args:
            user_address: Main wallet address that owns the account
            signer_address: API wallet address authorised to sign for it
            private_key: Hex private key of the API wallet
        """
        self.user_address = user_address
        self.signer_address = signer_address
        self._private_key = private_key

    @staticmethod
    def generate_nonce() -> int:
        """Current wall-clock time in microseconds (milliseconds x 1000)."""
        return int(time.time() * 1000) * 1000

    def digest(self, params: Mapping[str, Any], nonce: int) -> bytes:
        """
        Keccak-256 hash of the ABI-encoded (json, user, signer, nonce) tuple.

        Raises:
            SigningError: If the addresses or nonce cannot be ABI-encoded
        """
        payload = canonicalize(params)
        try:
            encoded = encode(
                ABI_LAYOUT,
                [
                    payload,
                    Web3.to_checksum_address(self.user_address),
                    Web3.to_checksum_address(self.signer_address),
                    int(nonce),
                ],
            )
        except Exception as e:
            raise SigningError(f"Failed to ABI-encode request: {e}") from e
        return bytes(Web3.keccak(encoded))

    def sign(self, params: Mapping[str, Any], nonce: int) -> str:
        """
        Produce the personal-message signature for a parameter set.

        Args:
            params: Request parameters (including recvWindow and timestamp)
            nonce: Request nonce bound into the signature

        Returns:
            0x-prefixed hex signature

        Raises:
            SigningError: If the key material is missing or invalid
        """
        if not self._private_key:
            raise SigningError("No signing key configured")

        message_hash = self.digest(params, nonce)
        try:
            signed = Account.sign_message(encode_defunct(primitive=message_hash), private_key=self._private_key)
        except Exception as e:
            raise SigningError(f"Failed to sign request: {e}") from e
        return Web3.to_hex(signed.signature)

    def sign_request(self, params: Mapping[str, Any], nonce: Optional[int] = None) -> SignedRequest:
        """Sign params and bundle them with the identity fields sent on the wire."""
        if nonce is None:
            nonce = self.generate_nonce()
        clean = {key: value for key, value in params.items() if value is not None}
        signature = self.sign(clean, nonce)
        return SignedRequest(
            params=clean,
            nonce=nonce,
            signature=signature,
            user_address=self.user_address,
            signer_address=self.signer_address,
        )
