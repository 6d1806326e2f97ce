# anchorreg/gateway.py
"""
Signed-call gateway.

The registry trusts whatever caller identity it is handed. The gateway
is where that identity comes from: a call is signed with the caller's
key, the gateway checks the signature, derives the caller address from
the public key and only then dispatches to the registry.

Each identity carries a nonce that must increase by exactly one per
accepted call, so a captured call cannot be replayed.
"""

import base64
import json
import logging
import threading
from dataclasses import dataclass
from typing import Any, Dict, Set

from .errors import InvalidInput, Unauthorized
from .identity import Signer, address_from_public_key, verify_signature
from .registry import AnchorRegistry

logger = logging.getLogger(__name__)

# operation -> required params
OPERATIONS = {
    "create_anchor": ("asset_hash", "metadata_uri"),
    "link_anchors": ("from_id", "to_id"),
    "verify_anchor": ("anchor_id",),
    "change_admin": ("new_admin",),
}


def _canonicalize(data: Dict[str, Any]) -> str:
    """
    Canonicalize JSON for signing.

    Uses JCS (JSON Canonicalization Scheme) - sorted keys, no whitespace.
    """
    return json.dumps(data, sort_keys=True, separators=(",", ":"))


def call_payload(operation: str, params: Dict[str, Any], nonce: int) -> bytes:
    """Bytes that get signed for a call."""
    return _canonicalize({
        "operation": operation,
        "params": params,
        "nonce": nonce,
    }).encode("utf-8")


@dataclass
class SignedCall:
    """
    A registry call signed by its caller.

    Attributes:
        operation: Registry operation name (see OPERATIONS)
        params: Operation arguments, without the caller
        nonce: Caller's next nonce
        public_key: PEM-encoded public key of the caller
        signature: Base64 RSA-SHA256 signature over call_payload()
    """
    operation: str
    params: Dict[str, Any]
    nonce: int
    public_key: str
    signature: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "operation": self.operation,
            "params": self.params,
            "nonce": self.nonce,
            "public_key": self.public_key,
            "signature": self.signature,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SignedCall":
        return cls(
            operation=data["operation"],
            params=data.get("params", {}),
            nonce=data["nonce"],
            public_key=data["public_key"],
            signature=data["signature"],
        )


def sign_call(signer: Signer, operation: str, params: Dict[str, Any], nonce: int) -> SignedCall:
    """
    Sign a registry call with the signer's private key.

    Args:
        signer: The caller's keypair
        operation: Registry operation name
        params: Operation arguments
        nonce: The caller's next nonce (Gateway.next_nonce)

    Returns:
        SignedCall ready for Gateway.submit()
    """
    signature = signer.sign(call_payload(operation, params, nonce))
    return SignedCall(
        operation=operation,
        params=dict(params),
        nonce=nonce,
        public_key=signer.public_key.decode("utf-8"),
        signature=base64.b64encode(signature).decode("utf-8"),
    )


class Gateway:
    """
    Authenticates signed calls and applies them to a registry.

    Usage:
        gateway = Gateway(registry)
        call = sign_call(alice, "create_anchor",
                         {"asset_hash": "h1", "metadata_uri": ""},
                         gateway.next_nonce(alice.address))
        anchor_id = gateway.submit(call)
    """

    def __init__(self, registry: AnchorRegistry):
        self.registry = registry
        self._nonces: Dict[str, int] = {}
        self._in_flight: Set[str] = set()
        self._lock = threading.Lock()

    def next_nonce(self, address: str) -> int:
        """Nonce the next call from this address must carry."""
        with self._lock:
            return self._nonces.get(address, 0)

    def authenticate(self, call: SignedCall) -> str:
        """
        Check a call's signature and return the caller address.

        Raises:
            Unauthorized: if the key or signature is invalid
        """
        try:
            public_key = call.public_key.encode("utf-8")
            address = address_from_public_key(public_key)
            signature = base64.b64decode(call.signature, validate=True)
        except (ValueError, TypeError, AttributeError) as e:
            raise Unauthorized("<unknown>", f"Malformed call credentials: {e}") from e

        payload = call_payload(call.operation, call.params, call.nonce)
        if not verify_signature(public_key, payload, signature):
            raise Unauthorized(address, f"Invalid signature for {call.operation} from {address}")
        return address

    def submit(self, call: SignedCall) -> Any:
        """
        Authenticate a call and dispatch it to the registry.

        The nonce only advances when the registry accepts the call.

        Returns:
            The registry operation's result (the new id for create_anchor)

        Raises:
            Unauthorized: bad signature, or the registry refused the caller
            InvalidInput: unknown operation, missing params, wrong nonce
            NotFound, AlreadyVerified: as raised by the registry
        """
        required = OPERATIONS.get(call.operation)
        if required is None:
            raise InvalidInput(f"Unknown operation: {call.operation}")
        missing = [p for p in required if p not in call.params]
        if missing:
            raise InvalidInput(f"{call.operation} missing params: {', '.join(missing)}")

        address = self.authenticate(call)

        # Reserve the nonce, then dispatch without holding the gateway lock
        # so registry subscribers may call back into the gateway.
        with self._lock:
            expected = self._nonces.get(address, 0)
            if call.nonce != expected:
                logger.debug(f"Rejected {call.operation} from {address}: nonce {call.nonce} != {expected}")
                raise InvalidInput(f"Bad nonce for {address}: expected {expected}, got {call.nonce}")
            if address in self._in_flight:
                logger.debug(f"Rejected {call.operation} from {address}: call already in flight")
                raise InvalidInput(f"A call from {address} is already in flight")
            self._in_flight.add(address)

        args = [call.params[p] for p in required]
        try:
            result = getattr(self.registry, call.operation)(*args, caller=address)
        except Exception:
            with self._lock:
                self._in_flight.discard(address)
            raise

        with self._lock:
            self._nonces[address] = expected + 1
            self._in_flight.discard(address)

        logger.debug(f"Applied {call.operation} from {address} (nonce {expected})")
        return result
