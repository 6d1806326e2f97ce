# anchorreg/identity.py
"""
Caller identities for the anchor registry.

The registry treats an identity as an opaque string and never
authenticates it. This module supplies the primitive that does:

- A null identity, which can never hold the admin role
- Addresses derived from RSA public keys (SHA-3-256, last 20 bytes)
- Signer: a keypair that can sign call payloads
"""

import hashlib
import time
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding, rsa

ZERO_IDENTITY = "0x" + "0" * 40

DEFAULT_KEY_SIZE = 2048
MIN_KEY_SIZE = 1024


def is_null_identity(identity: Optional[str]) -> bool:
    """True for None, the empty string and the zero address."""
    if identity is None:
        return True
    if not isinstance(identity, str):
        return False
    identity = identity.strip()
    return identity == "" or identity.lower() == ZERO_IDENTITY


def _generate_keypair(key_size: int = DEFAULT_KEY_SIZE) -> tuple[bytes, bytes]:
    """
    Generate an RSA keypair for call signing.

    Returns:
        (private PEM in PKCS8, public PEM in SubjectPublicKeyInfo)
    """
    if key_size < MIN_KEY_SIZE:
        raise ValueError(f"RSA key size must be at least {MIN_KEY_SIZE} bits, got {key_size}")
    key = rsa.generate_private_key(public_exponent=65537, key_size=key_size)
    return (
        key.private_bytes(
            serialization.Encoding.PEM,
            serialization.PrivateFormat.PKCS8,
            serialization.NoEncryption(),
        ),
        key.public_key().public_bytes(
            serialization.Encoding.PEM,
            serialization.PublicFormat.SubjectPublicKeyInfo,
        ),
    )


def address_from_public_key(public_key_pem: bytes) -> str:
    """
    Derive the identity address for a public key.

    Args:
        public_key_pem: PEM-encoded public key

    Returns:
        "0x" followed by the last 20 bytes of the SHA-3-256 digest of the
        DER-encoded key, as lowercase hex

    Raises:
        ValueError: if the PEM cannot be parsed
    """
    public_key = serialization.load_pem_public_key(public_key_pem)
    der = public_key.public_bytes(
        encoding=serialization.Encoding.DER,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    )
    return "0x" + hashlib.sha3_256(der).digest()[-20:].hex()


def verify_signature(public_key_pem: bytes, payload: bytes, signature: bytes) -> bool:
    """
    Verify an RSA-SHA256 signature over a payload.

    Returns:
        True if the signature is valid for this key
    """
    try:
        public_key = serialization.load_pem_public_key(public_key_pem)
        public_key.verify(
            signature,
            payload,
            padding.PKCS1v15(),
            hashes.SHA256(),
        )
        return True
    except (InvalidSignature, ValueError, TypeError):
        return False


@dataclass
class Signer:
    """
    A keypair able to act as a registry caller.

    Attributes:
        public_key: PEM-encoded public key
        private_key: PEM-encoded private key (kept secret)
        created_at: Timestamp of creation
    """
    public_key: bytes
    private_key: bytes
    created_at: float = field(default_factory=time.time)

    @property
    def address(self) -> str:
        """Identity address the registry sees for this signer."""
        return address_from_public_key(self.public_key)

    def sign(self, payload: bytes) -> bytes:
        """Sign a payload with RSA-SHA256."""
        private_key = serialization.load_pem_private_key(
            self.private_key,
            password=None,
        )
        return private_key.sign(
            payload,
            padding.PKCS1v15(),
            hashes.SHA256(),
        )

    def to_dict(self) -> Dict[str, Any]:
        """Serialize for storage."""
        return {
            "public_key": self.public_key.decode("utf-8"),
            "private_key": self.private_key.decode("utf-8"),
            "created_at": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Signer":
        """Deserialize from storage."""
        return cls(
            public_key=data["public_key"].encode("utf-8"),
            private_key=data["private_key"].encode("utf-8"),
            created_at=data.get("created_at", time.time()),
        )

    @classmethod
    def create(cls, key_size: int = DEFAULT_KEY_SIZE) -> "Signer":
        """Create a new signer with generated keys."""
        private_pem, public_pem = _generate_keypair(key_size)
        return cls(public_key=public_pem, private_key=private_pem)
