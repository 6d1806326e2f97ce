# anchorreg - Append-only registry of content-hash anchors
#
# Anchors bind an external asset's content hash (and optional metadata
# URI) to the identity that registered it. Anchors can be linked to each
# other and verified once by the registry admin. Nothing is ever deleted.
#
# Core concepts:
# - Anchor: An asset hash record with creator, links and verified flag
# - AnchorRegistry: Owns all anchors and the admin role
# - EventLog: Ordered notifications of every state change
# - Gateway: Turns signed calls into authenticated registry calls

from .errors import RegistryError, InvalidInput, NotFound, Unauthorized, AlreadyVerified
from .events import RegistryEvent, EventLog
from .identity import Signer, ZERO_IDENTITY, is_null_identity
from .registry import AnchorRegistry, Anchor
from .gateway import Gateway, SignedCall, sign_call
from .config import RegistryConfig

__all__ = [
    # Core
    "AnchorRegistry",
    "Anchor",
    # Errors
    "RegistryError",
    "InvalidInput",
    "NotFound",
    "Unauthorized",
    "AlreadyVerified",
    # Events
    "RegistryEvent",
    "EventLog",
    # Identity
    "Signer",
    "ZERO_IDENTITY",
    "is_null_identity",
    "Gateway",
    "SignedCall",
    "sign_call",
    # Config
    "RegistryConfig",
]

__version__ = "0.1.0"
