# anchorreg/registry/__init__.py
"""
Anchor Registry.

The registry is the foundational data structure: an append-only store of
anchors, each binding an asset hash and optional metadata URI to the
identity that created it.

Example:
    registry = AnchorRegistry(admin="0xadmin")
    first = registry.create_anchor("h1", "ipfs://meta/1", caller="0xalice")
    second = registry.create_anchor("h2", "", caller="0xalice")
    registry.link_anchors(first, second, caller="0xalice")
    registry.verify_anchor(first, caller="0xadmin")
"""

from .registry import AnchorRegistry, Anchor

__all__ = ["AnchorRegistry", "Anchor"]
