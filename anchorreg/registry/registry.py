# anchorreg/registry/registry.py
"""
Anchor registry.

The registry records anchors (asset hash + metadata locator + creator)
in an append-only store, enabling:
- Sequential, never-reused anchor ids
- Symmetric links between anchors
- One-way verification by the admin
- Per-creator and per-hash lookup

Nothing is ever deleted. Every operation runs under one instance lock
and checks all preconditions before touching state.
"""

import dataclasses
import json
import logging
import os
import threading
import time
from collections import deque
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Deque, Dict, Iterator, List

from ..errors import AlreadyVerified, InvalidInput, NotFound, RegistryError, Unauthorized
from ..events import (
    ADMIN_CHANGED,
    ANCHOR_CREATED,
    ANCHOR_LINKED,
    ANCHOR_VERIFIED,
    EventLog,
    RegistryEvent,
)
from ..identity import is_null_identity

logger = logging.getLogger(__name__)

SNAPSHOT_VERSION = "1.0"


@dataclass
class Anchor:
    """
    A registered anchor.

    Attributes:
        anchor_id: Sequential id, starting at 1
        creator: Identity that created the anchor
        asset_hash: Opaque content digest of the external asset
        metadata_uri: Optional locator for asset metadata (may be empty)
        created_at: Registry clock timestamp at creation
        verified: Set once by the admin, never cleared
        linked_anchors: Ids of linked anchors, in link order, duplicates kept
    """
    anchor_id: int
    creator: str
    asset_hash: str
    metadata_uri: str = ""
    created_at: float = field(default_factory=time.time)
    verified: bool = False
    linked_anchors: List[int] = field(default_factory=list)

    def snapshot(self) -> "Anchor":
        """Independent copy, safe to hand to callers."""
        return dataclasses.replace(self, linked_anchors=list(self.linked_anchors))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "anchor_id": self.anchor_id,
            "creator": self.creator,
            "asset_hash": self.asset_hash,
            "metadata_uri": self.metadata_uri,
            "created_at": self.created_at,
            "verified": self.verified,
            "linked_anchors": list(self.linked_anchors),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Anchor":
        return cls(
            anchor_id=int(data["anchor_id"]),
            creator=data["creator"],
            asset_hash=data["asset_hash"],
            metadata_uri=data.get("metadata_uri", ""),
            created_at=data["created_at"],
            verified=bool(data.get("verified", False)),
            linked_anchors=[int(i) for i in data.get("linked_anchors", [])],
        )



class AnchorRegistry:
    """
    The anchor registry.

    Structure (when store_dir is given):
        store_dir/
            registry.json     # Admin, anchors and event log

    Events reach subscribers after the registry lock is released, from an
    ordered outbox, so subscribers may call back into the registry.
    """

    def __init__(
        self,
        admin: str,
        clock: Callable[[], float] = None,
        store_dir: Path | str = None,
        event_log: EventLog = None,
    ):
        """
        Initialize the registry.

        Args:
            admin: Initial admin identity (must not be null)
            clock: Timestamp source for created_at (default: time.time)
            store_dir: Optional directory for the JSON snapshot
            event_log: Event sink (a fresh EventLog if omitted)

        Raises:
            InvalidInput: if admin is null
            RegistryError: if a stored snapshot cannot be read
        """
        if is_null_identity(admin):
            raise InvalidInput("Admin must be a non-null identity")

        self._lock = threading.RLock()
        self._clock = clock or time.time
        self._admin = admin
        self._anchors: Dict[int, Anchor] = {}
        self._by_creator: Dict[str, List[int]] = {}
        self._anchor_count = 0
        self.events = event_log if event_log is not None else EventLog()

        # Committed events waiting for delivery, in log order
        self._outbox: Deque[RegistryEvent] = deque()
        self._outbox_lock = threading.Lock()
        self._delivering = False

        self.store_dir = Path(store_dir) if store_dir is not None else None
        if self.store_dir is not None:
            self.store_dir.mkdir(parents=True, exist_ok=True)
            self._load()

    # -- persistence ---------------------------------------------------

    def _index_path(self) -> Path:
        return self.store_dir / "registry.json"

    def _load(self):
        """Load registry state from disk."""
        index_path = self._index_path()
        if not index_path.exists():
            return
        try:
            with open(index_path) as f:
                data = json.load(f)
            anchors = [Anchor.from_dict(a) for a in data.get("anchors", [])]
            admin = data["admin"] if "admin" in data else self._admin
            anchor_count = int(data.get("anchor_count", len(anchors)))
            events = data.get("events", [])
        except (json.JSONDecodeError, KeyError, TypeError, ValueError) as e:
            raise RegistryError(f"Failed to load registry from {index_path}: {e}") from e

        anchors.sort(key=lambda a: a.anchor_id)
        expected = list(range(1, anchor_count + 1))
        if [a.anchor_id for a in anchors] != expected:
            raise RegistryError(f"Registry snapshot {index_path} has missing or extra anchor ids")
        if not isinstance(admin, str) or is_null_identity(admin):
            raise RegistryError(f"Registry snapshot {index_path} has a null admin")

        self._admin = admin
        self._anchor_count = anchor_count
        for anchor in anchors:
            self._anchors[anchor.anchor_id] = anchor
            self._by_creator.setdefault(anchor.creator, []).append(anchor.anchor_id)
        self.events.load(events)
        logger.info(f"Loaded {anchor_count} anchors from {index_path}")

    def _save(self, pending: List[RegistryEvent] = ()):
        """Save registry state plus not-yet-recorded events (write temp file, then replace)."""
        data = {
            "version": SNAPSHOT_VERSION,
            "admin": self._admin,
            "anchor_count": self._anchor_count,
            "anchors": [self._anchors[i].to_dict() for i in range(1, self._anchor_count + 1)],
            "events": [e.to_dict() for e in self.events.list() + list(pending)],
        }
        index_path = self._index_path()
        tmp_path = index_path.with_suffix(".tmp")
        try:
            with open(tmp_path, "w") as f:
                json.dump(data, f, indent=2)
            os.replace(tmp_path, index_path)
        except Exception:
            tmp_path.unlink(missing_ok=True)
            raise

    def _commit(self, undo: Callable[[], None], events: List[RegistryEvent]):
        """
        Persist a mutation and record its events.

        If the snapshot cannot be written the mutation is undone and the
        events are never recorded, so no reader can observe them.
        """
        if self.store_dir is not None:
            try:
                self._save(events)
            except Exception:
                logger.error("Failed to persist registry, rolling back", exc_info=True)
                undo()
                raise
        self.events.record(events)
        with self._outbox_lock:
            self._outbox.extend(events)

    def _deliver(self):
        """
        Deliver queued events to subscribers. Call without holding the lock.

        Only one thread delivers at a time. A call made while delivery is
        already running (another thread, or a subscriber calling back into
        the registry) returns at once; the running delivery picks up what
        was queued, keeping log order.
        """
        with self._outbox_lock:
            if self._delivering:
                return
            self._delivering = True
        try:
            while True:
                with self._outbox_lock:
                    if not self._outbox:
                        self._delivering = False
                        return
                    event = self._outbox.popleft()
                self.events.publish(event)
        finally:
            with self._outbox_lock:
                self._delivering = False

    # -- authorization -------------------------------------------------

    def _require(self, anchor_id: int) -> Anchor:
        anchor = self._anchors.get(anchor_id)
        if anchor is None:
            raise NotFound(anchor_id)
        return anchor

    def is_admin(self, caller: str) -> bool:
        """Check whether caller currently holds the admin role."""
        with self._lock:
            return not is_null_identity(caller) and caller == self._admin

    def is_creator_or_admin(self, anchor_id: int, caller: str) -> bool:
        """Check whether caller created the anchor or is the admin."""
        with self._lock:
            anchor = self._anchors.get(anchor_id)
            if anchor is None:
                return False
            return caller == anchor.creator or self.is_admin(caller)

    # -- mutating operations -------------------------------------------

    def create_anchor(self, asset_hash: str, metadata_uri: str, caller: str) -> int:
        """
        Anchor an asset hash.

        Args:
            asset_hash: Non-empty content digest
            metadata_uri: Optional metadata locator ("" or None for none)
            caller: Identity of the creator

        Returns:
            The new anchor id (previous anchor_count + 1)

        Raises:
            InvalidInput: if asset_hash is empty
        """
        if not isinstance(asset_hash, str) or asset_hash == "":
            logger.debug(f"create_anchor rejected for {caller}: empty asset hash")
            raise InvalidInput("Asset hash must be a non-empty string")
        if metadata_uri is None:
            metadata_uri = ""
        if not isinstance(metadata_uri, str):
            raise InvalidInput("Metadata URI must be a string")

        with self._lock:
            anchor_id = self._anchor_count + 1
            anchor = Anchor(
                anchor_id=anchor_id,
                creator=caller,
                asset_hash=asset_hash,
                metadata_uri=metadata_uri,
                created_at=self._clock(),
            )
            events = self.events.draft([(ANCHOR_CREATED, {
                "anchor_id": anchor_id,
                "creator": caller,
                "asset_hash": asset_hash,
                "metadata_uri": metadata_uri,
            })])

            self._anchors[anchor_id] = anchor
            self._by_creator.setdefault(caller, []).append(anchor_id)
            self._anchor_count = anchor_id

            def undo():
                del self._anchors[anchor_id]
                ids = self._by_creator[caller]
                ids.pop()
                if not ids:
                    del self._by_creator[caller]
                self._anchor_count = anchor_id - 1

            self._commit(undo, events)
            logger.info(f"Anchor {anchor_id} created by {caller} ({asset_hash[:16]})")

        self._deliver()
        return anchor_id

    def link_anchors(self, from_id: int, to_id: int, caller: str) -> None:
        """
        Link two anchors in both directions.

        Linking the same pair again appends again on both sides.

        Raises:
            NotFound: if either anchor does not exist
            InvalidInput: if from_id == to_id
            Unauthorized: if caller is neither from_id's creator nor the admin
        """
        with self._lock:
            try:
                source = self._require(from_id)
                target = self._require(to_id)
                if from_id == to_id:
                    raise InvalidInput(f"Cannot link anchor {from_id} to itself")
                if not self.is_creator_or_admin(from_id, caller):
                    raise Unauthorized(caller, f"{caller} may not link from anchor {from_id}")
            except RegistryError as e:
                logger.debug(f"link_anchors({from_id}, {to_id}) rejected: {e}")
                raise

            events = self.events.draft([
                (ANCHOR_LINKED, {"from_id": from_id, "to_id": to_id, "caller": caller}),
                (ANCHOR_LINKED, {"from_id": to_id, "to_id": from_id, "caller": caller}),
            ])
            source.linked_anchors.append(to_id)
            target.linked_anchors.append(from_id)

            def undo():
                source.linked_anchors.pop()
                target.linked_anchors.pop()

            self._commit(undo, events)
            logger.info(f"Linked anchors {from_id} <-> {to_id} by {caller}")

        self._deliver()

    def verify_anchor(self, anchor_id: int, caller: str) -> None:
        """
        Mark an anchor verified. Admin only, once per anchor.

        Raises:
            NotFound: if the anchor does not exist
            Unauthorized: if caller is not the admin
            AlreadyVerified: if the anchor is already verified
        """
        with self._lock:
            try:
                anchor = self._require(anchor_id)
                if not self.is_admin(caller):
                    raise Unauthorized(caller, f"Only the admin may verify anchor {anchor_id}")
                if anchor.verified:
                    raise AlreadyVerified(anchor_id)
            except RegistryError as e:
                logger.debug(f"verify_anchor({anchor_id}) rejected: {e}")
                raise

            events = self.events.draft([(ANCHOR_VERIFIED, {"anchor_id": anchor_id, "verifier": caller})])
            anchor.verified = True

            def undo():
                anchor.verified = False

            self._commit(undo, events)
            logger.info(f"Anchor {anchor_id} verified by {caller}")

        self._deliver()

    def change_admin(self, new_admin: str, caller: str) -> None:
        """
        Hand the admin role to another identity.

        Raises:
            Unauthorized: if caller is not the current admin
            InvalidInput: if new_admin is null
        """
        with self._lock:
            if not self.is_admin(caller):
                logger.debug(f"change_admin rejected: {caller} is not admin")
                raise Unauthorized(caller, "Only the admin may change the admin")
            if is_null_identity(new_admin):
                logger.debug("change_admin rejected: null identity")
                raise InvalidInput("New admin must be a non-null identity")

            old_admin = self._admin
            events = self.events.draft([(ADMIN_CHANGED, {"old_admin": old_admin, "new_admin": new_admin})])
            self._admin = new_admin

            def undo():
                self._admin = old_admin

            self._commit(undo, events)
            logger.info(f"Admin changed from {old_admin} to {new_admin}")

        self._deliver()

    # -- queries -------------------------------------------------------

    @property
    def admin(self) -> str:
        with self._lock:
            return self._admin

    @property
    def anchor_count(self) -> int:
        with self._lock:
            return self._anchor_count

    def get_anchor(self, anchor_id: int) -> Anchor:
        """
        Get a snapshot of an anchor.

        Raises:
            NotFound: if the anchor does not exist
        """
        with self._lock:
            return self._require(anchor_id).snapshot()

    def get_user_anchors(self, identity: str) -> List[int]:
        """Ids created by an identity, in creation order."""
        with self._lock:
            return list(self._by_creator.get(identity, []))

    def find_by_hash(self, asset_hash: str) -> List[int]:
        """Ids of every anchor for an asset hash, in creation order."""
        with self._lock:
            return [
                anchor_id for anchor_id in range(1, self._anchor_count + 1)
                if self._anchors[anchor_id].asset_hash == asset_hash
            ]

    def list(self) -> List[Anchor]:
        """Snapshots of all anchors, in id order."""
        with self._lock:
            return [self._anchors[i].snapshot() for i in range(1, self._anchor_count + 1)]

    def __contains__(self, anchor_id: int) -> bool:
        with self._lock:
            return anchor_id in self._anchors

    def __len__(self) -> int:
        return self.anchor_count

    def __iter__(self) -> Iterator[Anchor]:
        return iter(self.list())
