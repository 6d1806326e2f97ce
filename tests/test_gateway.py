# tests/test_gateway.py
"""Tests for the signed-call gateway."""

import threading

import pytest

from anchorreg import (
    AnchorRegistry,
    Gateway,
    InvalidInput,
    NotFound,
    SignedCall,
    Signer,
    Unauthorized,
    sign_call,
)


@pytest.fixture(scope="module")
def admin_signer():
    return Signer.create()


@pytest.fixture(scope="module")
def alice():
    return Signer.create()


@pytest.fixture(scope="module")
def mallory():
    return Signer.create()


@pytest.fixture
def registry(admin_signer):
    return AnchorRegistry(admin=admin_signer.address)


@pytest.fixture
def gateway(registry):
    return Gateway(registry)


def submit(gateway, signer, operation, **params):
    """Sign a call with the signer's current nonce and submit it."""
    call = sign_call(signer, operation, params, gateway.next_nonce(signer.address))
    return gateway.submit(call)


class TestSubmit:
    """Tests for dispatching signed calls."""

    def test_create_uses_signer_address(self, gateway, registry, alice):
        anchor_id = submit(gateway, alice, "create_anchor", asset_hash="h1", metadata_uri="")

        assert anchor_id == 1
        assert registry.get_anchor(1).creator == alice.address
        assert registry.get_user_anchors(alice.address) == [1]

    def test_full_flow(self, gateway, registry, admin_signer, alice):
        submit(gateway, alice, "create_anchor", asset_hash="h1", metadata_uri="")
        submit(gateway, alice, "create_anchor", asset_hash="h2", metadata_uri="ipfs://m")
        submit(gateway, alice, "link_anchors", from_id=1, to_id=2)
        submit(gateway, admin_signer, "verify_anchor", anchor_id=2)

        assert registry.get_anchor(1).linked_anchors == [2]
        assert registry.get_anchor(2).verified is True
        assert gateway.next_nonce(alice.address) == 3
        assert gateway.next_nonce(admin_signer.address) == 1

    def test_change_admin(self, gateway, registry, admin_signer, alice):
        submit(gateway, admin_signer, "change_admin", new_admin=alice.address)
        assert registry.admin == alice.address

    def test_registry_errors_propagate(self, gateway, alice, mallory):
        with pytest.raises(NotFound):
            submit(gateway, alice, "verify_anchor", anchor_id=1)

        submit(gateway, alice, "create_anchor", asset_hash="h1", metadata_uri="")
        with pytest.raises(Unauthorized):
            submit(gateway, mallory, "verify_anchor", anchor_id=1)

    def test_rejected_call_keeps_nonce(self, gateway, mallory):
        with pytest.raises(InvalidInput):
            submit(gateway, mallory, "create_anchor", asset_hash="", metadata_uri="")
        assert gateway.next_nonce(mallory.address) == 0


class TestAuthentication:
    """Tests for signature and nonce checks."""

    def test_tampered_params(self, gateway, registry, alice):
        call = sign_call(alice, "create_anchor", {"asset_hash": "h1", "metadata_uri": ""}, 0)
        call.params["asset_hash"] = "forged"

        with pytest.raises(Unauthorized):
            gateway.submit(call)
        assert registry.anchor_count == 0

    def test_swapped_public_key(self, gateway, registry, alice, mallory):
        """Claiming someone else's key with your own signature fails."""
        call = sign_call(mallory, "create_anchor", {"asset_hash": "h1", "metadata_uri": ""}, 0)
        call.public_key = alice.public_key.decode("utf-8")

        with pytest.raises(Unauthorized):
            gateway.submit(call)
        assert registry.anchor_count == 0

    def test_malformed_signature(self, gateway, alice):
        call = sign_call(alice, "create_anchor", {"asset_hash": "h1", "metadata_uri": ""}, 0)
        call.signature = "***"

        with pytest.raises(Unauthorized):
            gateway.submit(call)

    def test_replay_rejected(self, gateway, registry, alice):
        call = sign_call(alice, "create_anchor", {"asset_hash": "h1", "metadata_uri": ""}, 0)
        gateway.submit(call)

        with pytest.raises(InvalidInput):
            gateway.submit(call)
        assert registry.anchor_count == 1

    def test_future_nonce_rejected(self, gateway, alice):
        call = sign_call(alice, "create_anchor", {"asset_hash": "h1", "metadata_uri": ""}, 5)
        with pytest.raises(InvalidInput):
            gateway.submit(call)

    def test_unknown_operation(self, gateway, alice):
        call = sign_call(alice, "delete_anchor", {"anchor_id": 1}, 0)
        with pytest.raises(InvalidInput):
            gateway.submit(call)

    def test_missing_params(self, gateway, alice):
        call = sign_call(alice, "link_anchors", {"from_id": 1}, 0)
        with pytest.raises(InvalidInput):
            gateway.submit(call)

    def test_call_serialization(self, gateway, registry, alice):
        call = sign_call(alice, "create_anchor", {"asset_hash": "h1", "metadata_uri": ""}, 0)
        restored = SignedCall.from_dict(call.to_dict())

        assert gateway.submit(restored) == 1


class TestSubscriberCallbacks:
    """Subscribers may call back into the gateway while a call is applied."""

    def test_subscriber_reads_nonce(self, gateway, registry, alice):
        seen = []
        registry.events.subscribe(lambda event: seen.append(gateway.next_nonce(alice.address)))

        thread = threading.Thread(
            target=submit, args=(gateway, alice, "create_anchor"),
            kwargs={"asset_hash": "h1", "metadata_uri": ""},
        )
        thread.start()
        thread.join(timeout=5)

        assert not thread.is_alive()
        assert seen == [0]
        assert gateway.next_nonce(alice.address) == 1

    def test_subscriber_submits_own_call(self, gateway, registry, admin_signer, alice):
        """The admin auto-verifies every new anchor from a subscriber."""
        def auto_verify(event):
            if event.event_type == "AnchorCreated":
                submit(gateway, admin_signer, "verify_anchor", anchor_id=event.data["anchor_id"])

        registry.events.subscribe(auto_verify)

        thread = threading.Thread(
            target=submit, args=(gateway, alice, "create_anchor"),
            kwargs={"asset_hash": "h1", "metadata_uri": ""},
        )
        thread.start()
        thread.join(timeout=5)

        assert not thread.is_alive()
        assert registry.get_anchor(1).verified is True
        assert gateway.next_nonce(admin_signer.address) == 1
        assert gateway.next_nonce(alice.address) == 1
        assert [e.event_type for e in registry.events.list()] == ["AnchorCreated", "AnchorVerified"]

    def test_same_caller_cannot_reenter(self, gateway, registry, alice):
        errors = []

        def resubmit(event):
            try:
                submit(gateway, alice, "create_anchor", asset_hash="h2", metadata_uri="")
            except InvalidInput as e:
                errors.append(e)

        registry.events.subscribe(resubmit)
        submit(gateway, alice, "create_anchor", asset_hash="h1", metadata_uri="")

        assert len(errors) == 1
        assert registry.anchor_count == 1
        assert gateway.next_nonce(alice.address) == 1
