"""
Tests for rollup/transition.py: wire encoding and signatures.
"""

import json

import pytest

import rollup.config as config
from rollup.transition import (
    CommitTransition,
    DepositTransition,
    SyncBalanceTransition,
    WithdrawTransition,
    decode_transition,
    encode_transition,
    get_transition_type,
    sign_transition,
    signed_by,
)

from conftest import new_user


class TestEncoding:
    """Canonical JSON wire format."""

    def test_encode_decode(self):
        tn = DepositTransition(state_root="ab" * 32, account="0xa", account_id=3, asset_id=1, amount=10 ** 30)
        data = encode_transition(tn)
        assert isinstance(data, bytes)
        assert decode_transition(data) == tn

    def test_encoding_is_canonical(self):
        tn = SyncBalanceTransition(state_root="00" * 32, strategy_id=1, new_asset_delta=-5)
        assert encode_transition(tn) == encode_transition(decode_transition(encode_transition(tn)))
        assert json.loads(encode_transition(tn))["type"] == config.TN_TYPE_SYNC_BALANCE

    def test_type_of_garbage_is_invalid(self):
        assert get_transition_type(b"not json") == config.TN_TYPE_INVALID
        assert get_transition_type(b"[1, 2]") == config.TN_TYPE_INVALID
        assert get_transition_type(b'{"type": 99}') == config.TN_TYPE_INVALID
        assert get_transition_type(b'{"state_root": ""}') == config.TN_TYPE_INVALID

    def test_decode_rejects_unknown_type(self):
        with pytest.raises(ValueError, match="Invalid transition type"):
            decode_transition(b'{"type": 0}')

    def test_decode_rejects_mistyped_field(self):
        data = json.dumps({"type": config.TN_TYPE_DEPOSIT, "amount": "10"}).encode()
        with pytest.raises(ValueError, match="Invalid transition field: amount"):
            decode_transition(data)

    def test_decode_rejects_bool_for_int(self):
        data = json.dumps({"type": config.TN_TYPE_DEPOSIT, "amount": True}).encode()
        with pytest.raises(ValueError, match="Invalid transition field"):
            decode_transition(data)

    def test_missing_fields_take_defaults(self):
        tn = decode_transition(json.dumps({"type": config.TN_TYPE_SYNC_BALANCE}).encode())
        assert tn == SyncBalanceTransition()


class TestSignatures:
    """Owner signatures on withdraw/commit/uncommit."""

    def test_signed_by_owner(self):
        owner = new_user()
        tn = WithdrawTransition(account=owner.address, account_id=1, asset_id=1, amount=5, timestamp=1)
        sign_transition(tn, owner.private_key, owner.public_key)
        assert signed_by(tn, owner.address)

    def test_signature_survives_encoding(self):
        owner = new_user()
        tn = CommitTransition(account_id=1, strategy_id=1, asset_amount=5, timestamp=7)
        sign_transition(tn, owner.private_key, owner.public_key)
        assert signed_by(decode_transition(encode_transition(tn)), owner.address)

    def test_other_key_rejected(self):
        owner = new_user()
        other = new_user()
        tn = WithdrawTransition(account=owner.address, account_id=1, asset_id=1, amount=5, timestamp=1)
        sign_transition(tn, other.private_key, other.public_key)
        assert not signed_by(tn, owner.address)

    def test_tampered_field_rejected(self):
        owner = new_user()
        tn = WithdrawTransition(account=owner.address, account_id=1, asset_id=1, amount=5, timestamp=1)
        sign_transition(tn, owner.private_key, owner.public_key)
        tn.amount = 6
        assert not signed_by(tn, owner.address)

    def test_unsigned_and_garbage_keys(self):
        tn = WithdrawTransition(account="0xa", amount=1, timestamp=1)
        assert not signed_by(tn, "0xa")
        tn.public_key = "zz"
        tn.signature = "00"
        assert not signed_by(tn, "0xa")
