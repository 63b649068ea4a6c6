"""
Tests for rollup/disputer.py through RollupChain.dispute_transition.
"""

from dataclasses import replace

import pytest

from rollup.block import BlockStatus, get_transition_siblings
from rollup.crypto_utils import hash_node
from rollup.disputer import previous_live_block_id
from rollup.events import RollupBlockReverted
from rollup.intake import IntakeStatus
from rollup.transition import (
    DepositTransition,
    InitTransition,
    SyncBalanceTransition,
    SyncCommitmentTransition,
    TransitionProof,
    UncommitTransition,
    WithdrawTransition,
    sign_transition,
    transition_hash,
)

from conftest import CHALLENGE_PERIOD, OPERATOR, STRATEGY_ADDRESS, TOKEN_ADDRESS, new_user

BAD_ROOT = "ab" * 32


@pytest.fixture
def funded(rollup, builder, user):
    """Block 0 = [init, deposit 100 for user], committed at t=0."""
    rollup.deposit(user.address, TOKEN_ADDRESS, 100, now=0)
    builder.add_init()
    builder.add_deposit(user.address, 1, 100)
    block_id, transitions = builder.build_block()
    rollup.commit_block(OPERATOR, block_id, transitions, now=0)
    return user


def _commit(rollup, builder, now):
    block_id, transitions = builder.build_block()
    rollup.commit_block(OPERATOR, block_id, transitions, now=now)
    return block_id


def _dispute(rollup, builder, block_id, index, now=10, sender="0xwatcher"):
    prev, invalid, account_proof, strategy_proof = builder.prove_dispute(block_id, index)
    return rollup.dispute_transition(sender, prev, invalid, account_proof, strategy_proof, now=now)


class TestValidBlocks:
    """Disputes against correct transitions fail and change nothing."""

    def test_valid_deposit(self, rollup, builder, funded):
        with pytest.raises(ValueError, match="Failed to dispute"):
            _dispute(rollup, builder, 0, 1)
        assert rollup.get_block(0).status == BlockStatus.COMMITTED

    def test_valid_init(self, rollup, builder, funded):
        with pytest.raises(ValueError, match="Failed to dispute"):
            _dispute(rollup, builder, 0, 0)

    def test_valid_commit_in_later_block(self, rollup, builder, funded, strategy):
        builder.add_commit(funded.address, 1, 60, 1, funded.private_key, funded.public_key)
        builder.add_sync_commitment(1)
        _commit(rollup, builder, now=5)
        for index in (0, 1):
            with pytest.raises(ValueError, match="Failed to dispute"):
                _dispute(rollup, builder, 1, index)


class TestInvalidBlocks:
    """Each kind of fault reverts the block with its reason."""

    def test_wrong_post_state_root(self, rollup, builder, user):
        rollup.deposit(user.address, TOKEN_ADDRESS, 100, now=0)
        builder.add_init()
        builder.add_deposit(user.address, 1, 100, state_root=BAD_ROOT)
        _commit(rollup, builder, now=0)

        assert _dispute(rollup, builder, 0, 1) == "invalid post-state root"
        block = rollup.get_block(0)
        assert block.status == BlockStatus.REVERTED
        assert block.revert_reason == "invalid post-state root"
        assert rollup.pending_deposit(0).status == IntakeStatus.PENDING
        assert rollup.events[-1] == RollupBlockReverted(0, "invalid post-state root")

    def test_wrong_genesis_in_init(self, rollup, builder):
        builder.add_unchecked(InitTransition(state_root=BAD_ROOT))
        _commit(rollup, builder, now=0)
        assert _dispute(rollup, builder, 0, 0) == "invalid init transition"

    def test_first_transition_not_init(self, rollup, builder, user):
        rollup.deposit(user.address, TOKEN_ADDRESS, 100, now=0)
        builder.add_deposit(user.address, 1, 100)
        _commit(rollup, builder, now=0)
        assert _dispute(rollup, builder, 0, 0) == "invalid init transition"

    def test_second_init(self, rollup, builder, funded):
        builder.add_unchecked(InitTransition(state_root=builder.genesis_root))
        _commit(rollup, builder, now=5)
        assert _dispute(rollup, builder, 1, 0) == "invalid init transition"

    def test_bad_signature(self, rollup, builder, funded):
        tn = WithdrawTransition(account=funded.address, account_id=1, asset_id=1, amount=10, timestamp=1)
        thief = new_user()
        sign_transition(tn, thief.private_key, thief.public_key)
        builder.add_unchecked(tn)
        _commit(rollup, builder, now=5)
        assert len(rollup.get_pending_withdraw_commits(1)) == 1

        assert _dispute(rollup, builder, 1, 0) == "failed to evaluate"
        assert rollup.get_block(1).status == BlockStatus.REVERTED
        assert rollup.get_pending_withdraw_commits(1) == []
        assert rollup.get_block(0).status == BlockStatus.COMMITTED

    def test_overdraw(self, rollup, builder, funded):
        tn = WithdrawTransition(account=funded.address, account_id=1, asset_id=1, amount=101, timestamp=1)
        sign_transition(tn, funded.private_key, funded.public_key)
        builder.add_unchecked(tn)
        _commit(rollup, builder, now=5)
        assert _dispute(rollup, builder, 1, 0) == "failed to evaluate"

    def test_deposit_into_someone_elses_account(self, rollup, builder, funded, make_user):
        intruder = make_user()
        rollup.deposit(intruder.address, TOKEN_ADDRESS, 5, now=1)
        builder.add_unchecked(DepositTransition(account=intruder.address, account_id=1, asset_id=1, amount=5))
        _commit(rollup, builder, now=5)
        assert _dispute(rollup, builder, 1, 0) == "invalid account id"
        assert rollup.pending_deposit(1).status == IntakeStatus.PENDING

    def test_out_of_range_account_id(self, rollup, builder, funded):
        tn = WithdrawTransition(account=funded.address, account_id=0, asset_id=1, amount=1, timestamp=1)
        sign_transition(tn, funded.private_key, funded.public_key)
        builder.add_unchecked(tn)
        _commit(rollup, builder, now=5)
        assert _dispute(rollup, builder, 1, 0) == "failed to evaluate"

    def test_withdraw_from_someone_elses_account(self, rollup, builder, funded):
        other = new_user()
        tn = WithdrawTransition(account=other.address, account_id=1, asset_id=1, amount=10, timestamp=1)
        sign_transition(tn, other.private_key, other.public_key)
        builder.add_unchecked(tn)
        _commit(rollup, builder, now=5)

        assert _dispute(rollup, builder, 1, 0) == "failed to evaluate"
        assert rollup.events[-1] == RollupBlockReverted(1, "failed to evaluate")
        assert rollup.get_pending_withdraw_commits(1) == []

    def test_undecodable_transition(self, rollup, builder, funded):
        garbage = b'{"type": 3, "asset_amount": "lots"}'
        rollup.commit_block(OPERATOR, 1, [garbage], now=5)
        prev = builder.prove_transition(0, 1)
        invalid = TransitionProof(garbage, 1, 0, get_transition_siblings([garbage], 0))
        reason = rollup.dispute_transition("0xwatcher", prev, invalid, None, None, now=10)
        assert reason == "failed to evaluate"


class TestRejectedDisputes:
    """Malformed disputes and timing."""

    def test_window_over(self, rollup, builder, user):
        rollup.deposit(user.address, TOKEN_ADDRESS, 100, now=0)
        builder.add_init()
        builder.add_deposit(user.address, 1, 100, state_root=BAD_ROOT)
        _commit(rollup, builder, now=0)
        with pytest.raises(ValueError, match="Block challenge period is over"):
            _dispute(rollup, builder, 0, 1, now=CHALLENGE_PERIOD)
        assert _dispute(rollup, builder, 0, 1, now=CHALLENGE_PERIOD - 1) == "invalid post-state root"

    def test_reverted_block(self, rollup, builder, user):
        rollup.deposit(user.address, TOKEN_ADDRESS, 100, now=0)
        builder.add_init()
        builder.add_deposit(user.address, 1, 100, state_root=BAD_ROOT)
        _commit(rollup, builder, now=0)
        _dispute(rollup, builder, 0, 1)
        with pytest.raises(ValueError, match="Block is not committed"):
            _dispute(rollup, builder, 0, 1)

    def test_unknown_block(self, rollup, builder, funded):
        prev, invalid, account_proof, _ = builder.prove_dispute(0, 1)
        invalid = replace(invalid, block_id=7)
        with pytest.raises(ValueError, match="Failed to dispute"):
            rollup.dispute_transition("0xw", prev, invalid, account_proof, None, now=10)

    def test_tampered_inclusion_proof(self, rollup, builder, funded):
        prev, invalid, account_proof, _ = builder.prove_dispute(0, 1)
        invalid = replace(invalid, siblings=["00" * 32])
        with pytest.raises(ValueError, match="Failed to dispute"):
            rollup.dispute_transition("0xw", prev, invalid, account_proof, None, now=10)

    def test_index_past_block_size(self, rollup, builder, funded):
        prev, invalid, account_proof, _ = builder.prove_dispute(0, 1)
        invalid = replace(invalid, index=3)
        with pytest.raises(ValueError, match="Failed to dispute"):
            rollup.dispute_transition("0xw", prev, invalid, account_proof, None, now=10)

    def test_inner_node_posing_as_transition(self, rollup, builder, user, make_user):
        rollup.deposit(user.address, TOKEN_ADDRESS, 10, now=0)
        builder.add_init()
        builder.add_deposit(user.address, 1, 10)
        for _ in range(2):
            other = make_user()
            rollup.deposit(other.address, TOKEN_ADDRESS, 10, now=0)
            builder.add_deposit(other.address, 1, 10)
        block_id, transitions = builder.build_block()
        rollup.commit_block(OPERATOR, block_id, transitions, now=0)

        h0, h1, h2, h3 = [transition_hash(tn) for tn in transitions]
        left, right = hash_node(h0, h1), hash_node(h2, h3)
        assert rollup.get_block(0).root_hash == hash_node(left, right)

        # right subtree's preimage as a one-level proof for index 1
        forged = TransitionProof((h2 + h3).encode(), 0, 1, [left])
        with pytest.raises(ValueError, match="Failed to dispute"):
            rollup.dispute_transition("0xw", builder.prove_transition(0, 0), forged, None, None, now=10)

        # the root's preimage as transition 0 of a zero-depth proof
        forged = TransitionProof((left + right).encode(), 0, 0, [])
        with pytest.raises(ValueError, match="Failed to dispute"):
            rollup.dispute_transition("0xw", None, forged, None, None, now=10)

        assert rollup.get_block(0).status == BlockStatus.COMMITTED
        assert rollup.pending_deposit(0).status == IntakeStatus.INCLUDED

    def test_non_adjacent_predecessor(self, rollup, builder, funded, make_user):
        second = make_user()
        rollup.deposit(second.address, TOKEN_ADDRESS, 10, now=1)
        builder.add_deposit(second.address, 1, 10)
        builder.add_unchecked(InitTransition(state_root=builder.genesis_root))
        _commit(rollup, builder, now=5)
        _, invalid, _, _ = builder.prove_dispute(1, 1)
        wrong_prev = builder.prove_transition(0, 1)
        with pytest.raises(ValueError, match="Failed to dispute"):
            rollup.dispute_transition("0xw", wrong_prev, invalid, None, None, now=10)

    def test_account_proof_from_wrong_state(self, rollup, builder, user):
        rollup.deposit(user.address, TOKEN_ADDRESS, 100, now=0)
        builder.add_init()
        builder.add_deposit(user.address, 1, 100, state_root=BAD_ROOT)
        _commit(rollup, builder, now=0)
        prev, invalid, _, _ = builder.prove_dispute(0, 1)
        post_state_proof = builder.state.prove_account(1)
        with pytest.raises(ValueError, match="Failed to dispute"):
            rollup.dispute_transition("0xw", prev, invalid, post_state_proof, None, now=10)
        assert rollup.get_block(0).status == BlockStatus.COMMITTED

    def test_missing_account_proof(self, rollup, builder, user):
        rollup.deposit(user.address, TOKEN_ADDRESS, 100, now=0)
        builder.add_init()
        builder.add_deposit(user.address, 1, 100, state_root=BAD_ROOT)
        _commit(rollup, builder, now=0)
        prev, invalid, _, _ = builder.prove_dispute(0, 1)
        with pytest.raises(ValueError, match="Failed to dispute"):
            rollup.dispute_transition("0xw", prev, invalid, None, None, now=10)


class TestRevertChaining:
    """Reverts do not cascade; later blocks chain from the last live block."""

    def test_previous_live_block(self, rollup, builder, funded):
        builder.add_unchecked(InitTransition(state_root=builder.genesis_root))
        _commit(rollup, builder, now=5)
        _dispute(rollup, builder, 1, 0)
        builder.rollback(1)

        builder.add_withdraw(funded.address, 1, 10, 1, funded.private_key, funded.public_key)
        block_id = _commit(rollup, builder, now=6)
        assert block_id == 2
        assert previous_live_block_id(rollup.blocks, 2) == 0

        with pytest.raises(ValueError, match="Failed to dispute"):
            _dispute(rollup, builder, 2, 0)

    def test_execution_skips_reverted(self, rollup, builder, funded):
        builder.add_unchecked(InitTransition(state_root=builder.genesis_root))
        _commit(rollup, builder, now=5)
        _dispute(rollup, builder, 1, 0)
        builder.rollback(1)
        builder.add_withdraw(funded.address, 1, 10, 1, funded.private_key, funded.public_key)
        _commit(rollup, builder, now=6)

        assert rollup.execute_block("0xw", [], now=6 + CHALLENGE_PERIOD) == 0
        assert rollup.execute_block("0xw", [], now=6 + CHALLENGE_PERIOD) == 2
        assert rollup.pending_withdraw(funded.address, 1) == 10


class TestStrategyDisputes:
    """Faulty commit, uncommit and strategy sync transitions."""

    def test_commit_with_wrong_root(self, rollup, builder, funded, strategy):
        builder.add_commit(funded.address, 1, 60, 1, funded.private_key, funded.public_key, state_root=BAD_ROOT)
        _commit(rollup, builder, now=5)

        assert _dispute(rollup, builder, 1, 0) == "invalid post-state root"
        assert rollup.events[-1] == RollupBlockReverted(1, "invalid post-state root")
        assert rollup.get_block(1).status == BlockStatus.REVERTED

    def test_uncommit_more_than_held(self, rollup, builder, funded, strategy):
        builder.add_commit(funded.address, 1, 60, 1, funded.private_key, funded.public_key)
        builder.add_sync_commitment(1)
        tn = UncommitTransition(account_id=1, strategy_id=1, st_token_amount=61, timestamp=2)
        sign_transition(tn, funded.private_key, funded.public_key)
        builder.add_unchecked(tn)
        _commit(rollup, builder, now=5)

        with pytest.raises(ValueError, match="Failed to dispute"):
            _dispute(rollup, builder, 1, 1)
        assert _dispute(rollup, builder, 1, 2) == "failed to evaluate"
        assert rollup.events[-1] == RollupBlockReverted(1, "failed to evaluate")

    def test_sync_commitment_with_wrong_amounts(self, rollup, builder, funded, strategy):
        builder.add_commit(funded.address, 1, 60, 1, funded.private_key, funded.public_key)
        builder.add_unchecked(SyncCommitmentTransition(strategy_id=1, pending_commit_amount=59))
        _commit(rollup, builder, now=5)

        assert _dispute(rollup, builder, 1, 1) == "failed to evaluate"
        assert rollup.events[-1] == RollupBlockReverted(1, "failed to evaluate")

    def test_sync_balance_below_zero(self, rollup, builder, funded, strategy, token):
        builder.add_commit(funded.address, 1, 60, 1, funded.private_key, funded.public_key)
        builder.add_sync_commitment(1)
        _commit(rollup, builder, now=1)
        rollup.execute_block("0xw", [], now=1 + CHALLENGE_PERIOD)
        rollup.execute_block("0xw", builder.intents(1), now=1 + CHALLENGE_PERIOD)
        assert strategy.get_balance() == 60

        # every st token is uncommitted, so the strategy leaf holds nothing
        builder.add_uncommit(funded.address, 1, 60, 2, funded.private_key, funded.public_key)
        builder.add_sync_commitment(1)
        _commit(rollup, builder, now=2 + CHALLENGE_PERIOD)
        assert builder.state.get_strategy(1).asset_balance == 0

        token.transfer(STRATEGY_ADDRESS, "0xloss", 10)
        sync_id = rollup.sync_balance(OPERATOR, 1, now=3 + CHALLENGE_PERIOD)
        assert rollup.pending_balance_sync(sync_id).delta == -10

        builder.add_unchecked(SyncBalanceTransition(strategy_id=1, new_asset_delta=-10))
        block_id = _commit(rollup, builder, now=4 + CHALLENGE_PERIOD)
        assert rollup.pending_balance_sync(sync_id).status == IntakeStatus.INCLUDED

        reason = _dispute(rollup, builder, block_id, 0, now=10 + CHALLENGE_PERIOD)
        assert reason == "failed to evaluate"
        assert rollup.events[-1] == RollupBlockReverted(block_id, "failed to evaluate")
        assert rollup.pending_balance_sync(sync_id).status == IntakeStatus.PENDING
        assert rollup.get_block(2).status == BlockStatus.COMMITTED
