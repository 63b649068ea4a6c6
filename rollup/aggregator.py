"""
Off-chain block builder.

Keeps the full rollup state, runs every transition through the evaluator
before it goes into a block, fills in the post-state roots, and remembers
the pre-state of each transition so inclusion and leaf proofs can be
produced later for disputes.
"""

from typing import Dict, List, Optional, Tuple

import rollup.config as config
from rollup.block import calculate_transitions_root, get_transition_siblings
from rollup.evaluator import evaluate_transition
from rollup.state import AccountProof, StateTree, StrategyProof
from rollup.transition import (
    decode_transition,
    Transition,
    TransitionProof,
    InitTransition,
    DepositTransition,
    WithdrawTransition,
    CommitTransition,
    UncommitTransition,
    SyncCommitmentTransition,
    SyncBalanceTransition,
    encode_transition,
    sign_transition,
)


class BlockBuilder:
    def __init__(self, strategy_asset_ids: Optional[Dict[int, int]] = None):
        self.state = StateTree()
        self.genesis_root = self.state.root
        self.strategy_asset_ids: Dict[int, int] = dict(strategy_asset_ids or {})
        self.next_block_id = 0

        self.pending: List[Transition] = []
        self.pending_pre_states: List[StateTree] = []

        # block_id -> encoded transitions / pre-state of each transition
        self.blocks: Dict[int, List[bytes]] = {}
        self.pre_states: Dict[int, List[StateTree]] = {}

    def set_strategy_asset(self, strategy_id: int, asset_id: int):
        self.strategy_asset_ids[strategy_id] = asset_id

    def _apply(self, transition: Transition, state_root: Optional[str] = None) -> Transition:
        pre_state = self.state.copy()
        account_id = getattr(transition, "account_id", None)
        strategy_id = getattr(transition, "strategy_id", None)

        result = evaluate_transition(
            transition,
            account_info=pre_state.get_account(account_id) if account_id is not None else None,
            strategy_info=pre_state.get_strategy(strategy_id) if strategy_id is not None else None,
            genesis_root=self.genesis_root,
            strategy_asset_id=self.strategy_asset_ids.get(strategy_id, 0) if strategy_id is not None else 0
        )
        if not result.ok:
            raise ValueError(f"Transition rejected: {result.error}")

        if result.account_info is not None:
            self.state.set_account(result.account_info)
        if result.strategy_info is not None:
            self.state.set_strategy(strategy_id, result.strategy_info)

        transition.state_root = state_root or self.state.root
        self.pending.append(transition)
        self.pending_pre_states.append(pre_state)
        return transition

    def add_unchecked(self, transition: Transition) -> Transition:
        """Queue a transition without evaluating it or touching state. For building faulty blocks."""
        if not transition.state_root:
            transition.state_root = self.state.root
        self.pending_pre_states.append(self.state.copy())
        self.pending.append(transition)
        return transition

    def add_init(self) -> Transition:
        return self._apply(InitTransition(state_root=self.genesis_root))

    def add_deposit(self, account: str, asset_id: int, amount: int,
                    state_root: Optional[str] = None) -> Transition:
        account_id = self.state.get_account_id(account) or self.state.next_account_id()
        transition = DepositTransition(account=account, account_id=account_id, asset_id=asset_id, amount=amount)
        return self._apply(transition, state_root)

    def _account_id(self, account: str) -> int:
        account_id = self.state.get_account_id(account)
        if account_id is None:
            raise ValueError(f"Unknown account: {account}")
        return account_id

    def add_withdraw(self, account: str, asset_id: int, amount: int, timestamp: int,
                     private_key: str, public_key: str, state_root: Optional[str] = None) -> Transition:
        transition = WithdrawTransition(account=account, account_id=self._account_id(account),
                                        asset_id=asset_id, amount=amount, timestamp=timestamp)
        sign_transition(transition, private_key, public_key)
        return self._apply(transition, state_root)

    def add_commit(self, account: str, strategy_id: int, asset_amount: int, timestamp: int,
                   private_key: str, public_key: str, state_root: Optional[str] = None) -> Transition:
        transition = CommitTransition(account_id=self._account_id(account), strategy_id=strategy_id,
                                      asset_amount=asset_amount, timestamp=timestamp)
        sign_transition(transition, private_key, public_key)
        return self._apply(transition, state_root)

    def add_uncommit(self, account: str, strategy_id: int, st_token_amount: int, timestamp: int,
                     private_key: str, public_key: str, state_root: Optional[str] = None) -> Transition:
        transition = UncommitTransition(account_id=self._account_id(account), strategy_id=strategy_id,
                                        st_token_amount=st_token_amount, timestamp=timestamp)
        sign_transition(transition, private_key, public_key)
        return self._apply(transition, state_root)

    def add_sync_commitment(self, strategy_id: int, state_root: Optional[str] = None) -> Transition:
        strategy = self.state.get_strategy(strategy_id)
        transition = SyncCommitmentTransition(
            strategy_id=strategy_id,
            pending_commit_amount=strategy.pending_commit_amount,
            pending_uncommit_amount=strategy.pending_uncommit_amount
        )
        return self._apply(transition, state_root)

    def add_sync_balance(self, strategy_id: int, delta: int, state_root: Optional[str] = None) -> Transition:
        return self._apply(SyncBalanceTransition(strategy_id=strategy_id, new_asset_delta=delta), state_root)

    def build_block(self) -> Tuple[int, List[bytes]]:
        """Seal the pending transitions into the next block. Returns (block_id, encoded transitions)."""
        if not self.pending:
            raise ValueError("No pending transitions")
        block_id = self.next_block_id
        self.blocks[block_id] = [encode_transition(tn) for tn in self.pending]
        self.pre_states[block_id] = self.pending_pre_states
        self.pending = []
        self.pending_pre_states = []
        self.next_block_id += 1
        return block_id, self.blocks[block_id]

    def rollback(self, block_id: int):
        """
        Forget a reverted block and everything built after it, and restore
        the state it started from. Block ids keep counting up.
        """
        if block_id not in self.blocks:
            raise ValueError(f"Unknown block: {block_id}")
        self.state = self.pre_states[block_id][0].copy()
        for stale_id in [b for b in self.blocks if b >= block_id]:
            del self.blocks[stale_id]
            del self.pre_states[stale_id]
        self.pending = []
        self.pending_pre_states = []

    def intents(self, block_id: int) -> List[bytes]:
        return [data for data, tn in self._decoded(block_id)
                if tn.TRANSITION_TYPE == config.TN_TYPE_SYNC_COMMITMENT]

    def _decoded(self, block_id: int):
        return [(data, decode_transition(data)) for data in self.blocks[block_id]]

    def block_root(self, block_id: int) -> str:
        return calculate_transitions_root(self.blocks[block_id])

    def prove_transition(self, block_id: int, index: int) -> TransitionProof:
        transitions = self.blocks[block_id]
        return TransitionProof(
            transition=transitions[index],
            block_id=block_id,
            index=index,
            siblings=get_transition_siblings(transitions, index)
        )

    def _previous_position(self, block_id: int, index: int) -> Tuple[int, int]:
        if index > 0:
            return block_id, index - 1
        earlier = [b for b in self.blocks if b < block_id]
        if not earlier:
            return block_id, index
        prev_block = max(earlier)
        return prev_block, len(self.blocks[prev_block]) - 1

    def prove_dispute(self, block_id: int, index: int) -> Tuple[TransitionProof, TransitionProof,
                                                                 Optional[AccountProof], Optional[StrategyProof]]:
        """
        Everything needed to dispute transition `index` of `block_id`:
        (prev_proof, invalid_proof, account_proof, strategy_proof).
        Leaf proofs are taken from the state the transition was applied to.
        """
        prev_block, prev_index = self._previous_position(block_id, index)
        pre_state = self.pre_states[block_id][index]
        transition = self._decoded(block_id)[index][1]

        account_id = getattr(transition, "account_id", None)
        strategy_id = getattr(transition, "strategy_id", None)
        account_proof = pre_state.prove_account(account_id) if account_id else None
        strategy_proof = pre_state.prove_strategy(strategy_id) if strategy_id else None

        return (
            self.prove_transition(prev_block, prev_index),
            self.prove_transition(block_id, index),
            account_proof,
            strategy_proof
        )
