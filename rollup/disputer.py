"""
Transition dispute resolution.

A dispute names two adjacent transitions, proves both are in committed
blocks, proves the leaves the second one touches against the first one's
post-state root, and re-runs the evaluator. The outcome is either a revert
reason for the block holding the second transition, or ValueError when the
disputed transition turns out to be valid or the proofs are malformed.
"""

from typing import Callable, List, Optional, Tuple

import rollup.config as config
from rollup.block import Block, BlockStatus
from rollup.evaluator import evaluate_transition, ERR_FAILED, ERR_INIT
from rollup.merkle import verify_list_proof
from rollup.state import (
    AccountProof,
    StrategyProof,
    verify_account_proof,
    verify_strategy_proof,
    compute_post_state_root,
)
from rollup.transition import TransitionProof, decode_transition, transition_hash

REASON_INVALID_ROOT = "invalid post-state root"
FAILED_TO_DISPUTE = "Failed to dispute"

ACCOUNT_TRANSITIONS = {config.TN_TYPE_DEPOSIT, config.TN_TYPE_WITHDRAW,
                       config.TN_TYPE_COMMIT, config.TN_TYPE_UNCOMMIT}
STRATEGY_TRANSITIONS = {config.TN_TYPE_COMMIT, config.TN_TYPE_UNCOMMIT,
                        config.TN_TYPE_SYNC_COMMITMENT, config.TN_TYPE_SYNC_BALANCE}


def previous_live_block_id(blocks: List[Block], block_id: int) -> Optional[int]:
    """Nearest earlier block that was not reverted; its last transition precedes block_id."""
    for candidate in range(block_id - 1, -1, -1):
        if blocks[candidate].status != BlockStatus.REVERTED:
            return candidate
    return None


def _valid_tree_index(index: int) -> bool:
    return 0 < index <= config.MAX_TREE_INDEX


class TransitionDisputer:
    def __init__(self, genesis_root: str, strategy_asset_id: Optional[Callable[[int], int]] = None):
        """
        Args:
            genesis_root: State root an init transition must carry
            strategy_asset_id: Lookup of a strategy's asset id, for strategies whose leaf is still empty
        """
        self.genesis_root = genesis_root
        self.strategy_asset_id = strategy_asset_id or (lambda strategy_id: 0)
    
    def _verify_inclusion(self, proof: TransitionProof, blocks: List[Block]) -> bool:
        if not isinstance(proof.transition, (bytes, bytearray)) or not proof.transition:
            return False
        if proof.block_id < 0 or proof.block_id >= len(blocks):
            return False
        if not isinstance(proof.siblings, list):
            return False
        block = blocks[proof.block_id]
        return verify_list_proof(block.root_hash, transition_hash(bytes(proof.transition)),
                                 proof.index, proof.siblings, block.block_size)
    
    def _check_adjacent(self, prev_proof: TransitionProof, invalid_proof: TransitionProof,
                        blocks: List[Block]) -> bool:
        if invalid_proof.index > 0:
            return (prev_proof.block_id == invalid_proof.block_id
                    and prev_proof.index + 1 == invalid_proof.index)
        prev_block_id = previous_live_block_id(blocks, invalid_proof.block_id)
        return (prev_proof.block_id == prev_block_id
                and prev_proof.index == blocks[prev_block_id].block_size - 1)
    
    def dispute_transition(self, prev_proof: TransitionProof, invalid_proof: TransitionProof,
                           account_proof: Optional[AccountProof], strategy_proof: Optional[StrategyProof],
                           blocks: List[Block]) -> Tuple[int, str]:
        """
        Judge the transition at invalid_proof.
        
        Returns:
            (block_id, reason) for a block that must be reverted
        
        Raises:
            ValueError: "Failed to dispute" when the transition is valid or the proofs don't hold up
        """
        if not self._verify_inclusion(invalid_proof, blocks):
            raise ValueError(FAILED_TO_DISPUTE)
        block_id = invalid_proof.block_id
        
        # The very first transition of the chain must be the init transition
        if invalid_proof.index == 0 and previous_live_block_id(blocks, block_id) is None:
            return self._dispute_init(invalid_proof)
        
        if not self._verify_inclusion(prev_proof, blocks):
            raise ValueError(FAILED_TO_DISPUTE)
        if not self._check_adjacent(prev_proof, invalid_proof, blocks):
            raise ValueError(FAILED_TO_DISPUTE)
        
        try:
            pre_state_root = decode_transition(bytes(prev_proof.transition)).state_root
        except ValueError:
            # An undecodable predecessor has to be disputed on its own
            raise ValueError(FAILED_TO_DISPUTE)
        
        try:
            transition = decode_transition(bytes(invalid_proof.transition))
        except ValueError:
            return block_id, ERR_FAILED
        
        tn_type = transition.TRANSITION_TYPE
        if tn_type == config.TN_TYPE_INIT:
            return block_id, ERR_INIT
        
        uses_account = tn_type in ACCOUNT_TRANSITIONS
        uses_strategy = tn_type in STRATEGY_TRANSITIONS
        if uses_account and not _valid_tree_index(transition.account_id):
            return block_id, ERR_FAILED
        if uses_strategy and not _valid_tree_index(transition.strategy_id):
            return block_id, ERR_FAILED
        
        if uses_account:
            self._check_account_proof(account_proof, pre_state_root, transition.account_id)
        if uses_strategy:
            self._check_strategy_proof(strategy_proof, pre_state_root, transition.strategy_id)
        
        account_info = account_proof.value if uses_account else None
        strategy_info = strategy_proof.value if uses_strategy else None
        strategy_asset_id = self.strategy_asset_id(transition.strategy_id) if uses_strategy else 0
        
        result = evaluate_transition(transition, account_info, strategy_info,
                                     genesis_root=self.genesis_root,
                                     strategy_asset_id=strategy_asset_id)
        if not result.ok:
            return block_id, result.error or ERR_FAILED
        
        post_state_root = compute_post_state_root(
            account_proof=account_proof if uses_account else None,
            account_info=result.account_info,
            strategy_proof=strategy_proof if uses_strategy else None,
            strategy_info=result.strategy_info
        )
        if post_state_root != transition.state_root:
            return block_id, REASON_INVALID_ROOT
        
        raise ValueError(FAILED_TO_DISPUTE)
    
    def _dispute_init(self, invalid_proof: TransitionProof) -> Tuple[int, str]:
        try:
            transition = decode_transition(bytes(invalid_proof.transition))
        except ValueError:
            return invalid_proof.block_id, ERR_INIT
        if transition.TRANSITION_TYPE != config.TN_TYPE_INIT:
            return invalid_proof.block_id, ERR_INIT
        
        result = evaluate_transition(transition, genesis_root=self.genesis_root)
        if not result.ok:
            return invalid_proof.block_id, ERR_INIT
        raise ValueError(FAILED_TO_DISPUTE)
    
    def _check_account_proof(self, proof: Optional[AccountProof], pre_state_root: str, account_id: int):
        if proof is None or proof.state_root != pre_state_root or proof.index != account_id:
            raise ValueError(FAILED_TO_DISPUTE)
        if not verify_account_proof(proof):
            raise ValueError(FAILED_TO_DISPUTE)
    
    def _check_strategy_proof(self, proof: Optional[StrategyProof], pre_state_root: str, strategy_id: int):
        if proof is None or proof.state_root != pre_state_root or proof.index != strategy_id:
            raise ValueError(FAILED_TO_DISPUTE)
        if not verify_strategy_proof(proof):
            raise ValueError(FAILED_TO_DISPUTE)
