"""
Rollup state: account and strategy leaves, the two-subtree state tree, and
leaf inclusion proofs.

State root = hash_pair(account_subtree_root, strategy_subtree_root). A leaf
proof carries STATE_TREE_HEIGHT siblings inside its own subtree followed by
the root of the other subtree.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional

import rollup.config as config
from rollup.crypto_utils import canonical_json, hash_data, hash_pair
from rollup.merkle import SparseMerkleTree, compute_root


def _trim(values: List[int]) -> List[int]:
    trimmed = list(values)
    while trimmed and trimmed[-1] == 0:
        trimmed.pop()
    return trimmed


def _get(values: List[int], index: int) -> int:
    return values[index] if 0 <= index < len(values) else 0


def _set(values: List[int], index: int, amount: int) -> List[int]:
    updated = list(values)
    if index >= len(updated):
        updated.extend([0] * (index + 1 - len(updated)))
    updated[index] = amount
    return updated


@dataclass
class AccountInfo:
    """Account leaf: address binding, idle balances per asset, strategy tokens per strategy."""
    account: str = ""
    account_id: int = 0
    idle_assets: List[int] = field(default_factory=list)
    st_tokens: List[int] = field(default_factory=list)
    timestamp: int = 0
    
    def is_empty(self) -> bool:
        return (not self.account and self.account_id == 0 and self.timestamp == 0
                and not _trim(self.idle_assets) and not _trim(self.st_tokens))
    
    def idle_asset(self, asset_id: int) -> int:
        return _get(self.idle_assets, asset_id)
    
    def st_token(self, strategy_id: int) -> int:
        return _get(self.st_tokens, strategy_id)
    
    def with_idle_asset(self, asset_id: int, amount: int) -> List[int]:
        return _set(self.idle_assets, asset_id, amount)
    
    def with_st_token(self, strategy_id: int, amount: int) -> List[int]:
        return _set(self.st_tokens, strategy_id, amount)
    
    def calculate_hash(self) -> str:
        if self.is_empty():
            return config.EMPTY_LEAF
        return hash_data(canonical_json(self.to_dict()))
    
    def to_dict(self) -> dict:
        return {
            "account": self.account,
            "account_id": self.account_id,
            "idle_assets": _trim(self.idle_assets),
            "st_tokens": _trim(self.st_tokens),
            "timestamp": self.timestamp
        }
    
    @classmethod
    def from_dict(cls, data: dict) -> 'AccountInfo':
        return cls(
            account=data.get("account", ""),
            account_id=data.get("account_id", 0),
            idle_assets=list(data.get("idle_assets", [])),
            st_tokens=list(data.get("st_tokens", [])),
            timestamp=data.get("timestamp", 0)
        )


@dataclass
class StrategyInfo:
    """Strategy leaf: pooled asset balance, token supply and uncommitted netting buckets."""
    asset_id: int = 0
    asset_balance: int = 0
    st_token_supply: int = 0
    pending_commit_amount: int = 0
    pending_uncommit_amount: int = 0
    
    def is_empty(self) -> bool:
        return (self.asset_id == 0 and self.asset_balance == 0 and self.st_token_supply == 0
                and self.pending_commit_amount == 0 and self.pending_uncommit_amount == 0)
    
    def calculate_hash(self) -> str:
        if self.is_empty():
            return config.EMPTY_LEAF
        return hash_data(canonical_json(self.to_dict()))
    
    def to_dict(self) -> dict:
        return {
            "asset_id": self.asset_id,
            "asset_balance": self.asset_balance,
            "st_token_supply": self.st_token_supply,
            "pending_commit_amount": self.pending_commit_amount,
            "pending_uncommit_amount": self.pending_uncommit_amount
        }
    
    @classmethod
    def from_dict(cls, data: dict) -> 'StrategyInfo':
        return cls(**{key: data.get(key, 0) for key in (
            "asset_id", "asset_balance", "st_token_supply",
            "pending_commit_amount", "pending_uncommit_amount")})


@dataclass
class AccountProof:
    state_root: str
    value: AccountInfo
    index: int
    siblings: List[str]


@dataclass
class StrategyProof:
    state_root: str
    value: StrategyInfo
    index: int
    siblings: List[str]


def _subtree_root(leaf_hash: str, index: int, siblings: List[str]) -> Optional[str]:
    height = config.STATE_TREE_HEIGHT
    if len(siblings) != height + 1 or index < 0 or index > config.MAX_TREE_INDEX:
        return None
    return compute_root(leaf_hash, index, siblings[:height])


def verify_account_proof(proof: AccountProof) -> bool:
    subtree_root = _subtree_root(proof.value.calculate_hash(), proof.index, proof.siblings)
    if subtree_root is None:
        return False
    return hash_pair(subtree_root, proof.siblings[-1]) == proof.state_root


def verify_strategy_proof(proof: StrategyProof) -> bool:
    subtree_root = _subtree_root(proof.value.calculate_hash(), proof.index, proof.siblings)
    if subtree_root is None:
        return False
    return hash_pair(proof.siblings[-1], subtree_root) == proof.state_root


def compute_post_state_root(account_proof: Optional[AccountProof] = None,
                            account_info: Optional[AccountInfo] = None,
                            strategy_proof: Optional[StrategyProof] = None,
                            strategy_info: Optional[StrategyInfo] = None) -> str:
    """
    Recompute the state root after replacing one account leaf, one strategy
    leaf, or both, reusing the siblings of already-verified proofs.
    """
    height = config.STATE_TREE_HEIGHT
    account_root = None
    strategy_root = None
    if account_proof is not None:
        account_root = compute_root(account_info.calculate_hash(), account_proof.index,
                                    account_proof.siblings[:height])
    if strategy_proof is not None:
        strategy_root = compute_root(strategy_info.calculate_hash(), strategy_proof.index,
                                     strategy_proof.siblings[:height])
    if account_root is None:
        account_root = strategy_proof.siblings[-1]
    if strategy_root is None:
        strategy_root = account_proof.siblings[-1]
    return hash_pair(account_root, strategy_root)


class StateTree:
    """
    Versioned account/strategy state with Merkle commitments.
    
    Every leaf write bumps the version. copy() gives an independent snapshot
    that later writes do not touch.
    """
    
    def __init__(self):
        self.accounts: Dict[int, AccountInfo] = {}
        self.strategies: Dict[int, StrategyInfo] = {}
        self.account_ids: Dict[str, int] = {}
        self.account_tree = SparseMerkleTree()
        self.strategy_tree = SparseMerkleTree()
        self.version = 0
    
    @property
    def root(self) -> str:
        return hash_pair(self.account_tree.root, self.strategy_tree.root)
    
    def get_account(self, account_id: int) -> AccountInfo:
        info = self.accounts.get(account_id)
        return AccountInfo.from_dict(info.to_dict()) if info else AccountInfo()
    
    def get_strategy(self, strategy_id: int) -> StrategyInfo:
        info = self.strategies.get(strategy_id)
        return StrategyInfo.from_dict(info.to_dict()) if info else StrategyInfo()
    
    def get_account_id(self, account: str) -> Optional[int]:
        return self.account_ids.get(account)
    
    def next_account_id(self) -> int:
        # id 0 is reserved
        return len(self.account_ids) + 1
    
    def set_account(self, info: AccountInfo):
        self.accounts[info.account_id] = info
        if info.account:
            self.account_ids.setdefault(info.account, info.account_id)
        self.account_tree.update(info.account_id, info.calculate_hash())
        self.version += 1
    
    def set_strategy(self, strategy_id: int, info: StrategyInfo):
        self.strategies[strategy_id] = info
        self.strategy_tree.update(strategy_id, info.calculate_hash())
        self.version += 1
    
    def prove_account(self, account_id: int) -> AccountProof:
        return AccountProof(
            state_root=self.root,
            value=self.get_account(account_id),
            index=account_id,
            siblings=self.account_tree.prove(account_id) + [self.strategy_tree.root]
        )
    
    def prove_strategy(self, strategy_id: int) -> StrategyProof:
        return StrategyProof(
            state_root=self.root,
            value=self.get_strategy(strategy_id),
            index=strategy_id,
            siblings=self.strategy_tree.prove(strategy_id) + [self.account_tree.root]
        )
    
    def copy(self) -> 'StateTree':
        clone = StateTree()
        clone.accounts = {k: AccountInfo.from_dict(v.to_dict()) for k, v in self.accounts.items()}
        clone.strategies = {k: StrategyInfo.from_dict(v.to_dict()) for k, v in self.strategies.items()}
        clone.account_ids = dict(self.account_ids)
        clone.account_tree = self.account_tree.copy()
        clone.strategy_tree = self.strategy_tree.copy()
        clone.version = self.version
        return clone
