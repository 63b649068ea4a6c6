"""
Rollup transition records.

Each kind is its own dataclass carrying a TRANSITION_TYPE discriminant and a
claimed post-state root (state_root). On the wire a transition is canonical
JSON bytes; encode_transition/decode_transition convert between the two.
User-initiated kinds (withdraw, commit, uncommit) carry the owner's public
key and an ECDSA signature over their signing message.
"""

import json
from dataclasses import dataclass, field, asdict
from typing import List, Optional, Union

import rollup.config as config
from rollup.crypto_utils import canonical_json, sign_message, verify_signature, derive_address, hash_leaf


@dataclass
class InitTransition:
    TRANSITION_TYPE = config.TN_TYPE_INIT
    state_root: str = ""


@dataclass
class DepositTransition:
    TRANSITION_TYPE = config.TN_TYPE_DEPOSIT
    state_root: str = ""
    account: str = ""
    account_id: int = 0
    asset_id: int = 0
    amount: int = 0


@dataclass
class WithdrawTransition:
    TRANSITION_TYPE = config.TN_TYPE_WITHDRAW
    state_root: str = ""
    account: str = ""
    account_id: int = 0
    asset_id: int = 0
    amount: int = 0
    timestamp: int = 0
    public_key: str = ""
    signature: str = ""
    
    def signing_message(self) -> bytes:
        return canonical_json({
            "type": self.TRANSITION_TYPE,
            "account": self.account,
            "asset_id": self.asset_id,
            "amount": self.amount,
            "timestamp": self.timestamp
        })


@dataclass
class CommitTransition:
    TRANSITION_TYPE = config.TN_TYPE_COMMIT
    state_root: str = ""
    account_id: int = 0
    strategy_id: int = 0
    asset_amount: int = 0
    timestamp: int = 0
    public_key: str = ""
    signature: str = ""
    
    def signing_message(self) -> bytes:
        return canonical_json({
            "type": self.TRANSITION_TYPE,
            "account_id": self.account_id,
            "strategy_id": self.strategy_id,
            "asset_amount": self.asset_amount,
            "timestamp": self.timestamp
        })


@dataclass
class UncommitTransition:
    TRANSITION_TYPE = config.TN_TYPE_UNCOMMIT
    state_root: str = ""
    account_id: int = 0
    strategy_id: int = 0
    st_token_amount: int = 0
    timestamp: int = 0
    public_key: str = ""
    signature: str = ""
    
    def signing_message(self) -> bytes:
        return canonical_json({
            "type": self.TRANSITION_TYPE,
            "account_id": self.account_id,
            "strategy_id": self.strategy_id,
            "st_token_amount": self.st_token_amount,
            "timestamp": self.timestamp
        })


@dataclass
class SyncCommitmentTransition:
    TRANSITION_TYPE = config.TN_TYPE_SYNC_COMMITMENT
    state_root: str = ""
    strategy_id: int = 0
    pending_commit_amount: int = 0
    pending_uncommit_amount: int = 0


@dataclass
class SyncBalanceTransition:
    TRANSITION_TYPE = config.TN_TYPE_SYNC_BALANCE
    state_root: str = ""
    strategy_id: int = 0
    new_asset_delta: int = 0


Transition = Union[
    InitTransition,
    DepositTransition,
    WithdrawTransition,
    CommitTransition,
    UncommitTransition,
    SyncCommitmentTransition,
    SyncBalanceTransition,
]

SignedTransition = Union[WithdrawTransition, CommitTransition, UncommitTransition]

TRANSITION_CLASSES = {
    cls.TRANSITION_TYPE: cls for cls in (
        InitTransition,
        DepositTransition,
        WithdrawTransition,
        CommitTransition,
        UncommitTransition,
        SyncCommitmentTransition,
        SyncBalanceTransition,
    )
}


def sign_transition(transition: SignedTransition, private_key_hex: str, public_key_hex: str):
    transition.public_key = public_key_hex
    transition.signature = sign_message(transition.signing_message(), private_key_hex)


def signed_by(transition: SignedTransition, account: str) -> bool:
    """True if the transition carries a valid signature from the key behind `account`."""
    if not transition.public_key or not transition.signature:
        return False
    try:
        if derive_address(transition.public_key) != account:
            return False
    except ValueError:
        return False
    return verify_signature(transition.signing_message(), transition.signature, transition.public_key)


def encode_transition(transition: Transition) -> bytes:
    data = asdict(transition)
    data["type"] = transition.TRANSITION_TYPE
    return canonical_json(data)


def get_transition_type(transition_data: bytes) -> int:
    """Read only the discriminant. Unparseable data is TN_TYPE_INVALID."""
    try:
        data = json.loads(transition_data)
    except (ValueError, TypeError):
        return config.TN_TYPE_INVALID
    if not isinstance(data, dict):
        return config.TN_TYPE_INVALID
    tn_type = data.get("type")
    if tn_type not in TRANSITION_CLASSES:
        return config.TN_TYPE_INVALID
    return tn_type


def decode_transition(transition_data: bytes) -> Transition:
    """
    Decode wire bytes into a transition record.
    
    Raises:
        ValueError: malformed data, unknown type or mistyped fields
    """
    tn_type = get_transition_type(transition_data)
    if tn_type == config.TN_TYPE_INVALID:
        raise ValueError("Invalid transition type")
    
    data = json.loads(transition_data)
    cls = TRANSITION_CLASSES[tn_type]
    defaults = asdict(cls())
    values = {}
    for key, default in defaults.items():
        value = data.get(key, default)
        if type(value) is not type(default):
            raise ValueError(f"Invalid transition field: {key}")
        values[key] = value
    return cls(**values)


def transition_hash(transition_data: bytes) -> str:
    return hash_leaf(transition_data)


@dataclass
class TransitionProof:
    """Inclusion proof of one encoded transition in a committed block."""
    transition: bytes
    block_id: int
    index: int
    siblings: List[str] = field(default_factory=list)
