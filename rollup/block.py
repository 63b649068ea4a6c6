from typing import List, Optional

from rollup.crypto_utils import hash_data
from rollup.merkle import get_merkle_root, get_merkle_proof
from rollup.transition import transition_hash


class BlockStatus:
    COMMITTED = "committed"
    EXECUTED = "executed"
    REVERTED = "reverted"


def calculate_intent_hash(intents: List[bytes]) -> str:
    """Commitment to the ordered sync-commitment records a block executes."""
    combined = "".join(transition_hash(intent) for intent in intents)
    return hash_data(combined.encode())


class Block:
    """
    A committed rollup block.
    
    Only commitments are kept: the Merkle root of the transition list, the
    intent hash and the list size. The transitions themselves stay with
    whoever posted them.
    """
    
    def __init__(self, block_id: int, block_time: float, root_hash: str, intent_hash: str,
                 block_size: int, status: str = BlockStatus.COMMITTED,
                 revert_reason: Optional[str] = None):
        self.block_id = block_id
        self.block_time = block_time
        self.root_hash = root_hash
        self.intent_hash = intent_hash
        self.block_size = block_size
        self.status = status
        self.revert_reason = revert_reason
    
    @classmethod
    def from_transitions(cls, block_id: int, block_time: float, transitions: List[bytes],
                         intents: List[bytes]) -> 'Block':
        return cls(
            block_id=block_id,
            block_time=block_time,
            root_hash=calculate_transitions_root(transitions),
            intent_hash=calculate_intent_hash(intents),
            block_size=len(transitions)
        )
    
    def is_committed(self) -> bool:
        return self.status == BlockStatus.COMMITTED
    
    def challenge_period_over(self, now: float, challenge_period: float) -> bool:
        return now >= self.block_time + challenge_period
    
    def to_dict(self):
        return {
            "block_id": self.block_id,
            "block_time": self.block_time,
            "root_hash": self.root_hash,
            "intent_hash": self.intent_hash,
            "block_size": self.block_size,
            "status": self.status,
            "revert_reason": self.revert_reason
        }
    
    @classmethod
    def from_dict(cls, data: dict):
        return cls(
            block_id=data["block_id"],
            block_time=data["block_time"],
            root_hash=data["root_hash"],
            intent_hash=data["intent_hash"],
            block_size=data["block_size"],
            status=data.get("status", BlockStatus.COMMITTED),
            revert_reason=data.get("revert_reason")
        )


def calculate_transitions_root(transitions: List[bytes]) -> str:
    # Recalculate every leaf from the raw bytes
    return get_merkle_root([transition_hash(tn) for tn in transitions])


def get_transition_siblings(transitions: List[bytes], index: int) -> Optional[List[str]]:
    return get_merkle_proof([transition_hash(tn) for tn in transitions], index)
