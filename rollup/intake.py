from bisect import insort
from dataclasses import dataclass, asdict
from typing import Dict, List, Optional


class IntakeStatus:
    PENDING = "pending"
    INCLUDED = "included"
    CLEARED = "cleared"


@dataclass
class DepositIntake:
    account: str
    asset_id: int
    amount: int
    enqueued_at: float = 0
    status: str = IntakeStatus.PENDING
    block_id: Optional[int] = None


@dataclass
class WithdrawCommit:
    account: str
    asset_id: int
    amount: int
    enqueued_at: float = 0
    status: str = IntakeStatus.INCLUDED
    block_id: Optional[int] = None


@dataclass
class BalanceSyncIntake:
    strategy_id: int
    delta: int
    enqueued_at: float = 0
    status: str = IntakeStatus.PENDING
    block_id: Optional[int] = None


ENTRY_TYPES = {
    "deposit": DepositIntake,
    "withdraw_commit": WithdrawCommit,
    "balance_sync": BalanceSyncIntake,
}


class IntakeQueue:
    """
    Append-only, order-preserving queue of user/operator requests.
    
    Entry ids are assigned in enqueue order and never reused. Status moves
    Pending -> Included(block) -> Cleared; a reverted block sends its entries
    back to Pending at their original position. Included entries are also
    indexed by block, so per-block operations never scan the whole history.
    """
    
    def __init__(self, kind: str):
        self.kind = kind
        self.entries: Dict[int, object] = {}
        self.tail = 0
        self._pending_ids: List[int] = []
        self._block_ids: Dict[int, List[int]] = {}
    
    def _track(self, entry_id: int, entry):
        if entry.status == IntakeStatus.PENDING:
            insort(self._pending_ids, entry_id)
        elif entry.status == IntakeStatus.INCLUDED and entry.block_id is not None:
            insort(self._block_ids.setdefault(entry.block_id, []), entry_id)
    
    def append(self, entry) -> int:
        entry_id = self.tail
        self.entries[entry_id] = entry
        self.tail += 1
        self._track(entry_id, entry)
        return entry_id
    
    def get(self, entry_id: int):
        return self.entries.get(entry_id)
    
    def pending_ids(self) -> List[int]:
        """Pending entry ids, oldest first."""
        return list(self._pending_ids)
    
    def oldest_pending(self) -> Optional[int]:
        return self._pending_ids[0] if self._pending_ids else None
    
    def include(self, entry_id: int, block_id: int):
        entry = self.entries[entry_id]
        self._pending_ids.remove(entry_id)
        entry.status = IntakeStatus.INCLUDED
        entry.block_id = block_id
        self._track(entry_id, entry)
    
    def ids_in_block(self, block_id: int) -> List[int]:
        """Ids of entries currently Included in the given block, oldest first."""
        return list(self._block_ids.get(block_id, []))
    
    def revert_block(self, block_id: int) -> int:
        """Return a reverted block's entries to Pending. Returns how many moved."""
        reverted = self._block_ids.pop(block_id, [])
        for entry_id in reverted:
            entry = self.entries[entry_id]
            entry.status = IntakeStatus.PENDING
            entry.block_id = None
            insort(self._pending_ids, entry_id)
        return len(reverted)
    
    def discard_block(self, block_id: int) -> int:
        """Drop entries that only exist because of the given block."""
        discarded = self._block_ids.pop(block_id, [])
        for entry_id in discarded:
            del self.entries[entry_id]
        return len(discarded)
    
    def clear_block(self, block_id: int) -> List[int]:
        cleared = self._block_ids.pop(block_id, [])
        for entry_id in cleared:
            self.entries[entry_id].status = IntakeStatus.CLEARED
        return cleared
    
    def size(self) -> int:
        return len(self.entries)
    
    def to_dict(self) -> dict:
        return {
            "kind": self.kind,
            "tail": self.tail,
            "entries": {str(entry_id): asdict(entry) for entry_id, entry in self.entries.items()}
        }
    
    @classmethod
    def from_dict(cls, data: dict) -> 'IntakeQueue':
        queue = cls(data["kind"])
        entry_type = ENTRY_TYPES[data["kind"]]
        queue.tail = data.get("tail", 0)
        for entry_id, entry_data in sorted(data.get("entries", {}).items(), key=lambda item: int(item[0])):
            entry = entry_type(**entry_data)
            queue.entries[int(entry_id)] = entry
            queue._track(int(entry_id), entry)
        return queue
