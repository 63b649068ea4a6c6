"""
Merkle trees for the rollup state and for block transition lists.

Two shapes are used:
- SparseMerkleTree: fixed height, integer-keyed, every absent leaf is
  config.EMPTY_LEAF. Holds account and strategy leaves.
- Transition list tree: binary tree over the hashes of one block's encoded
  transitions. Odd levels duplicate their last node.

Sparse tree nodes hash the concatenated hex digests of the two children.
List tree leaves and nodes are hashed under distinct prefixes (hash_leaf,
hash_node). Proofs are sibling lists ordered leaf to root; the bits of the
leaf index select left/right at each level.
"""

from typing import Dict, List, Optional

import rollup.config as config
from rollup.crypto_utils import hash_data, hash_node, hash_pair


def _default_hashes(height: int) -> List[str]:
    defaults = [config.EMPTY_LEAF]
    for _ in range(height):
        defaults.append(hash_pair(defaults[-1], defaults[-1]))
    return defaults


class SparseMerkleTree:
    """Fixed-height sparse tree storing only non-empty nodes."""
    
    def __init__(self, height: int = config.STATE_TREE_HEIGHT):
        self.height = height
        self.defaults = _default_hashes(height)
        # levels[0] holds leaves, levels[height] holds the root
        self.levels: List[Dict[int, str]] = [dict() for _ in range(height + 1)]
    
    @property
    def root(self) -> str:
        return self.levels[self.height].get(0, self.defaults[self.height])
    
    def get_leaf(self, index: int) -> str:
        return self.levels[0].get(index, config.EMPTY_LEAF)
    
    def _node(self, level: int, index: int) -> str:
        return self.levels[level].get(index, self.defaults[level])
    
    def update(self, index: int, leaf_hash: str):
        if index < 0 or index >= 2 ** self.height:
            raise ValueError(f"Leaf index out of range: {index}")
        
        position = index
        node = leaf_hash
        for level in range(self.height + 1):
            if node == self.defaults[level]:
                self.levels[level].pop(position, None)
            else:
                self.levels[level][position] = node
            if level == self.height:
                break
            sibling = self._node(level, position ^ 1)
            if position & 1:
                node = hash_pair(sibling, node)
            else:
                node = hash_pair(node, sibling)
            position >>= 1
    
    def prove(self, index: int) -> List[str]:
        siblings = []
        position = index
        for level in range(self.height):
            siblings.append(self._node(level, position ^ 1))
            position >>= 1
        return siblings
    
    def copy(self) -> 'SparseMerkleTree':
        clone = SparseMerkleTree(self.height)
        clone.levels = [dict(level) for level in self.levels]
        return clone


def compute_root(leaf_hash: str, index: int, siblings: List[str], node_hash=hash_pair) -> str:
    """Fold a leaf up through its siblings."""
    node = leaf_hash
    position = index
    for sibling in siblings:
        if position & 1:
            node = node_hash(sibling, node)
        else:
            node = node_hash(node, sibling)
        position >>= 1
    return node


def verify_proof(root: str, leaf_hash: str, index: int, siblings: List[str]) -> bool:
    """
    Verify a sparse tree inclusion proof.
    
    Args:
        root: Expected root (hex)
        leaf_hash: Leaf hash (hex)
        index: Leaf position
        siblings: Sibling hashes ordered leaf to root
    
    Returns:
        bool: True if the proof rebuilds the root
    """
    if index < 0 or index >> len(siblings) != 0:
        return False
    return compute_root(leaf_hash, index, siblings) == root


def list_tree_depth(size: int) -> int:
    """Number of siblings in every proof of a list tree with `size` leaves."""
    return (size - 1).bit_length() if size > 0 else 0


def _build_levels(leaves: List[str]) -> List[List[str]]:
    levels = [list(leaves)]
    while len(levels[-1]) > 1:
        current = list(levels[-1])
        if len(current) % 2 != 0:
            current.append(current[-1])
        levels[-1] = current
        levels.append([hash_node(current[i], current[i + 1]) for i in range(0, len(current), 2)])
    return levels


def get_merkle_root(leaves: List[str]) -> str:
    """Root of a transition list tree over leaf hashes. An empty list hashes like empty bytes."""
    if not leaves:
        return hash_data(b"")
    return _build_levels(leaves)[-1][0]


def get_merkle_proof(leaves: List[str], index: int) -> Optional[List[str]]:
    if index < 0 or index >= len(leaves):
        return None
    siblings = []
    position = index
    for level in _build_levels(leaves)[:-1]:
        siblings.append(level[position ^ 1])
        position >>= 1
    return siblings


def verify_list_proof(root: str, leaf_hash: str, index: int, siblings: List[str], size: int) -> bool:
    """
    Verify that leaf `index` of a `size`-leaf transition list tree hashes to root.

    The proof must be exactly as deep as the tree, so an inner node can never
    stand in for a leaf, and the duplicated padding slot is not a leaf.
    """
    if index < 0 or index >= size:
        return False
    if len(siblings) != list_tree_depth(size):
        return False
    return compute_root(leaf_hash, index, siblings, node_hash=hash_node) == root
