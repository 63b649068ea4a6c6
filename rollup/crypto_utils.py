"""
Keys, signatures and hashes used across the rollup.

Keys are raw SECP256k1 points in hex; signatures are deterministic so a
transition encodes to the same bytes every time it is signed.
"""

import hashlib
import json
from ecdsa import SigningKey, VerifyingKey, SECP256k1, BadSignatureError

import rollup.config as config

# Transition list tree: leaves and inner nodes are hashed under different prefixes
LEAF_PREFIX = b"\x00"
NODE_PREFIX = b"\x01"


def generate_keypair():
    """Returns (private_key_hex, public_key_hex)."""
    sk = SigningKey.generate(curve=SECP256k1)
    return sk.to_string().hex(), sk.get_verifying_key().to_string().hex()


def sign_message(message: bytes, private_key_hex: str) -> str:
    sk = SigningKey.from_string(bytes.fromhex(private_key_hex), curve=SECP256k1)
    return sk.sign_deterministic(message, hashfunc=hashlib.sha256).hex()


def verify_signature(message: bytes, signature_hex: str, public_key_hex: str) -> bool:
    """False for a bad signature as well as for keys or signatures that don't parse."""
    if not signature_hex or not public_key_hex:
        return False
    try:
        vk = VerifyingKey.from_string(bytes.fromhex(public_key_hex), curve=SECP256k1)
        return vk.verify(bytes.fromhex(signature_hex), message, hashfunc=hashlib.sha256)
    except (BadSignatureError, ValueError, AssertionError):
        return False


def hash_data(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def hash_pair(left: str, right: str) -> str:
    """Parent of two hex node hashes in the sparse state tree."""
    return hashlib.sha256((left + right).encode()).hexdigest()


def hash_leaf(data: bytes) -> str:
    """Leaf of a transition list tree."""
    return hashlib.sha256(LEAF_PREFIX + data).hexdigest()


def hash_node(left: str, right: str) -> str:
    """Inner node of a transition list tree."""
    return hashlib.sha256(NODE_PREFIX + (left + right).encode()).hexdigest()


def canonical_json(data: dict) -> bytes:
    return json.dumps(data, sort_keys=True, separators=(",", ":")).encode()


def derive_address(public_key_hex: str) -> str:
    """Rollup address: prefix + last 20 bytes of sha256(sha256(public key))."""
    digest = hashlib.sha256(hashlib.sha256(bytes.fromhex(public_key_hex)).digest()).digest()
    return f"{config.ADDRESS_PREFIX}{digest[-20:].hex()}"
