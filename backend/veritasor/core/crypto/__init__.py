"""
Commitment primitives.

Pure library modules with no I/O:
- **merkle**: SHA-256 Merkle tree, inclusion proofs and verification
- **canonicalization**: versioned leaf encoding for committed revenue figures
"""

from veritasor.core.crypto.canonicalization import (
    CURRENT_LEAF_ENCODING,
    LEAF_ENCODING_V1,
    encode_leaf,
    format_amount,
)
from veritasor.core.crypto.merkle import (
    EmptyInputError,
    IndexOutOfRangeError,
    MerkleError,
    MerkleTree,
    ProofStep,
    build_tree,
    generate_proof,
    merkle_root,
    sha256_hex,
    verify_proof,
)

__all__ = [
    "CURRENT_LEAF_ENCODING",
    "LEAF_ENCODING_V1",
    "encode_leaf",
    "format_amount",
    "EmptyInputError",
    "IndexOutOfRangeError",
    "MerkleError",
    "MerkleTree",
    "ProofStep",
    "build_tree",
    "generate_proof",
    "merkle_root",
    "sha256_hex",
    "verify_proof",
]
