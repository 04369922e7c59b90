"""
Merkle commitment tree over canonical revenue leaves.

A tree is built from an ordered list of leaf strings. Every leaf is hashed
with SHA-256 to form level 0; each following level hashes adjacent pairs of
hex digests (string concatenation, ``sha256(left + right)``). When a level has
an odd number of nodes its last node is paired with itself. This rule applies
at every level, not only the leaves.

All levels are kept on the :class:`MerkleTree` so inclusion proofs can be
produced without rehashing. A proof is an ordered list of :class:`ProofStep`
from the leaf level up to (but excluding) the root.
"""

from __future__ import annotations

import hashlib
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Literal

ProofPosition = Literal["left", "right"]

POSITION_LEFT: ProofPosition = "left"
POSITION_RIGHT: ProofPosition = "right"


class MerkleError(ValueError):
    """Base class for Merkle engine misuse."""


class EmptyInputError(MerkleError):
    """Raised when a tree is requested for zero leaves."""


class IndexOutOfRangeError(MerkleError, IndexError):
    """Raised when a proof is requested for a leaf index outside the tree."""


def sha256_hex(data: bytes | str) -> str:
    """Return the lowercase hex SHA-256 digest of ``data``.

    Strings are encoded as UTF-8 before hashing.
    """
    if isinstance(data, str):
        data = data.encode("utf-8")
    return hashlib.sha256(data).hexdigest()


def _hash_pair(left: str, right: str) -> str:
    """Hash two hex digests joined as strings (order matters)."""
    return sha256_hex(left + right)


def _next_level(level: Sequence[str]) -> tuple[str, ...]:
    parents: list[str] = []
    for i in range(0, len(level), 2):
        left = level[i]
        right = level[i + 1] if i + 1 < len(level) else left
        parents.append(_hash_pair(left, right))
    return tuple(parents)


@dataclass(frozen=True)
class ProofStep:
    """One level of an inclusion proof.

    ``position`` tells the verifier on which side the sibling sits: ``right``
    means ``hash(current + sibling)``, ``left`` means ``hash(sibling + current)``.
    """

    sibling: str
    position: ProofPosition


@dataclass(frozen=True)
class MerkleTree:
    """An immutable Merkle tree with every level retained.

    Attributes
    ----------
    leaves:
        The original (unhashed) leaf strings, in commitment order.
    levels:
        ``levels[0]`` holds the hashed leaves; ``levels[-1]`` holds the root.
    """

    leaves: tuple[str, ...]
    levels: tuple[tuple[str, ...], ...]

    @property
    def root(self) -> str:
        """The single digest at the top of the tree."""
        return self.levels[-1][0]

    @property
    def leaf_count(self) -> int:
        return len(self.leaves)

    @property
    def depth(self) -> int:
        """Number of proof steps for any leaf (levels below the root)."""
        return len(self.levels) - 1

    def proof(self, index: int) -> list[ProofStep]:
        """Return the inclusion proof for the leaf at ``index``."""
        if index < 0 or index >= self.leaf_count:
            raise IndexOutOfRangeError(
                f"Leaf index {index} out of range for {self.leaf_count} leaves"
            )

        steps: list[ProofStep] = []
        idx = index
        for level in self.levels[:-1]:
            if idx % 2 == 0:
                sibling_idx = idx + 1
                # Odd level: the last node was paired with itself
                sibling = level[sibling_idx] if sibling_idx < len(level) else level[idx]
                steps.append(ProofStep(sibling=sibling, position=POSITION_RIGHT))
            else:
                steps.append(ProofStep(sibling=level[idx - 1], position=POSITION_LEFT))
            idx //= 2
        return steps

    def verify(self, leaf: str, proof: Sequence[ProofStep]) -> bool:
        """Verify ``leaf`` against this tree's root."""
        return verify_proof(leaf, proof, self.root)


def build_tree(leaves: Sequence[str]) -> MerkleTree:
    """Build a Merkle tree from ordered leaf strings.

    Parameters
    ----------
    leaves:
        Canonical leaf encodings. Order is significant and is never changed
        here; callers sort before building.

    Returns
    -------
    MerkleTree
        Tree holding every level from hashed leaves to the root.

    Raises
    ------
    EmptyInputError
        If ``leaves`` is empty.
    """
    if not leaves:
        raise EmptyInputError("Cannot build Merkle tree from empty leaves")

    level = tuple(sha256_hex(leaf) for leaf in leaves)
    levels = [level]
    while len(level) > 1:
        level = _next_level(level)
        levels.append(level)

    return MerkleTree(leaves=tuple(leaves), levels=tuple(levels))


def merkle_root(tree: MerkleTree) -> str:
    """Return the root digest of ``tree``."""
    return tree.root


def generate_proof(tree_or_leaves: MerkleTree | Sequence[str], index: int) -> list[ProofStep]:
    """Generate an inclusion proof for the leaf at ``index``.

    Accepts a built tree or the raw leaves; raw leaves are built first, so an
    empty sequence raises :class:`EmptyInputError`.

    Raises
    ------
    IndexOutOfRangeError
        If ``index`` is negative or not less than the leaf count.
    """
    tree = tree_or_leaves if isinstance(tree_or_leaves, MerkleTree) else build_tree(tree_or_leaves)
    return tree.proof(index)


def verify_proof(leaf: str, proof: Sequence[ProofStep], root: str) -> bool:
    """Check that ``leaf`` is committed under ``root`` via ``proof``.

    Returns ``False`` for any non-matching leaf, proof or root; never raises
    for well-formed input.
    """
    current = sha256_hex(leaf)
    for step in proof:
        if step.position == POSITION_RIGHT:
            current = _hash_pair(current, step.sibling)
        elif step.position == POSITION_LEFT:
            current = _hash_pair(step.sibling, current)
        else:
            return False
    return current == root
