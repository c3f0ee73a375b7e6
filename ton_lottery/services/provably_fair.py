"""Provably fair number generation and verification.

Before a draw the server commits to ``sha256(server_seed)``. At draw time
the winning numbers are derived from ``server_seed + client_seed + nonce``,
where the client seed is a ledger block hash nobody controlled in advance.
Once both seeds are revealed anyone can recompute the numbers.

Derivation: SHA-256 hex digest of the combined seed, read 8 hex characters
at a time, each chunk mapped to ``int(chunk, 16) % max + 1``; duplicates are
skipped and the digest is re-hashed when its chunks run out. The result is
sorted ascending.
"""

import hashlib
import logging
import secrets
from collections.abc import Iterable

logger = logging.getLogger(__name__)

CHUNK_SIZE = 8


def generate_server_seed() -> str:
    """Random 32-byte server seed as hex."""
    return secrets.token_hex(32)


def hash_server_seed(server_seed: str) -> str:
    """Commitment published before the draw."""
    return hashlib.sha256(server_seed.encode()).hexdigest()


def combine_seeds(server_seed: str, client_seed: str, nonce: int) -> str:
    return f"{server_seed}{client_seed}{nonce}"


def generate_numbers_from_seed(seed: str, count: int, max_number: int) -> list[int]:
    """Derive ``count`` unique numbers in ``[1, max_number]`` from ``seed``.

    Raises:
        ValueError: ``count`` numbers cannot be drawn from the range
    """
    if count < 0 or max_number < 1 or count > max_number:
        raise ValueError(f"Cannot draw {count} unique numbers from 1..{max_number}")

    numbers: list[int] = []
    digest = hashlib.sha256(seed.encode()).hexdigest()
    index = 0
    while len(numbers) < count:
        chunk = digest[index * CHUNK_SIZE : (index + 1) * CHUNK_SIZE]
        number = int(chunk, 16) % max_number + 1
        if number not in numbers:
            numbers.append(number)
        index += 1
        if index * CHUNK_SIZE >= len(digest):
            digest = hashlib.sha256(digest.encode()).hexdigest()
            index = 0
    return sorted(numbers)


def generate_draw_numbers(server_seed: str, client_seed: str, nonce: int, count: int, max_number: int) -> list[int]:
    """Winning numbers of a draw."""
    return generate_numbers_from_seed(combine_seeds(server_seed, client_seed, nonce), count, max_number)


def verify_winning_numbers(
    server_seed: str | None,
    client_seed: str | None,
    nonce: int,
    winning_numbers: Iterable[int] | None,
    count: int,
    max_number: int,
) -> bool:
    """Recompute the draw and compare with the published numbers.

    Order does not matter. Never raises: absent seeds, impossible parameters
    or malformed numbers simply fail verification. The seed commitment is
    checked separately with :func:`verify_commitment`.
    """
    if not server_seed or not client_seed or winning_numbers is None:
        return False
    try:
        expected = generate_draw_numbers(server_seed, client_seed, nonce, count, max_number)
        claimed = [int(n) for n in winning_numbers]
    except (TypeError, ValueError) as e:
        logger.debug(f"Verification failed: {e}")
        return False
    return len(claimed) == len(expected) and set(claimed) == set(expected)


def verify_commitment(server_seed: str | None, server_seed_hash: str | None) -> bool:
    """The revealed seed matches the hash published before the draw."""
    if not server_seed or not server_seed_hash:
        return False
    return secrets.compare_digest(hash_server_seed(server_seed), server_seed_hash.lower())
