"""Deck shuffling.

Unseeded shuffles draw from the OS entropy pool. A seeded shuffle is
reproducible: the same seed and salt always give the same order.
"""

import hashlib
import random
from typing import List, Optional

_SYSTEM_RANDOM = random.SystemRandom()

# random.Random seeds are masked to 31 bits.
_SEED_MASK = (1 << 31) - 1


def shuffle_deck(deck_ids: List[str], seed: Optional[str] = None, salt: str = "") -> List[str]:
    """Return a shuffled copy of deck_ids.

    random.shuffle is Fisher-Yates, so every permutation is equally likely.

    Args:
        deck_ids: Card ids in any order; the list is not modified
        seed: Optional seed; when omitted the system RNG is used
        salt: Mixed into a seeded shuffle, e.g. "<session id>:<shuffle count>"

    Returns:
        New list with the same card ids in shuffled order
    """
    if seed is None:
        rng = _SYSTEM_RANDOM
    else:
        digest = hashlib.sha256(f"{seed}{salt}".encode("utf-8")).digest()
        rng = random.Random(int.from_bytes(digest[:8], "big") & _SEED_MASK)
    shuffled = list(deck_ids)
    rng.shuffle(shuffled)
    return shuffled
