"""Sub-seed derivation.

Every category draws from its own ``random.Random`` seeded by a hash of the
master seed, the category name and the attempt number, so categories are
independent of each other and of the order in which they run.
"""

import hashlib


def normalize_seed(seed: str | int) -> str:
    """Canonical text form of a seed; ``12345`` and ``"12345"`` are the same seed."""
    text = str(seed).strip()
    if not text:
        raise ValueError("Seed must not be empty")
    return text


def sub_seed(master: str | int, category: str, attempt: int = 0) -> int:
    """64-bit seed for one attempt of one category."""
    digest = hashlib.sha256(f"{normalize_seed(master)}:{category}:{attempt}".encode()).digest()
    return int.from_bytes(digest[:8], "little")
