"""
Holdco Engine - Seeded Random Streams
=====================================
Deterministic pseudo-random source and its seed-derivation hierarchy.

    master seed -> round seed -> stream seed (deals, events, simulation, market, cosmetic)

Every draw the simulation makes comes from one of these streams, so a
(seed, round) pair reproduces the same deals, events and outcomes on any
machine. Streams can be forked by key to give an entity (a deal, a business,
a repeated player action) its own private randomness.
"""

import random
from dataclasses import dataclass
from typing import List, Sequence, Tuple, TypeVar, Union

T = TypeVar("T")

MASK_32 = 0xFFFFFFFF
STREAM_IDS = ("deals", "events", "simulation", "market", "cosmetic")

# Mulberry32 / hash constants
MULBERRY_INCREMENT = 0x6D2B79F5
GOLDEN_RATIO_32 = 0x9E3779B9
MIX_1 = 0x85EBCA6B
MIX_2 = 0xC2B2AE35


# ==================== Hashing ====================

def imul(a: int, b: int) -> int:
    """32-bit integer multiply (low 32 bits of the product)"""
    return (a * b) & MASK_32


def hash_two(a: int, b: int) -> int:
    """Mix two integers into a well-distributed unsigned 32-bit value"""
    h = ((a & MASK_32) ^ imul(b & MASK_32, GOLDEN_RATIO_32)) & MASK_32
    h = imul(h ^ (h >> 16), MIX_1)
    h = imul(h ^ (h >> 13), MIX_2)
    return (h ^ (h >> 16)) & MASK_32


def string_hash(key: str) -> int:
    """Polynomial (x31) string hash folded to 32 bits"""
    h = 0
    for ch in key:
        h = (h * 31 + ord(ch)) & MASK_32
    return h


def key_seed(key: Union[str, int]) -> int:
    """Turn a fork key into a 32-bit integer seed"""
    if isinstance(key, bool):
        raise TypeError("fork key must be str or int, not bool")
    if isinstance(key, int):
        return key & MASK_32
    if isinstance(key, str):
        return string_hash(key)
    raise TypeError(f"fork key must be str or int, got {type(key).__name__}")


def derive_round_seed(master_seed: int, round_number: int) -> int:
    """Seed for a single round of a game"""
    return hash_two(master_seed, round_number)


def derive_stream_seed(round_seed: int, stream_id: str) -> int:
    """Seed for one named stream within a round"""
    return hash_two(round_seed, string_hash(stream_id))


# ==================== Stream ====================

class SeededRng:
    """Mulberry32 generator over a 32-bit state

    The generator owns its state; callers that need independent randomness
    fork instead of sharing an instance.
    """

    def __init__(self, seed: int):
        self._state = seed & MASK_32

    @property
    def state(self) -> int:
        return self._state

    def next(self) -> float:
        """Next value in [0, 1)"""
        self._state = (self._state + MULBERRY_INCREMENT) & MASK_32
        t = self._state
        t = imul(t ^ (t >> 15), t | 1)
        t = (((t + imul(t ^ (t >> 7), t | 61)) & MASK_32) ^ t) & MASK_32
        return ((t ^ (t >> 14)) & MASK_32) / 4294967296

    def next_int(self, lo: int, hi: int) -> int:
        """Uniform integer in [lo, hi] inclusive"""
        if hi < lo:
            lo, hi = hi, lo
        return lo + int(self.next() * (hi - lo + 1))

    def next_in_range(self, bounds: Tuple[float, float]) -> float:
        """Uniform float between the two bounds"""
        lo, hi = bounds
        return lo + self.next() * (hi - lo)

    def chance(self, probability: float) -> bool:
        return self.next() < probability

    def pick(self, items: Sequence[T]) -> T:
        if not items:
            raise ValueError("cannot pick from an empty sequence")
        return items[int(self.next() * len(items))]

    def weighted_pick(self, items: Sequence[T], weights: Sequence[float]) -> T:
        """Pick one item with probability proportional to its weight"""
        if not items or len(items) != len(weights):
            raise ValueError("items and weights must be non-empty and equal length")
        total = sum(max(0.0, w) for w in weights)
        if total <= 0:
            return self.pick(items)
        roll = self.next() * total
        for item, weight in zip(items, weights):
            roll -= max(0.0, weight)
            if roll < 0:
                return item
        return items[-1]

    def shuffle(self, items: Sequence[T]) -> List[T]:
        """Fisher-Yates shuffle into a new list"""
        result = list(items)
        for i in range(len(result) - 1, 0, -1):
            j = int(self.next() * (i + 1))
            result[i], result[j] = result[j], result[i]
        return result

    def fork(self, key: Union[str, int]) -> "SeededRng":
        """Independent child stream keyed on the current state and `key`

        Forking does not advance the parent.
        """
        return SeededRng(hash_two(self._state, key_seed(key)))

    def __repr__(self):
        return f"SeededRng(state={self._state:#010x})"


# ==================== Round Streams ====================

@dataclass
class RngStreams:
    """The five named streams for one round"""
    deals: SeededRng
    events: SeededRng
    simulation: SeededRng
    market: SeededRng
    cosmetic: SeededRng

    def get(self, stream_id: str) -> SeededRng:
        if stream_id not in STREAM_IDS:
            raise ValueError(f"unknown stream: {stream_id}")
        return getattr(self, stream_id)


def create_rng_streams(master_seed: int, round_number: int) -> RngStreams:
    """Build all five streams for (seed, round)

    Args:
        master_seed: Game seed
        round_number: Current round (1-based)

    Returns:
        Fresh RngStreams; each call returns new, unconsumed generators
    """
    round_seed = derive_round_seed(master_seed, round_number)
    return RngStreams(**{
        stream_id: SeededRng(derive_stream_seed(round_seed, stream_id))
        for stream_id in STREAM_IDS
    })


def generate_random_seed() -> int:
    """Fresh master seed for a non-challenge game"""
    return random.SystemRandom().randrange(1, 2 ** 31 - 1)
