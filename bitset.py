from __future__ import annotations

import random
from typing import Iterable, Iterator

import numpy as np
from numpy.lib.stride_tricks import sliding_window_view


class BitVector:
    """
    Fixed-length bit-vector backed by a numpy bool array.

    Used for culture tags, immune systems and diseases. Length never changes after creation; only single bits are
    written.
    """
    __slots__ = ("bits",)
    __hash__ = None

    def __init__(self, bits: Iterable[bool | int] | np.ndarray):
        self.bits = np.array(list(bits) if not isinstance(bits, np.ndarray) else bits, dtype=bool)

    @classmethod
    def random(cls, length: int, rng: random.Random) -> BitVector:
        return cls([rng.random() < 0.5 for _ in range(length)])

    @classmethod
    def from_string(cls, text: str) -> BitVector:
        return cls([ch == "1" for ch in text])

    def copy(self) -> BitVector:
        return BitVector(self.bits.copy())

    def __len__(self) -> int:
        return self.bits.size

    def __getitem__(self, index: int) -> bool:
        return bool(self.bits[index])

    def __setitem__(self, index: int, value: bool | int):
        self.bits[index] = bool(value)

    def __iter__(self) -> Iterator[bool]:
        return (bool(b) for b in self.bits)

    def __eq__(self, other):
        if not isinstance(other, BitVector):
            return NotImplemented
        return self.bits.size == other.bits.size and bool(np.array_equal(self.bits, other.bits))

    def __str__(self):
        return "".join("1" if b else "0" for b in self.bits)

    def __repr__(self):
        return f"BitVector('{self}')"

    def to_list(self) -> list[int]:
        return [int(b) for b in self.bits]

    def count(self) -> int:
        """Number of set bits."""
        return int(np.count_nonzero(self.bits))

    def flip(self, index: int):
        self.bits[index] = not self.bits[index]

    def hamming(self, other: BitVector) -> int:
        if len(other) != len(self):
            raise ValueError(f"Hamming distance needs equal lengths, got {len(self)} and {len(other)}")
        return int(np.count_nonzero(self.bits != other.bits))

    def window_distances(self, pattern: BitVector) -> np.ndarray:
        """Hamming distance between `pattern` and every window of the same length, indexed by window start."""
        if len(pattern) > len(self):
            raise ValueError(f"Pattern of length {len(pattern)} does not fit in {len(self)} bits")
        if len(pattern) == 0:
            return np.zeros(len(self) + 1, dtype=int)
        windows = sliding_window_view(self.bits, len(pattern))
        return np.count_nonzero(windows != pattern.bits, axis=1)

    def contains(self, pattern: BitVector) -> bool:
        """True when `pattern` occurs as a contiguous subsequence."""
        if len(pattern) > len(self):
            return False
        return bool((self.window_distances(pattern) == 0).any())

    def nearest_window(self, pattern: BitVector) -> tuple[int, int]:
        """(start, distance) of the first window with minimum Hamming distance to `pattern`."""
        distances = self.window_distances(pattern)
        start = int(np.argmin(distances))
        return start, int(distances[start])

    def mutate_toward(self, pattern: BitVector) -> int | None:
        """
        Flip the first bit of the nearest window that differs from `pattern`.

        Returns the flipped index, or None when `pattern` is already contained.
        """
        start, distance = self.nearest_window(pattern)
        if distance == 0:
            return None
        window = self.bits[start:start + len(pattern)]
        offset = int(np.flatnonzero(window != pattern.bits)[0])
        self.bits[start + offset] = pattern.bits[offset]
        return start + offset

    def crossover(self, other: BitVector, rng: random.Random) -> BitVector:
        """Uniform crossover: every bit is taken from either parent with equal probability."""
        if len(other) != len(self):
            raise ValueError(f"Crossover needs equal lengths, got {len(self)} and {len(other)}")
        return BitVector([a if rng.random() < 0.5 else b for a, b in zip(self.bits, other.bits)])
