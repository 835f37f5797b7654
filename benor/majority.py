"""Strict-majority detection and tie-break policies."""
import enum
import random
from typing import Iterable, Optional


def resolve(values: Iterable[int], threshold: int) -> Optional[int]:
    """
    Return the value reported at least `threshold` times, or None.

    Callers pass a threshold above half the number of values, so at most
    one of 0 and 1 can qualify.
    """
    count0 = 0
    count1 = 0
    for value in values:
        if value == 0:
            count0 += 1
        elif value == 1:
            count1 += 1
    
    if count0 >= threshold:
        return 0
    if count1 >= threshold:
        return 1
    return None


class TieBreaker(enum.Enum):
    """Fallback used when phase R yields no strict majority."""
    DETERMINISTIC = "deterministic"
    RANDOM = "random"
    
    def choose(self, round_number: int, rng: random.Random) -> int:
        if self is TieBreaker.RANDOM:
            return rng.randint(0, 1)
        return round_number % 2
