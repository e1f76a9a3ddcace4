"""Decaying rates, e.g. exploration rates for environment-driven training.

Both producers are infinite iterators holding only their own position.
They can't be rewound: build a new instance to start over.
"""
import itertools
import math
import typing as t


class Exponential:
    """Yields exp(-i / decay) for i = 0, 1, 2, ...

    Arguments
    ---------
    decay : float
        Positive decay constant. Larger values give slower decays.
    """

    def __init__(self, decay: float):
        if not float(decay) > 0.0:
            raise ValueError("'decay' must be positive (got {}).".format(decay))

        self.decay = float(decay)
        self.index = 0

    def __iter__(self):
        return self

    def __next__(self) -> float:
        value = math.exp(-self.index / self.decay)
        self.index += 1
        return value

    def __repr__(self):
        return "Exponential(decay={}, index={})".format(self.decay, self.index)


class Linear:
    """Yields 1, factor, factor ** 2, ...

    Arguments
    ---------
    factor : float
        Multiplicative factor applied at every step, in (0, 1].
    """

    def __init__(self, factor: float):
        if not 0.0 < float(factor) <= 1.0:
            raise ValueError("'factor' must be in (0, 1] (got {}).".format(factor))

        self.factor = float(factor)
        self.value = 1.0

    def __iter__(self):
        return self

    def __next__(self) -> float:
        value = self.value
        self.value *= self.factor
        return value

    def __repr__(self):
        return "Linear(factor={}, value={})".format(self.factor, self.value)


def take(rates: t.Iterator[float], n: int) -> t.List[float]:
    return list(itertools.islice(rates, n))
