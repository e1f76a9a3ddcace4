import abc
import typing as t

import numpy as np
import sklearn.model_selection

from . import _utils
from .exceptions import DimensionMismatchError


class Dataset:
    """Paired samples and targets, one row per sample."""

    def __init__(self, X, y):
        X = np.asarray(X, dtype=float)
        y = np.asarray(y, dtype=float)

        # A 1-D array holds one value per sample.
        if X.ndim == 1:
            X = X.reshape(-1, 1)

        if y.ndim == 1:
            y = y.reshape(-1, 1)

        if len(X) != len(y):
            raise DimensionMismatchError(
                "Got {} samples but {} targets.".format(len(X), len(y))
            )

        if not len(X):
            raise DimensionMismatchError("A dataset needs at least one sample.")

        self.X = X
        self.y = y

    def __len__(self):
        return len(self.X)

    def batches(
        self, batch_size: int, rng=None, shuffle: bool = True
    ) -> t.Iterator[t.Tuple[np.ndarray, np.ndarray]]:
        assert int(batch_size) > 0

        n = len(self)
        inds = np.arange(n)

        if shuffle:
            _utils.as_rng(rng).shuffle(inds)

        for start in np.arange(0, n, int(batch_size)):
            batch_inds = inds[start : start + int(batch_size)]
            yield self.X[batch_inds, ...], self.y[batch_inds, ...]

    def num_batches(self, batch_size: int) -> int:
        return -(-len(self) // int(batch_size))

    def split(self, validation_frac: float, rng=None) -> t.Tuple["Dataset", "Dataset"]:
        """Split into (train, validation) datasets."""
        if not 0.0 < float(validation_frac) < 1.0:
            raise ValueError(
                "'validation_frac' must be in (0, 1) (got {}).".format(validation_frac)
            )

        seed = int(_utils.as_rng(rng).integers(0, 2 ** 31 - 1))

        X_train, X_val, y_train, y_val = sklearn.model_selection.train_test_split(
            self.X,
            self.y,
            shuffle=True,
            test_size=float(validation_frac),
            random_state=seed,
        )

        return Dataset(X_train, y_train), Dataset(X_val, y_val)

    def __repr__(self):
        return "Dataset(samples={}, features={}, targets={})".format(
            len(self), self.X[0].size, self.y.shape[1]
        )


class Environment(abc.ABC):
    """Interactive data source.

    Every epoch the training loop asks the environment for a fresh dataset,
    generated by letting the current network interact with it.
    ``exploration`` is the current value of the exploration schedule, or
    None when training runs without one.
    """

    @abc.abstractmethod
    def episode(
        self, network, exploration: t.Optional[float], rng: np.random.Generator
    ) -> Dataset:
        raise NotImplementedError
