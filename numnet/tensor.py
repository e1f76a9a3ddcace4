import typing as t

import numpy as np

from . import _utils
from . import backend as _backend
from .exceptions import DimensionMismatchError, NumericOverflowError


class Tensor:
    """Dense 2-D float buffer.

    The shape is fixed at construction while the contents may be updated
    in place. Equality and hashing compare contents, so a Tensor should
    not be mutated while it is used as a dictionary key.
    """

    __slots__ = ("_values",)

    def __init__(self, values):
        values = np.array(values, dtype=float)

        if values.ndim == 1:
            values = values.reshape(1, -1)

        if values.ndim != 2:
            raise DimensionMismatchError(
                "Tensor values must be 2-D (got {} dimension(s)).".format(values.ndim)
            )

        self._values = values

    @property
    def values(self) -> np.ndarray:
        return self._values

    @values.setter
    def values(self, new_values):
        new_values = np.asarray(new_values, dtype=float)

        if new_values.shape != self._values.shape:
            raise DimensionMismatchError(
                "Can't assign values of shape {} to a Tensor of shape {}.".format(
                    new_values.shape, self._values.shape
                )
            )

        np.copyto(self._values, new_values)

    @property
    def rows(self) -> int:
        return self._values.shape[0]

    @property
    def cols(self) -> int:
        return self._values.shape[1]

    @property
    def shape(self) -> t.Tuple[int, int]:
        return self._values.shape

    @property
    def size(self) -> int:
        return self._values.size

    def flatten(self) -> np.ndarray:
        return self._values.ravel().copy()

    def copy(self) -> "Tensor":
        return Tensor(self._values)

    @staticmethod
    def zeros(rows: int, cols: int) -> "Tensor":
        return Tensor(np.zeros((rows, cols), dtype=float))

    @staticmethod
    def from_shape(
        rows: int,
        cols: int,
        mode: str = "normal",
        rng: t.Optional[t.Union[int, np.random.Generator]] = None,
        **kwargs
    ) -> "Tensor":
        assert mode in {"normal", "uniform", "constant", "zeros"}
        assert int(rows) > 0 and int(cols) > 0

        shape = (int(rows), int(cols))
        rng = _utils.as_rng(rng)

        if mode == "normal":
            mean = kwargs.get("mean", 0.0)
            std = kwargs.get("std", 1.0)

            if isinstance(std, str):
                std = _utils.get_weight_init_dist_params(std, mode, *shape)

            return Tensor(rng.normal(mean, std, shape))

        if mode == "uniform":
            rule = kwargs.get("std")

            if rule is not None:
                low, high = _utils.get_weight_init_dist_params(rule, mode, *shape)

            else:
                high = kwargs.get("high", 1.0)
                low = kwargs.get("low", -high)

            return Tensor(rng.uniform(low, high, shape))

        constant = kwargs["value"] if mode == "constant" else 0.0
        return Tensor(np.full(shape, fill_value=constant, dtype=float))

    def __eq__(self, other):
        if not isinstance(other, Tensor):
            return NotImplemented

        return self.shape == other.shape and bool(
            np.array_equal(self._values, other._values)
        )

    def __hash__(self):
        # NOTE: "+ 0.0" folds -0.0 into 0.0, which compare equal.
        return hash((self.shape, (self._values + 0.0).tobytes()))

    def __repr__(self):
        return "Tensor(shape={})".format(self.shape)


def multiply(a: Tensor, b: Tensor, backend: t.Optional[_backend.Backend] = None):
    if a.cols != b.rows:
        raise DimensionMismatchError(
            "Can't multiply a {}x{} Tensor by a {}x{} Tensor.".format(
                a.rows, a.cols, b.rows, b.cols
            )
        )

    return Tensor(_backend.resolve(backend).matmul(a.values, b.values))


def apply_activation(
    tensor: Tensor,
    fn: t.Callable[[np.ndarray], np.ndarray],
    threshold: t.Optional[float] = None,
    backend: t.Optional[_backend.Backend] = None,
) -> Tensor:
    """Replace every element x of ``tensor`` with fn(x - threshold), in place."""
    shift = 0.0 if threshold is None else float(threshold)
    _backend.resolve(backend).map(
        lambda vals: fn(vals - shift), tensor.values, out=tensor.values
    )
    return tensor


def random_init(
    rows: int, cols: int, rng: t.Union[int, np.random.Generator]
) -> Tensor:
    return Tensor.from_shape(rows, cols, mode="normal", rng=rng)


def _check_same_shape(a: Tensor, b: Tensor):
    if a.shape != b.shape:
        raise DimensionMismatchError(
            "Parents must have the same shape (got {} and {}).".format(
                a.shape, b.shape
            )
        )


def crossover_points(size: int, rng: np.random.Generator) -> t.Tuple[int, int]:
    """Two cut indices 0 <= i < j <= size, uniformly drawn.

    With more than one element, the full range (0, size) is never returned,
    so the child always keeps at least one element of each parent.
    """
    assert int(size) > 0

    while True:
        i, j = np.sort(rng.choice(size + 1, size=2, replace=False))

        if size == 1 or j - i < size:
            return int(i), int(j)


def two_point_crossover(
    a: Tensor, b: Tensor, rng: t.Union[int, np.random.Generator]
) -> Tensor:
    """Child taking [0, i) and [j, end) from ``a`` and [i, j) from ``b``.

    Both parents are read as flattened sequences in row-major order and
    are left untouched.
    """
    _check_same_shape(a, b)

    rng = _utils.as_rng(rng)
    i, j = crossover_points(a.size, rng)

    child = a.flatten()
    child[i:j] = b.values.ravel()[i:j]

    return Tensor(child.reshape(a.shape))


def random_mutate(
    tensor: Tensor, probability: float, rng: t.Union[int, np.random.Generator]
) -> Tensor:
    """Mutated copy of ``tensor``.

    Each element is selected with ``probability``. Half of the selected
    elements are nudged up or down by a random fraction of ``1 - x``; the
    others are redrawn from the standard normal distribution.
    """
    if not 0.0 <= float(probability) <= 1.0:
        raise ValueError(
            "'probability' must be in [0, 1] (got {}).".format(probability)
        )

    rng = _utils.as_rng(rng)
    vals = tensor.flatten()

    selected = rng.random(vals.size) < float(probability)
    nudge = rng.random(vals.size) < 0.5
    sign = np.where(rng.random(vals.size) < 0.5, 1.0, -1.0)

    nudged = vals + sign * rng.random(vals.size) * (1.0 - vals)
    redrawn = rng.standard_normal(vals.size)

    vals = np.where(selected, np.where(nudge, nudged, redrawn), vals)

    return Tensor(vals.reshape(tensor.shape))


def ensure_finite(values: np.ndarray, what: str = "values") -> np.ndarray:
    if not _utils.is_finite(values):
        raise NumericOverflowError("Non-finite {} detected.".format(what))

    return values
