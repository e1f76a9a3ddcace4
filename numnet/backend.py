"""Compute backend seam.

Every numeric hot spot (dense products, elementwise maps and batched
convolutions) and the parallel harness go through a :class:`Backend`, so
an alternate implementation can be plugged in without touching callers.
Components take an explicit ``backend=`` argument and fall back to the
process default otherwise.
"""
import abc
import contextlib
import typing as t

import numpy as np

from . import parallel
from .exceptions import DimensionMismatchError


class Backend(abc.ABC):
    def __init__(self, executor: t.Optional[parallel.ParallelExecutor] = None):
        if executor is None:
            executor = parallel.ParallelExecutor()

        self.executor = executor

    @abc.abstractmethod
    def matmul(self, a: np.ndarray, b: np.ndarray) -> np.ndarray:
        raise NotImplementedError

    @abc.abstractmethod
    def map(
        self,
        fn: t.Callable[[np.ndarray], np.ndarray],
        a: np.ndarray,
        out: t.Optional[np.ndarray] = None,
    ) -> np.ndarray:
        raise NotImplementedError

    @abc.abstractmethod
    def convolve(self, x: np.ndarray, kernels: np.ndarray) -> np.ndarray:
        """Batched 'valid' convolution summed over input channels.

        Arguments
        ---------
        x : np.ndarray of shape (n, C, H, W)
        kernels : np.ndarray of shape (K, C, kh, kw)

        Returns
        -------
        np.ndarray of shape (n, K, H - kh + 1, W - kw + 1)
        """
        raise NotImplementedError


class NumpyBackend(Backend):
    def matmul(self, a, b):
        if a.shape[-1] != b.shape[0]:
            raise DimensionMismatchError(
                "Can't multiply operands of shapes {} and {}.".format(a.shape, b.shape)
            )

        return np.matmul(a, b)

    def map(self, fn, a, out=None):
        res = fn(a)

        if out is None:
            return res

        np.copyto(out, res)
        return out

    def convolve(self, x, kernels):
        assert x.ndim == 4 and kernels.ndim == 4

        _, channels, height, width = x.shape
        _, k_channels, k_height, k_width = kernels.shape

        if channels != k_channels:
            raise DimensionMismatchError(
                "Input has {} channels but kernels expect {}.".format(
                    channels, k_channels
                )
            )

        if k_height > height or k_width > width:
            raise DimensionMismatchError(
                "Kernel of shape {} does not fit in input of shape {}.".format(
                    (k_height, k_width), (height, width)
                )
            )

        windows = np.lib.stride_tricks.sliding_window_view(
            x, (k_height, k_width), axis=(2, 3)
        )

        # NOTE: true convolution, so kernels are flipped on both spatial axes.
        return np.einsum(
            "ncijab,kcab->nkij", windows, kernels[:, :, ::-1, ::-1], optimize=True
        )


_default_backend = None  # type: t.Optional[Backend]


def get_backend() -> Backend:
    global _default_backend

    if _default_backend is None:
        _default_backend = NumpyBackend()

    return _default_backend


def set_backend(backend: Backend) -> Backend:
    """Replace the process default backend, returning the previous one."""
    global _default_backend

    if not isinstance(backend, Backend):
        raise TypeError(
            "'backend' must be a Backend instance (got {}).".format(type(backend))
        )

    previous = get_backend()
    _default_backend = backend
    return previous


@contextlib.contextmanager
def use_backend(backend: Backend):
    previous = set_backend(backend)

    try:
        yield backend

    finally:
        set_backend(previous)


def resolve(backend: t.Optional[Backend] = None) -> Backend:
    return get_backend() if backend is None else backend
