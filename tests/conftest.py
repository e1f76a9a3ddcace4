import numpy as np
import pytest

from numnet import specs
from numnet.activations import ActivationType
from numnet.losses import CostFunctionType
from numnet.network import build_network
from numnet.parallel import ParallelExecutor


@pytest.fixture
def rng():
    return np.random.default_rng(16)


@pytest.fixture
def executor():
    """Four workers, so that even small batches get split into partitions."""
    return ParallelExecutor(max_workers=4)


@pytest.fixture
def xor_data():
    X = np.array([[0.0, 0.0], [0.0, 1.0], [1.0, 0.0], [1.0, 1.0]])
    y = np.array([[0.0], [1.0], [1.0], [0.0]])
    return X, y


@pytest.fixture
def dense_network(rng):
    return build_network(
        2,
        [
            specs.fully_connected(6, ActivationType.TANH),
            specs.output(1, ActivationType.SIGMOID, CostFunctionType.CROSS_ENTROPY),
        ],
        rng=rng,
    )


def _numerical_gradient(func, param, eps=1e-6):
    grad = np.zeros_like(param)

    for ind in np.ndindex(*param.shape):
        orig = param[ind]

        param[ind] = orig + eps
        cost_plus = func()
        param[ind] = orig - eps
        cost_minus = func()
        param[ind] = orig

        grad[ind] = (cost_plus - cost_minus) / (2.0 * eps)

    return grad


@pytest.fixture
def numerical_gradient():
    """Central finite differences of a scalar ``func`` w.r.t. ``param``.

    ``param`` is perturbed in place and restored after every evaluation.
    """
    return _numerical_gradient
