import enum
import typing as t

import numpy as np


class CostFunctionType(enum.Enum):
    QUADRATIC = "quadratic"
    CROSS_ENTROPY = "cross_entropy"
    LOG_LIKELIHOOD = "log_likelihood"


class _BaseCost:
    """Costs are averaged over the samples (rows) of a batch."""

    kind = None  # type: t.Optional[CostFunctionType]

    def __init__(self, eps: float = 1e-12):
        assert float(eps) > 0.0
        self.eps = float(eps)

    def __call__(self, y, y_preds):
        """Return the cost and its gradient w.r.t. ``y_preds``."""
        raise NotImplementedError

    def delta(self, z, y_preds, y, prime):
        """Gradient of the cost w.r.t. the output pre-activation ``z``."""
        _, grads = self(y, y_preds)
        return grads * prime(z)

    def __repr__(self):
        return "{}()".format(type(self).__name__)


class QuadraticCost(_BaseCost):
    kind = CostFunctionType.QUADRATIC

    def __call__(self, y, y_preds):
        y = y.reshape(y_preds.shape)
        num_samples = y_preds.shape[0]

        diff = y_preds - y

        cost = 0.5 * float(np.sum(diff * diff)) / num_samples
        grads = diff / num_samples

        return cost, grads


class CrossEntropyCost(_BaseCost):
    kind = CostFunctionType.CROSS_ENTROPY

    def __call__(self, y, y_preds):
        y = y.reshape(y_preds.shape)
        num_samples = y_preds.shape[0]

        y_preds = np.clip(y_preds, self.eps, 1.0 - self.eps)

        cost = -float(
            np.sum(y * np.log(y_preds) + (1.0 - y) * np.log1p(-y_preds))
        )
        grads = (y_preds - y) / (y_preds * (1.0 - y_preds))

        return cost / num_samples, grads / num_samples

    def delta(self, z, y_preds, y, prime):
        # NOTE: paired with a sigmoid output, the activation derivative
        # cancels out with the cost gradient denominator.
        return (y_preds - y.reshape(y_preds.shape)) / y_preds.shape[0]


class LogLikelihoodCost(_BaseCost):
    kind = CostFunctionType.LOG_LIKELIHOOD

    def __call__(self, y, y_preds):
        y = y.reshape(y_preds.shape)
        num_samples = y_preds.shape[0]

        y_preds = np.clip(y_preds, self.eps, 1.0)

        cost = -float(np.sum(y * np.log(y_preds)))
        grads = -y / y_preds

        return cost / num_samples, grads / num_samples

    def delta(self, z, y_preds, y, prime):
        # NOTE: only valid for a softmax output layer.
        return (y_preds - y.reshape(y_preds.shape)) / y_preds.shape[0]


_COSTS = {
    CostFunctionType.QUADRATIC: QuadraticCost,
    CostFunctionType.CROSS_ENTROPY: CrossEntropyCost,
    CostFunctionType.LOG_LIKELIHOOD: LogLikelihoodCost,
}


def get_cost(kind: t.Union[CostFunctionType, str]) -> _BaseCost:
    if isinstance(kind, str):
        try:
            kind = CostFunctionType(kind.lower())

        except ValueError as err:
            raise ValueError(
                "Unknown cost function '{}' (expected one of {}).".format(
                    kind, [cost.value for cost in CostFunctionType]
                )
            ) from err

    return _COSTS[kind]()


def accuracy(y, y_preds) -> float:
    """Fraction of correctly classified samples.

    Multi-output predictions are compared by argmax, single outputs by
    thresholding at 0.5.
    """
    y = np.asarray(y).reshape(y_preds.shape)

    if y_preds.shape[1] == 1:
        hits = (y_preds[:, 0] >= 0.5) == (y[:, 0] >= 0.5)

    else:
        hits = np.argmax(y_preds, axis=1) == np.argmax(y, axis=1)

    return float(np.mean(hits))
