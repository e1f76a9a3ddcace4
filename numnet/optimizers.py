"""Gradient-based weight update rules.

Every algorithm is described by an immutable ``*Info`` record holding its
hyperparameters and exposing a pure ``update(weight, gradient, state)``
returning the new weight and the new state. States are immutable named
tuples of arrays; nothing is modified in place, so a failed or rejected
step can simply be dropped.

All rules add the L2 penalty ``lambda_ * weight`` to the gradient before
applying their update.
"""
import abc
import dataclasses
import enum
import logging
import typing as t

import numpy as np

from .exceptions import ConfigurationError


logger = logging.getLogger(__name__)


class TrainingAlgorithmType(enum.Enum):
    SGD = "sgd"
    MOMENTUM = "momentum"
    ADAGRAD = "adagrad"
    ADADELTA = "adadelta"
    RMSPROP = "rmsprop"
    ADAM = "adam"
    ADAMAX = "adamax"


class MomentumState(t.NamedTuple):
    velocity: np.ndarray


class AccumulatorState(t.NamedTuple):
    squared_grads: np.ndarray


class AdaDeltaState(t.NamedTuple):
    squared_grads: np.ndarray
    squared_steps: np.ndarray


class MomentState(t.NamedTuple):
    """First and second moment estimates, plus the number of updates so far.

    For AdaMax ``second`` holds the exponentially weighted infinity norm.
    """

    first: np.ndarray
    second: np.ndarray
    iterations: int


def _check_positive(name: str, value: float):
    if not float(value) > 0.0:
        raise ConfigurationError("'{}' must be positive (got {}).".format(name, value))


def _check_decay(name: str, value: float):
    if not 0.0 <= float(value) < 1.0:
        raise ConfigurationError("'{}' must be in [0, 1) (got {}).".format(name, value))


class TrainingAlgorithmInfo(abc.ABC):
    kind = None  # type: t.Optional[TrainingAlgorithmType]

    lambda_: float

    def _validate_l2(self):
        _check_decay("lambda_", self.lambda_)

    def _regularized(self, weight, gradient):
        if self.lambda_:
            return gradient + self.lambda_ * weight

        return gradient

    def init_state(self, weight: np.ndarray):
        return None

    @abc.abstractmethod
    def update(self, weight: np.ndarray, gradient: np.ndarray, state):
        raise NotImplementedError


@dataclasses.dataclass(frozen=True)
class SGDInfo(TrainingAlgorithmInfo):
    eta: float = 0.1
    lambda_: float = 0.0

    kind = TrainingAlgorithmType.SGD

    def __post_init__(self):
        _check_positive("eta", self.eta)
        self._validate_l2()

    def update(self, weight, gradient, state):
        gradient = self._regularized(weight, gradient)
        return weight - self.eta * gradient, state


@dataclasses.dataclass(frozen=True)
class MomentumInfo(TrainingAlgorithmInfo):
    eta: float = 0.1
    lambda_: float = 0.0
    momentum: float = 0.9

    kind = TrainingAlgorithmType.MOMENTUM

    def __post_init__(self):
        _check_positive("eta", self.eta)
        _check_decay("momentum", self.momentum)
        self._validate_l2()

    def init_state(self, weight):
        return MomentumState(np.zeros_like(weight, dtype=float))

    def update(self, weight, gradient, state):
        gradient = self._regularized(weight, gradient)
        velocity = self.momentum * state.velocity - self.eta * gradient
        return weight + velocity, MomentumState(velocity)


@dataclasses.dataclass(frozen=True)
class AdaGradInfo(TrainingAlgorithmInfo):
    """Adagrad: Adaptive Gradient.

    The step of every weight shrinks as its squared gradients accumulate,
    which can stop the training way too soon on long runs.
    """

    eta: float = 0.1
    lambda_: float = 0.0
    epsilon: float = 1e-8

    kind = TrainingAlgorithmType.ADAGRAD

    def __post_init__(self):
        _check_positive("eta", self.eta)
        _check_positive("epsilon", self.epsilon)
        self._validate_l2()

    def init_state(self, weight):
        return AccumulatorState(np.zeros_like(weight, dtype=float))

    def update(self, weight, gradient, state):
        gradient = self._regularized(weight, gradient)
        squared_grads = state.squared_grads + np.square(gradient)
        step = self.eta * gradient / np.sqrt(squared_grads + self.epsilon)
        return weight - step, AccumulatorState(squared_grads)


@dataclasses.dataclass(frozen=True)
class RMSPropInfo(TrainingAlgorithmInfo):
    eta: float = 0.01
    rho: float = 0.9
    epsilon: float = 1e-8
    lambda_: float = 0.0

    kind = TrainingAlgorithmType.RMSPROP

    def __post_init__(self):
        _check_positive("eta", self.eta)
        _check_decay("rho", self.rho)
        _check_positive("epsilon", self.epsilon)
        self._validate_l2()

    def init_state(self, weight):
        return AccumulatorState(np.zeros_like(weight, dtype=float))

    def update(self, weight, gradient, state):
        gradient = self._regularized(weight, gradient)
        squared_grads = self.rho * state.squared_grads + (1.0 - self.rho) * np.square(
            gradient
        )
        step = self.eta * gradient / np.sqrt(squared_grads + self.epsilon)
        return weight - step, AccumulatorState(squared_grads)


@dataclasses.dataclass(frozen=True)
class AdaDeltaInfo(TrainingAlgorithmInfo):
    """Adadelta.

    Like RMSProp, but the step is scaled by the running average of the
    previous squared steps, so there is no learning rate at all.
    """

    rho: float = 0.95
    epsilon: float = 1e-8
    lambda_: float = 0.0

    kind = TrainingAlgorithmType.ADADELTA

    def __post_init__(self):
        _check_decay("rho", self.rho)
        _check_positive("epsilon", self.epsilon)
        self._validate_l2()

    def init_state(self, weight):
        return AdaDeltaState(
            np.zeros_like(weight, dtype=float), np.zeros_like(weight, dtype=float)
        )

    def update(self, weight, gradient, state):
        rho = self.rho
        eps = self.epsilon

        gradient = self._regularized(weight, gradient)
        squared_grads = rho * state.squared_grads + (1.0 - rho) * np.square(gradient)

        # NOTE: the 'eps' in the numerator is what gets the recursion started,
        # otherwise every step would be zero.
        step = -np.sqrt(state.squared_steps + eps) / np.sqrt(squared_grads + eps)
        step = step * gradient

        squared_steps = rho * state.squared_steps + (1.0 - rho) * np.square(step)

        return weight + step, AdaDeltaState(squared_grads, squared_steps)


@dataclasses.dataclass(frozen=True)
class AdamInfo(TrainingAlgorithmInfo):
    """Adam: Adaptive Moment Estimation.

    Combines RMSProp with Momentum, with bias-corrected moment estimates.
    """

    eta: float = 0.001
    beta1: float = 0.9
    beta2: float = 0.999
    epsilon: float = 1e-8
    lambda_: float = 0.0

    kind = TrainingAlgorithmType.ADAM

    def __post_init__(self):
        _check_positive("eta", self.eta)
        _check_decay("beta1", self.beta1)
        _check_decay("beta2", self.beta2)
        _check_positive("epsilon", self.epsilon)
        self._validate_l2()

    def init_state(self, weight):
        return MomentState(
            np.zeros_like(weight, dtype=float), np.zeros_like(weight, dtype=float), 0
        )

    def update(self, weight, gradient, state):
        it = state.iterations + 1

        gradient = self._regularized(weight, gradient)
        first = self.beta1 * state.first + (1.0 - self.beta1) * gradient
        second = self.beta2 * state.second + (1.0 - self.beta2) * np.square(gradient)

        first_unbiased = first / (1.0 - self.beta1 ** it)
        second_unbiased = second / (1.0 - self.beta2 ** it)

        step = self.eta * first_unbiased / (np.sqrt(second_unbiased) + self.epsilon)

        return weight - step, MomentState(first, second, it)


@dataclasses.dataclass(frozen=True)
class AdaMaxInfo(TrainingAlgorithmInfo):
    """AdaMax: Adam with the infinity norm in place of the second moment."""

    eta: float = 0.002
    beta1: float = 0.9
    beta2: float = 0.999
    epsilon: float = 1e-8
    lambda_: float = 0.0

    kind = TrainingAlgorithmType.ADAMAX

    def __post_init__(self):
        _check_positive("eta", self.eta)
        _check_decay("beta1", self.beta1)
        _check_decay("beta2", self.beta2)
        _check_positive("epsilon", self.epsilon)
        self._validate_l2()

    def init_state(self, weight):
        return MomentState(
            np.zeros_like(weight, dtype=float), np.zeros_like(weight, dtype=float), 0
        )

    def update(self, weight, gradient, state):
        it = state.iterations + 1

        gradient = self._regularized(weight, gradient)
        first = self.beta1 * state.first + (1.0 - self.beta1) * gradient
        inf_norm = np.maximum(self.beta2 * state.second, np.abs(gradient))

        cur_lr = self.eta / (1.0 - self.beta1 ** it)
        step = cur_lr * first / (inf_norm + self.epsilon)

        return weight - step, MomentState(first, inf_norm, it)


def clip_grads_norm(
    grads: t.Sequence[np.ndarray], max_norm: float = 1.0
) -> t.List[np.ndarray]:
    """Rescale ``grads`` so that their global L2 norm is at most ``max_norm``."""
    assert float(max_norm) >= 0.0

    norm = 0.0

    for grad in grads:
        norm += float(np.sum(np.square(grad)))

    clip_coef = float(max_norm) / (1e-6 + float(np.sqrt(norm)))

    if clip_coef < 1.0:
        return [grad * clip_coef for grad in grads]

    return list(grads)


class Optimizer:
    """Keeps one state per parameter and applies a TrainingAlgorithmInfo.

    ``step`` is pure: it returns the candidate weights and states, which
    only become current once ``commit`` is called with the new states.
    """

    def __init__(
        self,
        algorithm: TrainingAlgorithmInfo,
        clip_grad_norm: t.Optional[float] = None,
    ):
        if not isinstance(algorithm, TrainingAlgorithmInfo):
            raise ConfigurationError(
                "'algorithm' must be a TrainingAlgorithmInfo (got {}).".format(
                    type(algorithm).__name__
                )
            )

        if clip_grad_norm is not None:
            _check_positive("clip_grad_norm", clip_grad_norm)

        self.algorithm = algorithm
        self.clip_grad_norm = clip_grad_norm
        self.states = None  # type: t.Optional[t.List[t.Any]]

    def register(self, parameters: t.Sequence[np.ndarray]):
        self.states = [self.algorithm.init_state(param) for param in parameters]
        return self

    def step(
        self, parameters: t.Sequence[np.ndarray], grads: t.Sequence[np.ndarray]
    ) -> t.Tuple[t.List[np.ndarray], t.List[t.Any]]:
        if self.states is None:
            self.register(parameters)

        assert len(parameters) == len(grads) == len(self.states)

        if self.clip_grad_norm is not None:
            grads = clip_grads_norm(grads, self.clip_grad_norm)

        new_params = []
        new_states = []

        for param, grad, state in zip(parameters, grads, self.states):
            new_param, new_state = self.algorithm.update(param, grad, state)
            new_params.append(new_param)
            new_states.append(new_state)

        return new_params, new_states

    def commit(self, new_states: t.Sequence[t.Any]):
        self.states = list(new_states)

    def snapshot(self):
        return None if self.states is None else list(self.states)

    def restore(self, states):
        self.states = None if states is None else list(states)

    def __repr__(self):
        return "Optimizer({})".format(self.algorithm)
