import enum
import typing as t

import numpy as np
import scipy.special


class ActivationType(enum.Enum):
    SIGMOID = "sigmoid"
    TANH = "tanh"
    LECUN_TANH = "lecun_tanh"
    RELU = "relu"
    LEAKY_RELU = "leaky_relu"
    ABSOLUTE_RELU = "absolute_relu"
    SOFTPLUS = "softplus"
    ELU = "elu"
    IDENTITY = "identity"


class ActivationFunction(t.NamedTuple):
    """An activation and its derivative, both taking the pre-activation."""

    forward: t.Callable[[np.ndarray], np.ndarray]
    prime: t.Callable[[np.ndarray], np.ndarray]


LEAKY_RELU_SLOPE = 0.01
LECUN_SCALE = 1.7159
LECUN_FACTOR = 2.0 / 3.0


def sigmoid(X):
    return scipy.special.expit(X)


def sigmoid_prime(X):
    sig_X = scipy.special.expit(X)
    return sig_X * (1.0 - sig_X)


def tanh_prime(X):
    return 1.0 - np.square(np.tanh(X))


def lecun_tanh(X):
    return LECUN_SCALE * np.tanh(LECUN_FACTOR * X)


def lecun_tanh_prime(X):
    return LECUN_SCALE * LECUN_FACTOR * (1.0 - np.square(np.tanh(LECUN_FACTOR * X)))


def relu(X):
    return np.maximum(X, 0.0)


def relu_prime(X):
    return (X > 0.0).astype(float)


def leaky_relu(X):
    return np.where(X > 0.0, X, LEAKY_RELU_SLOPE * X)


def leaky_relu_prime(X):
    return np.where(X > 0.0, 1.0, LEAKY_RELU_SLOPE)


def absolute_relu_prime(X):
    return np.where(X >= 0.0, 1.0, -1.0)


def softplus(X):
    return np.logaddexp(0.0, X)


def elu(X):
    return np.where(X > 0.0, X, np.expm1(np.minimum(X, 0.0)))


def elu_prime(X):
    return np.where(X > 0.0, 1.0, np.exp(np.minimum(X, 0.0)))


def identity(X):
    return np.array(X, dtype=float)


def identity_prime(X):
    return np.ones_like(X, dtype=float)


_ACTIVATIONS = {
    ActivationType.SIGMOID: ActivationFunction(sigmoid, sigmoid_prime),
    ActivationType.TANH: ActivationFunction(np.tanh, tanh_prime),
    ActivationType.LECUN_TANH: ActivationFunction(lecun_tanh, lecun_tanh_prime),
    ActivationType.RELU: ActivationFunction(relu, relu_prime),
    ActivationType.LEAKY_RELU: ActivationFunction(leaky_relu, leaky_relu_prime),
    ActivationType.ABSOLUTE_RELU: ActivationFunction(np.abs, absolute_relu_prime),
    # NOTE: d/dx log(1 + e^x) is the logistic function.
    ActivationType.SOFTPLUS: ActivationFunction(softplus, sigmoid),
    ActivationType.ELU: ActivationFunction(elu, elu_prime),
    ActivationType.IDENTITY: ActivationFunction(identity, identity_prime),
}


def get_activation(kind: t.Union[ActivationType, str]) -> ActivationFunction:
    if isinstance(kind, str):
        try:
            kind = ActivationType(kind.lower())

        except ValueError as err:
            raise ValueError(
                "Unknown activation '{}' (expected one of {}).".format(
                    kind, [act.value for act in ActivationType]
                )
            ) from err

    return _ACTIVATIONS[kind]
