"""Trainable and fixed computation nodes of a graph network.

Every node works on batches shaped ``(n, channels, height, width)``.
``forward_train`` returns the output together with whatever ``backward``
needs later, instead of stashing it on the instance, so a single network
can run forward/backward passes over several batch partitions at once.
"""
import copy
import threading
import typing as t

import numpy as np
import scipy.special

from . import _utils
from . import activations
from . import backend as _backend
from . import convolution
from . import losses
from .specs import NormalizationMode, Shape


_RUNNING_STATS_LOCK = threading.Lock()


class BaseLayer:
    trainable = False

    def __init__(self, input_shape: Shape, output_shape: Shape):
        self.input_shape = Shape.of(input_shape)
        self.output_shape = Shape.of(output_shape)
        self.parameters = tuple()  # type: t.Tuple[np.ndarray, ...]

    def forward_train(self, *inputs):
        raise NotImplementedError

    def forward(self, *inputs):
        out, _ = self.forward_train(*inputs)
        return out

    def __call__(self, *inputs):
        return self.forward(*inputs)

    def backward(self, dout, cache):
        """Return (input gradients, parameter gradients)."""
        raise NotImplementedError

    def structure(self) -> tuple:
        return (type(self).__name__, self.input_shape, self.output_shape)

    def set_parameters(self, new_params: t.Sequence[np.ndarray]):
        assert len(new_params) == len(self.parameters)

        for param, new_param in zip(self.parameters, new_params):
            assert param.shape == new_param.shape, (param.shape, new_param.shape)
            np.copyto(param, new_param)

    def copy(self):
        memo = {}

        backend = getattr(self, "backend", None)

        if backend is not None:
            memo[id(backend)] = backend

        return copy.deepcopy(self, memo)

    @property
    def size(self) -> int:
        return sum(param.size for param in self.parameters)

    def __repr__(self):
        return "{}({} -> {})".format(
            type(self).__name__, tuple(self.input_shape), tuple(self.output_shape)
        )


def _init_weights(shape, fan_in, fan_out, rule, rng):
    std = _utils.get_weight_init_dist_params(rule, "normal", fan_in, fan_out)
    return rng.normal(0.0, std, shape)


def _default_init_rule(kind: activations.ActivationType) -> str:
    # 'he' suits rectifiers, 'xavier' suits saturating activations.
    if kind in {
        activations.ActivationType.RELU,
        activations.ActivationType.LEAKY_RELU,
        activations.ActivationType.ABSOLUTE_RELU,
        activations.ActivationType.ELU,
    }:
        return "he"

    return "xavier"


class FullyConnected(BaseLayer):
    trainable = True

    def __init__(
        self,
        input_shape: Shape,
        size: int,
        activation: activations.ActivationType = activations.ActivationType.SIGMOID,
        weights_init: t.Optional[str] = None,
        rng: t.Optional[np.random.Generator] = None,
        backend: t.Optional[_backend.Backend] = None,
    ):
        assert int(size) > 0

        super(FullyConnected, self).__init__(input_shape, Shape(int(size), 1, 1))

        rng = _utils.as_rng(rng)
        rule = weights_init or _default_init_rule(activation)
        dim_in = self.input_shape.size

        self.activation = activation
        self.function = activations.get_activation(activation)
        self.backend = backend

        self.weights = _init_weights((dim_in, int(size)), dim_in, int(size), rule, rng)
        self.bias = np.zeros(int(size), dtype=float)

        self.parameters = (self.weights, self.bias)

    def _activate(self, Z):
        return self.function.forward(Z)

    def forward_train(self, X):
        X_flat = X.reshape(X.shape[0], -1)
        Z = _backend.resolve(self.backend).matmul(X_flat, self.weights) + self.bias
        A = self._activate(Z)
        out = A.reshape(X.shape[0], *self.output_shape)
        return out, (X_flat, Z, A)

    def _backward_from_dZ(self, dZ, X_flat):
        matmul = _backend.resolve(self.backend).matmul

        dW = matmul(X_flat.T, dZ)
        db = np.sum(dZ, axis=0)
        dX = matmul(dZ, self.weights.T).reshape(X_flat.shape[0], *self.input_shape)

        return (dX,), (dW, db)

    def backward(self, dout, cache):
        X_flat, Z, _ = cache
        dZ = dout.reshape(Z.shape) * self.function.prime(Z)
        return self._backward_from_dZ(dZ, X_flat)

    def structure(self):
        return super(FullyConnected, self).structure() + (self.activation,)


class Output(FullyConnected):
    """Fully connected terminal layer bound to a cost function."""

    def __init__(
        self,
        input_shape: Shape,
        size: int,
        activation: activations.ActivationType = activations.ActivationType.SIGMOID,
        cost: losses.CostFunctionType = losses.CostFunctionType.QUADRATIC,
        **kwargs
    ):
        super(Output, self).__init__(input_shape, size, activation, **kwargs)
        self.cost_kind = cost
        self.cost = losses.get_cost(cost)

    def evaluate_cost(self, y_preds, y) -> float:
        cost, _ = self.cost(y, y_preds.reshape(y_preds.shape[0], -1))
        return cost

    def backward_targets(self, y, cache):
        """Return (cost, input gradients, parameter gradients) for targets ``y``."""
        X_flat, Z, A = cache
        cost, _ = self.cost(y, A)
        dZ = self.cost.delta(Z, A, y, self.function.prime)
        dXs, grads = self._backward_from_dZ(dZ, X_flat)
        return cost, dXs, grads

    def structure(self):
        return super(Output, self).structure() + (self.cost_kind,)


class Softmax(Output):
    def __init__(self, input_shape: Shape, size: int, **kwargs):
        kwargs.setdefault("weights_init", "xavier_norm")
        super(Softmax, self).__init__(
            input_shape,
            size,
            activation=activations.ActivationType.IDENTITY,
            cost=losses.CostFunctionType.LOG_LIKELIHOOD,
            **kwargs
        )

    def _activate(self, Z):
        return scipy.special.softmax(Z, axis=1)


class Convolutional(BaseLayer):
    trainable = True

    def __init__(
        self,
        input_shape: Shape,
        kernels: int,
        kernel_size: t.Tuple[int, int] = (3, 3),
        activation: activations.ActivationType = activations.ActivationType.RELU,
        weights_init: t.Optional[str] = None,
        rng: t.Optional[np.random.Generator] = None,
        backend: t.Optional[_backend.Backend] = None,
    ):
        assert int(kernels) > 0
        assert _utils.all_positive(kernel_size)

        input_shape = Shape.of(input_shape)
        k_height, k_width = _utils.replicate(kernel_size, 2)

        super(Convolutional, self).__init__(
            input_shape,
            Shape(
                int(kernels),
                input_shape.height - k_height + 1,
                input_shape.width - k_width + 1,
            ),
        )

        rng = _utils.as_rng(rng)
        rule = weights_init or _default_init_rule(activation)
        fan_in = input_shape.channels * k_height * k_width
        fan_out = int(kernels) * k_height * k_width

        self.kernel_size = (k_height, k_width)
        self.activation = activation
        self.function = activations.get_activation(activation)
        self.backend = backend

        self.weights = _init_weights(
            (int(kernels), input_shape.channels, k_height, k_width),
            fan_in,
            fan_out,
            rule,
            rng,
        )
        self.bias = np.zeros(int(kernels), dtype=float)

        self.parameters = (self.weights, self.bias)

    def forward_train(self, X):
        convolve = _backend.resolve(self.backend).convolve
        Z = convolve(X, self.weights) + self.bias[np.newaxis, :, np.newaxis, np.newaxis]
        A = self.function.forward(Z)
        return A, (X, Z)

    def backward(self, dout, cache):
        X, Z = cache
        convolve = _backend.resolve(self.backend).convolve
        k_height, k_width = self.kernel_size

        dZ = dout * self.function.prime(Z)
        db = np.sum(dZ, axis=(0, 2, 3))

        # dW[k, c] is the flipped cross-correlation of X[:, c] with dZ[:, k],
        # summed over the batch.
        dW = convolve(
            X.transpose(1, 0, 2, 3), dZ.transpose(1, 0, 2, 3)[:, :, ::-1, ::-1]
        )
        dW = dW.transpose(1, 0, 2, 3)[:, :, ::-1, ::-1]

        dZ_padded = np.pad(
            dZ,
            ((0, 0), (0, 0), (k_height - 1, k_height - 1), (k_width - 1, k_width - 1)),
        )
        dX = convolve(dZ_padded, self.weights.transpose(1, 0, 2, 3)[:, :, ::-1, ::-1])

        return (dX,), (dW, db)

    def structure(self):
        return super(Convolutional, self).structure() + (
            self.kernel_size,
            self.activation,
        )


class Pooling(BaseLayer):
    def __init__(self, input_shape: Shape):
        input_shape = Shape.of(input_shape)
        self._pool = convolution.Pool()

        _, height, width = self._pool.output_shape(tuple(input_shape))

        super(Pooling, self).__init__(
            input_shape, Shape(input_shape.channels, height, width)
        )

    def forward_train(self, X):
        volume = convolution.Volume(X.reshape(-1, *X.shape[2:]))
        out = self._pool.forward(volume).values
        return out.reshape(X.shape[0], *self.output_shape), (volume,)

    def backward(self, dout, cache):
        (volume,) = cache
        dvolume = convolution.Volume(dout.reshape(-1, *dout.shape[2:]))
        dX = self._pool.backward(volume, dvolume).values
        return (dX.reshape(dout.shape[0], *self.input_shape),), tuple()


class Activation(BaseLayer):
    def __init__(self, input_shape: Shape, activation: activations.ActivationType):
        super(Activation, self).__init__(input_shape, input_shape)
        self.activation = activation
        self.function = activations.get_activation(activation)

    def forward_train(self, X):
        return self.function.forward(X), (X,)

    def backward(self, dout, cache):
        (X,) = cache
        return (self.function.prime(X) * dout,), tuple()

    def structure(self):
        return super(Activation, self).structure() + (self.activation,)


class BatchNormalization(BaseLayer):
    """Normalize with batch statistics, then scale by gamma and shift by beta.

    Training passes use the statistics of the batch at hand and fold them
    into a cumulative moving average. Inference passes use that average.
    """

    trainable = True
    eps = 1e-5

    def __init__(
        self,
        input_shape: Shape,
        mode: NormalizationMode = NormalizationMode.SPATIAL,
        activation: activations.ActivationType = activations.ActivationType.IDENTITY,
    ):
        super(BatchNormalization, self).__init__(input_shape, input_shape)

        self.mode = NormalizationMode(mode)
        self.activation = activation
        self.function = activations.get_activation(activation)

        if self.mode == NormalizationMode.SPATIAL:
            stats_shape = (self.input_shape.channels, 1, 1)
            self._axis = (0, 2, 3)

        else:
            stats_shape = tuple(self.input_shape)
            self._axis = (0,)

        self.gamma = np.ones(stats_shape, dtype=float)
        self.beta = np.zeros(stats_shape, dtype=float)

        self.running_mean = np.zeros(stats_shape, dtype=float)
        self.running_var = np.ones(stats_shape, dtype=float)
        self.iteration = 0

        self.parameters = (self.gamma, self.beta)

    def _update_running_stats(self, mean, var):
        with _RUNNING_STATS_LOCK:
            factor = 1.0 / (1.0 + self.iteration)
            self.running_mean *= 1.0 - factor
            self.running_mean += factor * mean
            self.running_var *= 1.0 - factor
            self.running_var += factor * var
            self.iteration += 1

    def forward_train(self, X):
        mean = np.mean(X, axis=self._axis, keepdims=True)[0]
        var = np.var(X, axis=self._axis, keepdims=True)[0]

        self._update_running_stats(mean, var)

        inv_std = 1.0 / np.sqrt(var + self.eps)
        X_hat = (X - mean) * inv_std
        Z = self.gamma * X_hat + self.beta

        return self.function.forward(Z), (X_hat, inv_std, Z)

    def forward(self, X):
        X_hat = (X - self.running_mean) / np.sqrt(self.running_var + self.eps)
        return self.function.forward(self.gamma * X_hat + self.beta)

    def backward(self, dout, cache):
        X_hat, inv_std, Z = cache
        dZ = dout * self.function.prime(Z)

        dgamma = np.sum(dZ * X_hat, axis=self._axis, keepdims=True)[0]
        dbeta = np.sum(dZ, axis=self._axis, keepdims=True)[0]

        dX_hat = dZ * self.gamma
        dX = inv_std * (
            dX_hat
            - np.mean(dX_hat, axis=self._axis, keepdims=True)
            - X_hat * np.mean(dX_hat * X_hat, axis=self._axis, keepdims=True)
        )

        return (dX,), (dgamma, dbeta)

    def structure(self):
        return super(BatchNormalization, self).structure() + (
            self.mode,
            self.activation,
        )


class Dropout(BaseLayer):
    """Inverted dropout: kept units are scaled by 1 / keep_prob while training.

    Inference passes are the identity.
    """

    def __init__(
        self,
        input_shape: Shape,
        drop_prob: float = 0.4,
        rng: t.Optional[t.Union[int, np.random.Generator]] = None,
    ):
        assert 1.0 > float(drop_prob) >= 0.0

        super(Dropout, self).__init__(input_shape, input_shape)

        self.drop_prob = float(drop_prob)
        self.keep_prob = 1.0 - self.drop_prob
        self.rng = _utils.as_rng(rng)

    def forward_train(self, X):
        mask = (self.rng.random(X.shape) >= self.drop_prob) / self.keep_prob
        return X * mask, (mask,)

    def forward(self, X):
        return X

    def backward(self, dout, cache):
        (mask,) = cache
        return (dout * mask,), tuple()

    def structure(self):
        return super(Dropout, self).structure() + (self.drop_prob,)


class Sum(BaseLayer):
    def __init__(self, input_shapes: t.Sequence[Shape]):
        assert len(input_shapes) >= 2
        super(Sum, self).__init__(input_shapes[0], input_shapes[0])
        self.num_inputs = len(input_shapes)

    def forward_train(self, *inputs):
        return np.sum(inputs, axis=0), None

    def backward(self, dout, cache):
        return tuple(dout for _ in range(self.num_inputs)), tuple()


class DepthConcatenation(BaseLayer):
    def __init__(self, input_shapes: t.Sequence[Shape]):
        assert len(input_shapes) >= 2

        channels = [shape.channels for shape in input_shapes]
        first = input_shapes[0]

        super(DepthConcatenation, self).__init__(
            first, Shape(sum(channels), first.height, first.width)
        )

        self.split_points = tuple(np.cumsum(channels)[:-1])
        self.input_channels = tuple(channels)

    def forward_train(self, *inputs):
        return np.concatenate(inputs, axis=1), None

    def backward(self, dout, cache):
        return tuple(np.split(dout, self.split_points, axis=1)), tuple()

    def structure(self):
        return super(DepthConcatenation, self).structure() + (self.input_channels,)
