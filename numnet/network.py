"""Network abstractions: the legacy two-layer network and graph networks.

Both expose deterministic forward evaluation, structural equality,
cloning, crossover and mutation. Crossover and mutation are pure: they
return new networks and never touch their inputs. Weights only change in
place through :meth:`GraphNetwork.apply_parameters`, which the training
loop calls once all gradient computations of a step have joined.
"""
import abc
import dataclasses
import logging
import typing as t

import numpy as np

from . import _utils
from . import activations
from . import backend as _backend
from . import graph as _graph
from . import losses
from . import parallel
from . import tensor
from .exceptions import (
    CrossoverIncompatibilityError,
    DimensionMismatchError,
    InvalidLayerError,
    NetworkBuildError,
)
from .results import DatasetEvaluationResult
from .specs import GraphNodeSpec, LayerSpec, Shape


logger = logging.getLogger(__name__)


def _as_matrix(values: np.ndarray) -> tensor.Tensor:
    if values.ndim == 1:
        return tensor.Tensor(values.reshape(1, -1))

    return tensor.Tensor(values.reshape(values.shape[0], -1))


class NeuralNetworkBase(abc.ABC):
    @property
    @abc.abstractmethod
    def descriptor(self) -> tuple:
        """Hashable description of the network structure (no weights)."""
        raise NotImplementedError

    @property
    @abc.abstractmethod
    def parameters(self) -> t.Tuple[np.ndarray, ...]:
        raise NotImplementedError

    @abc.abstractmethod
    def forward(self, x) -> np.ndarray:
        raise NotImplementedError

    @abc.abstractmethod
    def _with_parameters(self, new_params: t.Sequence[np.ndarray]):
        """New network with this structure and the given weights."""
        raise NotImplementedError

    def __call__(self, x) -> np.ndarray:
        return self.forward(x)

    def is_compatible(self, other) -> bool:
        return (
            isinstance(other, NeuralNetworkBase)
            and type(self) is type(other)
            and self.descriptor == other.descriptor
        )

    def check_compatible(self, other):
        if not self.is_compatible(other):
            raise CrossoverIncompatibilityError(
                "Can't combine {} with {}: the network structures differ.".format(
                    self, other
                )
            )

    def crossover(self, other, rng=None):
        """Child network mixing every weight pair with a two-point crossover."""
        self.check_compatible(other)
        rng = _utils.as_rng(rng)

        new_params = []

        for param_a, param_b in zip(self.parameters, other.parameters):
            child = tensor.two_point_crossover(
                _as_matrix(param_a), _as_matrix(param_b), rng
            )
            new_params.append(child.values.reshape(param_a.shape))

        return self._with_parameters(new_params)

    def mutate(self, probability: float, rng=None):
        rng = _utils.as_rng(rng)

        new_params = [
            tensor.random_mutate(_as_matrix(param), probability, rng).values.reshape(
                param.shape
            )
            for param in self.parameters
        ]

        return self._with_parameters(new_params)

    def clone(self):
        return self._with_parameters(self.parameters)

    @property
    def size(self) -> int:
        return sum(param.size for param in self.parameters)

    @property
    def is_in_numeric_overflow(self) -> bool:
        return not _utils.is_finite(*self.parameters)

    def __eq__(self, other):
        if not isinstance(other, NeuralNetworkBase):
            return NotImplemented

        return self.is_compatible(other) and all(
            np.array_equal(param_a, param_b)
            for param_a, param_b in zip(self.parameters, other.parameters)
        )

    __hash__ = None


class TwoLayerNetwork(NeuralNetworkBase):
    """output = act(act(x . W1 - t1) . W2 - t2)

    Both thresholds default to zero and the activation to the sigmoid.
    """

    def __init__(
        self,
        w1,
        w2,
        z1_threshold: t.Optional[float] = None,
        z2_threshold: t.Optional[float] = None,
        activation: activations.ActivationType = activations.ActivationType.SIGMOID,
        backend: t.Optional[_backend.Backend] = None,
    ):
        self.w1 = w1.copy() if isinstance(w1, tensor.Tensor) else tensor.Tensor(w1)
        self.w2 = w2.copy() if isinstance(w2, tensor.Tensor) else tensor.Tensor(w2)

        if self.w1.cols != self.w2.rows:
            raise InvalidLayerError(
                "W1 has {} hidden units but W2 expects {}.".format(
                    self.w1.cols, self.w2.rows
                )
            )

        self.z1_threshold = z1_threshold
        self.z2_threshold = z2_threshold
        self.activation = activation
        self.function = activations.get_activation(activation)
        self.backend = backend

    @classmethod
    def random(
        cls,
        input_size: int,
        hidden_size: int,
        output_size: int,
        rng=None,
        **kwargs
    ) -> "TwoLayerNetwork":
        if not _utils.all_positive((input_size, hidden_size, output_size)):
            raise InvalidLayerError(
                "Layer sizes must be positive (got {}).".format(
                    (input_size, hidden_size, output_size)
                )
            )

        rng = _utils.as_rng(rng)

        return cls(
            tensor.random_init(input_size, hidden_size, rng),
            tensor.random_init(hidden_size, output_size, rng),
            **kwargs
        )

    @property
    def input_size(self) -> int:
        return self.w1.rows

    @property
    def hidden_size(self) -> int:
        return self.w1.cols

    @property
    def output_size(self) -> int:
        return self.w2.cols

    @property
    def shape(self) -> t.Tuple[int, int, int]:
        return self.input_size, self.hidden_size, self.output_size

    @property
    def descriptor(self):
        return (type(self).__name__,) + self.shape + (self.activation,)

    @property
    def parameters(self):
        return self.w1.values, self.w2.values

    def forward(self, x):
        X = tensor.Tensor(np.atleast_2d(np.asarray(x, dtype=float)))

        if X.cols != self.input_size:
            raise DimensionMismatchError(
                "Expected {} input features (got {}).".format(self.input_size, X.cols)
            )

        hidden = tensor.multiply(X, self.w1, self.backend)
        tensor.apply_activation(
            hidden, self.function.forward, self.z1_threshold, self.backend
        )

        out = tensor.multiply(hidden, self.w2, self.backend)
        tensor.apply_activation(
            out, self.function.forward, self.z2_threshold, self.backend
        )

        return out.values

    def cost(self, x, y) -> float:
        y_preds = self.forward(x)
        cost, _ = losses.QuadraticCost()(np.asarray(y, dtype=float), y_preds)
        return cost

    def _with_parameters(self, new_params):
        w1, w2 = new_params
        return TwoLayerNetwork(
            w1,
            w2,
            z1_threshold=self.z1_threshold,
            z2_threshold=self.z2_threshold,
            activation=self.activation,
            backend=self.backend,
        )

    def __repr__(self):
        return "TwoLayerNetwork(input={}, hidden={}, output={})".format(*self.shape)


class GraphNetwork(NeuralNetworkBase):
    def __init__(
        self,
        computation_graph: _graph.ComputationGraph,
        backend: t.Optional[_backend.Backend] = None,
    ):
        self.graph = computation_graph
        self.backend = backend

    @property
    def input_shape(self) -> Shape:
        return self.graph.input_shape

    @property
    def output_size(self) -> int:
        return self.graph.output_shape.size

    @property
    def descriptor(self):
        return (type(self).__name__,) + self.graph.structure()

    @property
    def parameters(self):
        params = []

        for layer in self.graph.layers:
            params.extend(layer.parameters)

        return tuple(params)

    def _as_batch(self, x) -> np.ndarray:
        X = np.asarray(x, dtype=float)
        input_size = self.input_shape.size

        if X.ndim == 1 or X.shape == tuple(self.input_shape):
            X = X.reshape(1, -1)

        if X.size % input_size or X.size // input_size != X.shape[0]:
            raise DimensionMismatchError(
                "Expected samples of {} features, i.e. shape {} (got {}).".format(
                    input_size, tuple(self.input_shape), X.shape
                )
            )

        return X.reshape(X.shape[0], *self.input_shape)

    def _as_targets(self, y, num_samples: int) -> np.ndarray:
        Y = np.asarray(y, dtype=float)

        if Y.size != num_samples * self.output_size:
            raise DimensionMismatchError(
                "Expected {} targets of size {} (got shape {}).".format(
                    num_samples, self.output_size, Y.shape
                )
            )

        return Y.reshape(num_samples, self.output_size)

    def _forward_train(self, X):
        outputs = {self.graph.input_name: X}
        caches = {}

        for name in self.graph.order:
            node = self.graph.nodes[name]
            inputs = [outputs[parent] for parent in node.parents]
            outputs[name], caches[name] = node.layer.forward_train(*inputs)

        return outputs, caches

    def forward(self, x):
        """Inference pass: dropout is off and batch statistics are frozen."""
        X = self._as_batch(x)
        outputs = {self.graph.input_name: X}

        for name in self.graph.order:
            node = self.graph.nodes[name]
            outputs[name] = node.layer.forward(*[outputs[p] for p in node.parents])

        return outputs[self.graph.output_name].reshape(X.shape[0], -1)

    def cost(self, x, y) -> float:
        y_preds = self.forward(x)
        Y = self._as_targets(y, y_preds.shape[0])
        return self.graph.output_layer.evaluate_cost(y_preds, Y)

    def evaluate(self, x, y) -> DatasetEvaluationResult:
        y_preds = self.forward(x)
        Y = self._as_targets(y, y_preds.shape[0])

        return DatasetEvaluationResult(
            cost=self.graph.output_layer.evaluate_cost(y_preds, Y),
            accuracy=losses.accuracy(Y, y_preds),
        )

    def _backward(self, X, Y):
        outputs, caches = self._forward_train(X)
        output_name = self.graph.output_name
        input_name = self.graph.input_name

        douts = {}
        grads = {}
        cost = None

        for name in reversed(self.graph.order):
            node = self.graph.nodes[name]

            if name == output_name:
                cost, dXs, grads[name] = node.layer.backward_targets(Y, caches[name])

            else:
                dXs, grads[name] = node.layer.backward(douts.pop(name), caches[name])

            for parent, dX in zip(node.parents, dXs):
                if parent == input_name:
                    continue

                if parent in douts:
                    douts[parent] = douts[parent] + dX

                else:
                    douts[parent] = dX

        flat_grads = []

        for name in self.graph.order:
            flat_grads.extend(grads[name])

        return cost, flat_grads

    def backpropagate(
        self, x, y, executor: t.Optional[parallel.ParallelExecutor] = None
    ) -> t.Tuple[float, t.List[np.ndarray]]:
        """Average cost and parameter gradients over a batch.

        The batch is split into contiguous partitions processed in parallel;
        weights are only read. Gradients follow the order of ``parameters``.
        """
        X = self._as_batch(x)
        Y = self._as_targets(y, X.shape[0])
        num_samples = X.shape[0]

        if executor is None:
            executor = _backend.resolve(self.backend).executor

        partitions = parallel.split_range(num_samples, executor.max_workers)

        def unit(k):
            inds = partitions[k]
            part = slice(inds.start, inds.stop)
            weight = len(inds) / num_samples
            cost, grads = self._backward(X[part], Y[part])
            return cost * weight, [grad * weight for grad in grads]

        results = executor.map(unit, len(partitions))

        cost = float(sum(part_cost for part_cost, _ in results))
        grads = [sum(part_grads) for part_grads in zip(*(res[1] for res in results))]

        return cost, grads

    def apply_parameters(self, new_params: t.Sequence[np.ndarray]):
        """Overwrite every weight in place, in the order of ``parameters``."""
        params = self.parameters

        if len(new_params) != len(params):
            raise DimensionMismatchError(
                "Expected {} parameter arrays (got {}).".format(
                    len(params), len(new_params)
                )
            )

        for param, new_param in zip(params, new_params):
            if param.shape != np.shape(new_param):
                raise DimensionMismatchError(
                    "Parameter shape mismatch: {} vs {}.".format(
                        param.shape, np.shape(new_param)
                    )
                )

        for param, new_param in zip(params, new_params):
            np.copyto(param, new_param)

    def _with_parameters(self, new_params):
        child = GraphNetwork(self.graph.copy(), backend=self.backend)
        child.apply_parameters(new_params)
        return child

    def __repr__(self):
        return "GraphNetwork({} node(s), {} -> {})".format(
            len(self.graph), tuple(self.input_shape), self.output_size
        )


@dataclasses.dataclass(frozen=True)
class BuildResult:
    network: t.Optional[GraphNetwork] = None
    error: t.Optional[NetworkBuildError] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def unwrap(self) -> GraphNetwork:
        if self.error is not None:
            raise self.error

        return self.network


def build_graph(
    input_shape: t.Union[int, t.Sequence[int], Shape],
    node_specs: t.Sequence[GraphNodeSpec],
    rng=None,
    backend: t.Optional[_backend.Backend] = None,
) -> GraphNetwork:
    computation_graph = _graph.compile_graph(input_shape, node_specs, rng, backend)
    return GraphNetwork(computation_graph, backend=backend)


def build_network(
    input_shape: t.Union[int, t.Sequence[int], Shape],
    layer_specs: t.Sequence[LayerSpec],
    rng=None,
    backend: t.Optional[_backend.Backend] = None,
) -> GraphNetwork:
    """Build a sequential network from an ordered list of layer specs."""
    return build_graph(
        input_shape, _graph.sequential_specs(layer_specs), rng=rng, backend=backend
    )


def try_build_graph(*args, **kwargs) -> BuildResult:
    try:
        return BuildResult(network=build_graph(*args, **kwargs))

    except NetworkBuildError as err:
        logger.debug("Graph build failed: %s", err)
        return BuildResult(error=err)


def try_build_network(*args, **kwargs) -> BuildResult:
    try:
        return BuildResult(network=build_network(*args, **kwargs))

    except NetworkBuildError as err:
        logger.debug("Network build failed: %s", err)
        return BuildResult(error=err)
