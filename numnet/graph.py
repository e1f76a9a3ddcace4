"""Computation graph assembly and validation.

:func:`compile_graph` turns a list of :class:`GraphNodeSpec` into a
:class:`ComputationGraph` whose nodes are sorted in dependency order. Every
structural problem is reported before any layer is used:

* :class:`InvalidLayerError` for an inconsistent layer specification;
* :class:`GraphTopologyError` for duplicate names, unknown parents, cycles,
  orphaned branches, a missing or repeated input/output node and merge
  nodes fed with incompatible shapes.
"""
import collections
import logging
import typing as t

import numpy as np

from . import _utils
from . import layers
from .activations import ActivationType
from .backend import Backend
from .exceptions import GraphTopologyError, InvalidLayerError
from .losses import CostFunctionType
from .specs import GraphNodeSpec, LayerKind, LayerSpec, MergeKind, Shape


logger = logging.getLogger(__name__)


class GraphNode(t.NamedTuple):
    name: str
    layer: t.Optional[layers.BaseLayer]
    parents: t.Tuple[str, ...]

    @property
    def output_shape(self) -> Shape:
        return self.layer.output_shape


class ComputationGraph:
    def __init__(
        self,
        input_shape: Shape,
        nodes: t.Sequence[GraphNode],
        input_name: str,
        output_name: str,
    ):
        self.input_shape = Shape.of(input_shape)
        self.nodes = collections.OrderedDict((node.name, node) for node in nodes)
        self.input_name = input_name
        self.output_name = output_name

        self.children = collections.defaultdict(list)

        for node in nodes:
            for parent in node.parents:
                self.children[parent].append(node.name)

    @property
    def order(self) -> t.List[str]:
        return [name for name in self.nodes if name != self.input_name]

    @property
    def output_layer(self) -> layers.Output:
        return self.nodes[self.output_name].layer

    @property
    def layers(self) -> t.List[layers.BaseLayer]:
        return [self.nodes[name].layer for name in self.order]

    @property
    def output_shape(self) -> Shape:
        return self.output_layer.output_shape

    def structure(self) -> tuple:
        return (tuple(self.input_shape),) + tuple(
            (name, self.nodes[name].parents, self.nodes[name].layer.structure())
            for name in self.order
        )

    def copy(self) -> "ComputationGraph":
        nodes = [self.nodes[self.input_name]]
        nodes.extend(
            GraphNode(name, self.nodes[name].layer.copy(), self.nodes[name].parents)
            for name in self.order
        )
        return ComputationGraph(
            self.input_shape, nodes, self.input_name, self.output_name
        )

    def __len__(self):
        return len(self.nodes) - 1


def _check_layer_spec(name: str, spec: LayerSpec, input_shape: Shape):
    kind = spec.kind

    if kind in {
        LayerKind.FULLY_CONNECTED,
        LayerKind.CONVOLUTIONAL,
        LayerKind.OUTPUT,
        LayerKind.SOFTMAX,
    }:
        if spec.size is None or int(spec.size) <= 0:
            raise InvalidLayerError(
                "'size' must be a positive integer (got {}).".format(spec.size), name
            )

    if kind == LayerKind.CONVOLUTIONAL:
        if len(spec.kernel_size) != 2 or not _utils.all_positive(spec.kernel_size):
            raise InvalidLayerError(
                "Invalid kernel size {}.".format(spec.kernel_size), name
            )

        k_height, k_width = spec.kernel_size

        if k_height >= input_shape.height or k_width >= input_shape.width:
            raise InvalidLayerError(
                "Kernel of size {}x{} must be strictly smaller than the {}x{} "
                "input.".format(
                    k_height, k_width, input_shape.height, input_shape.width
                ),
                name,
            )

    if kind == LayerKind.BATCH_NORMALIZATION and spec.normalization is None:
        raise InvalidLayerError(
            "Batch normalization needs a normalization mode.", name
        )

    if kind == LayerKind.DROPOUT:
        if spec.drop_prob is None or not 0.0 <= float(spec.drop_prob) < 1.0:
            raise InvalidLayerError(
                "'drop_prob' must be in [0, 1) (got {}).".format(spec.drop_prob), name
            )

    if kind == LayerKind.POOLING:
        if input_shape.height % 2 or input_shape.width % 2:
            raise InvalidLayerError(
                "Pooling requires even spatial dimensions (got {}x{}).".format(
                    input_shape.height, input_shape.width
                ),
                name,
            )

    if kind == LayerKind.OUTPUT:
        if spec.cost is None:
            raise InvalidLayerError("An output layer needs a cost function.", name)

        if spec.cost == CostFunctionType.LOG_LIKELIHOOD:
            raise InvalidLayerError(
                "The log-likelihood cost requires a softmax output layer.", name
            )

        if (
            spec.cost == CostFunctionType.CROSS_ENTROPY
            and spec.activation != ActivationType.SIGMOID
        ):
            raise InvalidLayerError(
                "The cross-entropy cost requires a sigmoid output activation.", name
            )

    elif kind != LayerKind.SOFTMAX and spec.cost is not None:
        raise InvalidLayerError("Only output layers take a cost function.", name)


def _make_layer(
    name: str,
    spec: LayerSpec,
    input_shape: Shape,
    rng: np.random.Generator,
    backend: t.Optional[Backend],
) -> layers.BaseLayer:
    _check_layer_spec(name, spec, input_shape)

    kind = spec.kind
    common = dict(weights_init=spec.weights_init, rng=rng, backend=backend)

    if kind == LayerKind.FULLY_CONNECTED:
        return layers.FullyConnected(input_shape, spec.size, spec.activation, **common)

    if kind == LayerKind.CONVOLUTIONAL:
        return layers.Convolutional(
            input_shape, spec.size, spec.kernel_size, spec.activation, **common
        )

    if kind == LayerKind.POOLING:
        return layers.Pooling(input_shape)

    if kind == LayerKind.ACTIVATION:
        return layers.Activation(input_shape, spec.activation)

    if kind == LayerKind.BATCH_NORMALIZATION:
        return layers.BatchNormalization(
            input_shape, spec.normalization, spec.activation
        )

    if kind == LayerKind.DROPOUT:
        return layers.Dropout(
            input_shape, spec.drop_prob, rng=int(rng.integers(0, 2 ** 31 - 1))
        )

    if kind == LayerKind.OUTPUT:
        return layers.Output(
            input_shape, spec.size, spec.activation, cost=spec.cost, **common
        )

    if kind == LayerKind.SOFTMAX:
        if spec.weights_init is None:
            common.pop("weights_init")

        return layers.Softmax(input_shape, spec.size, **common)

    raise InvalidLayerError("Unknown layer kind {}.".format(kind), name)


def _make_merge(name: str, kind: MergeKind, shapes: t.List[Shape]):
    if kind == MergeKind.SUM:
        if len(set(shapes)) != 1:
            raise GraphTopologyError(
                "Sum inputs must share the same shape (got {}).".format(
                    [tuple(shape) for shape in shapes]
                ),
                name,
            )

        return layers.Sum(shapes)

    if kind == MergeKind.DEPTH_CONCATENATION:
        if len({(shape.height, shape.width) for shape in shapes}) != 1:
            raise GraphTopologyError(
                "Depth concatenation inputs must share the same spatial size "
                "(got {}).".format([tuple(shape) for shape in shapes]),
                name,
            )

        return layers.DepthConcatenation(shapes)

    raise GraphTopologyError("Unknown merge kind {}.".format(kind), name)


def _check_topology(specs: t.Sequence[GraphNodeSpec]):
    names = [spec.name for spec in specs]
    counts = collections.Counter(names)
    duplicates = sorted(name for name, count in counts.items() if count > 1)

    if duplicates:
        raise GraphTopologyError(
            "Duplicate node name(s): {}.".format(", ".join(duplicates))
        )

    inputs = [spec.name for spec in specs if spec.is_input]

    if len(inputs) != 1:
        raise GraphTopologyError(
            "A graph needs exactly one input node (got {}).".format(len(inputs))
        )

    for spec in specs:
        if spec.is_input and spec.parents:
            raise GraphTopologyError("The input node can't have parents.", spec.name)

        if not spec.is_input and not isinstance(spec.layer, (LayerSpec, MergeKind)):
            raise InvalidLayerError(
                "Expected a LayerSpec or a MergeKind (got {}).".format(
                    type(spec.layer).__name__
                ),
                spec.name,
            )

        if not spec.is_input and not spec.parents:
            raise GraphTopologyError("Node has no parents.", spec.name)

        if isinstance(spec.layer, LayerSpec) and len(spec.parents) != 1:
            raise GraphTopologyError(
                "Layer nodes take exactly one parent (got {}).".format(
                    len(spec.parents)
                ),
                spec.name,
            )

        if isinstance(spec.layer, MergeKind) and len(spec.parents) < 2:
            raise GraphTopologyError("Merge nodes need two or more parents.", spec.name)

        for parent in spec.parents:
            if parent not in counts:
                raise GraphTopologyError(
                    "Unknown parent node '{}'.".format(parent), spec.name
                )

        if len(set(spec.parents)) != len(spec.parents):
            raise GraphTopologyError("Repeated parent node.", spec.name)

    return inputs[0]


def _topological_sort(specs: t.Sequence[GraphNodeSpec]) -> t.List[GraphNodeSpec]:
    """Kahn's algorithm; ties keep the declaration order."""
    by_name = collections.OrderedDict((spec.name, spec) for spec in specs)
    pending = {spec.name: len(spec.parents) for spec in specs}
    children = collections.defaultdict(list)

    for spec in specs:
        for parent in spec.parents:
            children[parent].append(spec.name)

    ready = collections.deque(name for name in by_name if pending[name] == 0)
    ordered = []

    while ready:
        name = ready.popleft()
        ordered.append(by_name[name])

        for child in children[name]:
            pending[child] -= 1

            if pending[child] == 0:
                ready.append(child)

    if len(ordered) != len(specs):
        stuck = sorted(name for name, count in pending.items() if count > 0)
        raise GraphTopologyError(
            "Cycle detected among node(s): {}.".format(", ".join(stuck))
        )

    return ordered


def compile_graph(
    input_shape: t.Union[int, t.Sequence[int], Shape],
    specs: t.Sequence[GraphNodeSpec],
    rng: t.Optional[t.Union[int, np.random.Generator]] = None,
    backend: t.Optional[Backend] = None,
) -> ComputationGraph:
    input_shape = Shape.of(input_shape)

    if not _utils.all_positive(tuple(input_shape)):
        raise InvalidLayerError(
            "Input dimensions must be positive (got {}).".format(tuple(input_shape))
        )

    if not specs:
        raise GraphTopologyError("A graph needs at least one node.")

    rng = _utils.as_rng(rng)
    input_name = _check_topology(specs)
    ordered = _topological_sort(specs)

    children = collections.Counter(
        parent for spec in specs for parent in spec.parents
    )
    sinks = [spec for spec in ordered if children[spec.name] == 0]

    if len(sinks) != 1:
        raise GraphTopologyError(
            "A graph needs exactly one output node; orphaned branch(es) end at "
            "{}.".format(", ".join(spec.name for spec in sinks))
        )

    (output_spec,) = sinks

    for spec in ordered:
        is_terminal = isinstance(spec.layer, LayerSpec) and spec.layer.is_terminal

        if is_terminal and spec is not output_spec:
            raise InvalidLayerError(
                "Output layers can only be used as the last node.", spec.name
            )

        if spec is output_spec and not is_terminal:
            raise InvalidLayerError(
                "The last node must be an output or softmax layer.", spec.name
            )

    shapes = {input_name: input_shape}
    nodes = [GraphNode(input_name, None, tuple())]

    for spec in ordered:
        if spec.is_input:
            continue

        parent_shapes = [shapes[parent] for parent in spec.parents]

        if isinstance(spec.layer, MergeKind):
            layer = _make_merge(spec.name, spec.layer, parent_shapes)

        else:
            layer = _make_layer(spec.name, spec.layer, parent_shapes[0], rng, backend)

        shapes[spec.name] = layer.output_shape
        nodes.append(GraphNode(spec.name, layer, spec.parents))

    logger.debug(
        "Compiled graph with %d node(s): %s -> %s.",
        len(nodes) - 1,
        tuple(input_shape),
        tuple(shapes[output_spec.name]),
    )

    return ComputationGraph(input_shape, nodes, input_name, output_spec.name)


def sequential_specs(layer_specs: t.Sequence[LayerSpec]) -> t.List[GraphNodeSpec]:
    """Chain layer specs into graph nodes named 'layer_0', 'layer_1', ..."""
    specs = [GraphNodeSpec("input", None)]
    parent = "input"

    for i, layer_spec in enumerate(layer_specs):
        name = "layer_{}".format(i)

        if not isinstance(layer_spec, LayerSpec):
            raise InvalidLayerError(
                "Expected a LayerSpec (got {}).".format(type(layer_spec).__name__),
                name,
            )

        specs.append(GraphNodeSpec(name, layer_spec, (parent,)))
        parent = name

    return specs
