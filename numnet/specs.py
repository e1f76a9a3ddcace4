"""Declarative layer and graph-node specifications.

Specs only describe a network; nothing is validated until they are handed
to :func:`numnet.network.build_network` or
:func:`numnet.network.build_graph`.
"""
import dataclasses
import enum
import typing as t

from .activations import ActivationType
from .losses import CostFunctionType


class Shape(t.NamedTuple):
    """Output shape of a node as (channels, height, width).

    A flat layer with ``n`` units has shape ``(n, 1, 1)``.
    """

    channels: int
    height: int = 1
    width: int = 1

    @property
    def size(self) -> int:
        return self.channels * self.height * self.width

    @property
    def is_flat(self) -> bool:
        return self.height == 1 and self.width == 1

    @classmethod
    def of(cls, shape: t.Union[int, t.Sequence[int], "Shape"]) -> "Shape":
        if isinstance(shape, Shape):
            return shape

        if isinstance(shape, int):
            return cls(shape, 1, 1)

        return cls(*(int(dim) for dim in shape))


class LayerKind(enum.Enum):
    FULLY_CONNECTED = "fully_connected"
    CONVOLUTIONAL = "convolutional"
    POOLING = "pooling"
    ACTIVATION = "activation"
    OUTPUT = "output"
    SOFTMAX = "softmax"
    BATCH_NORMALIZATION = "batch_normalization"
    DROPOUT = "dropout"


class NormalizationMode(enum.Enum):
    """Which activations share their batch statistics."""

    SPATIAL = "spatial"  # one mean/variance per channel
    PER_ACTIVATION = "per_activation"  # one mean/variance per unit


class MergeKind(enum.Enum):
    SUM = "sum"
    DEPTH_CONCATENATION = "depth_concatenation"


@dataclasses.dataclass(frozen=True)
class LayerSpec:
    kind: LayerKind
    size: t.Optional[int] = None
    activation: ActivationType = ActivationType.SIGMOID
    kernel_size: t.Tuple[int, int] = (3, 3)
    cost: t.Optional[CostFunctionType] = None
    weights_init: t.Optional[str] = None
    normalization: t.Optional[NormalizationMode] = None
    drop_prob: t.Optional[float] = None

    @property
    def is_terminal(self) -> bool:
        return self.kind in {LayerKind.OUTPUT, LayerKind.SOFTMAX}


def fully_connected(
    size: int, activation: ActivationType = ActivationType.SIGMOID, **kwargs
) -> LayerSpec:
    return LayerSpec(LayerKind.FULLY_CONNECTED, size, activation, **kwargs)


def convolutional(
    kernels: int,
    kernel_size: t.Union[int, t.Tuple[int, int]] = 3,
    activation: ActivationType = ActivationType.RELU,
    **kwargs
) -> LayerSpec:
    if isinstance(kernel_size, int):
        kernel_size = (kernel_size, kernel_size)

    return LayerSpec(
        LayerKind.CONVOLUTIONAL,
        kernels,
        activation,
        kernel_size=tuple(kernel_size),
        **kwargs
    )


def pooling() -> LayerSpec:
    return LayerSpec(LayerKind.POOLING, activation=ActivationType.IDENTITY)


def activation(kind: ActivationType) -> LayerSpec:
    return LayerSpec(LayerKind.ACTIVATION, activation=kind)


def batch_normalization(
    mode: NormalizationMode = NormalizationMode.SPATIAL,
    activation: ActivationType = ActivationType.IDENTITY,
) -> LayerSpec:
    return LayerSpec(
        LayerKind.BATCH_NORMALIZATION, activation=activation, normalization=mode
    )


def dropout(drop_prob: float = 0.4) -> LayerSpec:
    return LayerSpec(
        LayerKind.DROPOUT, activation=ActivationType.IDENTITY, drop_prob=drop_prob
    )


def output(
    size: int,
    activation: ActivationType = ActivationType.SIGMOID,
    cost: CostFunctionType = CostFunctionType.QUADRATIC,
    **kwargs
) -> LayerSpec:
    return LayerSpec(LayerKind.OUTPUT, size, activation, cost=cost, **kwargs)


def softmax(size: int, **kwargs) -> LayerSpec:
    return LayerSpec(
        LayerKind.SOFTMAX,
        size,
        ActivationType.IDENTITY,
        cost=CostFunctionType.LOG_LIKELIHOOD,
        **kwargs
    )


@dataclasses.dataclass(frozen=True)
class GraphNodeSpec:
    """One node of a computation graph.

    ``layer`` is a LayerSpec, a MergeKind for nodes joining several
    branches, or None for the single input placeholder.
    """

    name: str
    layer: t.Union[LayerSpec, MergeKind, None]
    parents: t.Tuple[str, ...] = ()

    @property
    def is_input(self) -> bool:
        return self.layer is None


def input_node(name: str = "input") -> GraphNodeSpec:
    return GraphNodeSpec(name, None)


def node(name: str, layer: LayerSpec, parent: str) -> GraphNodeSpec:
    return GraphNodeSpec(name, layer, (parent,))


def sum_node(name: str, *parents: str) -> GraphNodeSpec:
    return GraphNodeSpec(name, MergeKind.SUM, tuple(parents))


def depth_concatenation(name: str, *parents: str) -> GraphNodeSpec:
    return GraphNodeSpec(name, MergeKind.DEPTH_CONCATENATION, tuple(parents))
