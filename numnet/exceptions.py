"""Error types raised by numnet.

Configuration errors surface while building networks and pipelines and
never during training. Tensor operations raise dimension mismatches,
genetic operators raise crossover incompatibilities and the parallel
harness wraps worker failures into a single aggregated error.
"""
import typing as t


class NumnetError(Exception):
    """Base class of every error raised by this package."""


class ConfigurationError(NumnetError, ValueError):
    """Invalid hyperparameter or component configuration."""


class NetworkBuildError(ConfigurationError):
    """A network could not be assembled from its layer specifications."""

    def __init__(self, message: str, node: t.Optional[t.Union[str, int]] = None):
        if node is not None:
            message = "[{}] {}".format(node, message)

        super(NetworkBuildError, self).__init__(message)
        self.node = node


class InvalidLayerError(NetworkBuildError):
    """A single layer specification is inconsistent (size, kernel, cost...)."""


class GraphTopologyError(NetworkBuildError):
    """The computation graph is malformed (cycle, orphan, shape mismatch...)."""


class PipelineConfigurationError(ConfigurationError):
    """A convolution stage received a volume violating its precondition."""


class DimensionMismatchError(NumnetError, ValueError):
    """Operand shapes are incompatible for a tensor operation."""


class CrossoverIncompatibilityError(NumnetError, ValueError):
    """Two networks do not share the same structure."""


class NumericOverflowError(NumnetError, ArithmeticError):
    """A computation produced NaN or infinite values."""


class ParallelExecutionError(NumnetError, RuntimeError):
    """One or more partitions of a parallel call failed.

    Arguments
    ---------
    errors : list of (int, BaseException)
        Index of every failed work unit paired with the exception it raised,
        sorted by index.
    """

    def __init__(self, errors: t.Sequence[t.Tuple[int, BaseException]]):
        self.errors = sorted(errors, key=lambda item: item[0])

        first_index, first_exc = self.errors[0]

        super(ParallelExecutionError, self).__init__(
            "Error while performing the parallel loop: {} unit(s) failed, "
            "first at index {} ({}: {})".format(
                len(self.errors), first_index, type(first_exc).__name__, first_exc
            )
        )

    @property
    def indices(self) -> t.List[int]:
        return [index for index, _ in self.errors]
