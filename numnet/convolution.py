"""Convolution pipeline turning image-like volumes into feature vectors.

A pipeline is an ordered list of pure ``Volume -> Volume`` stages. Each
stage also implements ``backward``, the adjoint of its forward operator,
which maps a gradient w.r.t. its output back to a gradient w.r.t. its
input. Stages keep no per-call state, so one pipeline can process many
volumes concurrently.
"""
import logging
import typing as t

import numpy as np

from . import activations
from . import backend as _backend
from . import kernels as _kernels
from .exceptions import DimensionMismatchError, PipelineConfigurationError
from .tensor import Tensor


logger = logging.getLogger(__name__)

VolumeShape = t.Tuple[int, int, int]


class Volume:
    """Ordered sequence of equally shaped 2-D slices (depth, height, width)."""

    __slots__ = ("values",)

    def __init__(self, values):
        values = np.array(values, dtype=float)

        if values.ndim == 2:
            values = values[np.newaxis]

        if values.ndim != 3 or values.shape[0] == 0:
            raise DimensionMismatchError(
                "A Volume needs at least one 2-D slice (got shape {}).".format(
                    values.shape
                )
            )

        self.values = values

    @classmethod
    def from_tensors(cls, tensors: t.Sequence[Tensor]) -> "Volume":
        if not tensors:
            raise DimensionMismatchError("A Volume needs at least one slice.")

        shapes = {tensor.shape for tensor in tensors}

        if len(shapes) != 1:
            raise DimensionMismatchError(
                "Volume slices must share the same shape (got {}).".format(
                    sorted(shapes)
                )
            )

        return cls(np.stack([tensor.values for tensor in tensors]))

    @property
    def depth(self) -> int:
        return self.values.shape[0]

    @property
    def height(self) -> int:
        return self.values.shape[1]

    @property
    def width(self) -> int:
        return self.values.shape[2]

    @property
    def shape(self) -> VolumeShape:
        return self.values.shape

    @property
    def slices(self) -> t.List[Tensor]:
        return [Tensor(vals) for vals in self.values]

    def flatten(self) -> np.ndarray:
        return self.values.ravel().copy()

    def __eq__(self, other):
        if not isinstance(other, Volume):
            return NotImplemented

        return bool(np.array_equal(self.values, other.values))

    def __repr__(self):
        return "Volume(depth={}, height={}, width={})".format(*self.shape)


class Stage:
    def output_shape(self, shape: VolumeShape) -> VolumeShape:
        return tuple(shape)

    def forward(self, volume: Volume) -> Volume:
        raise NotImplementedError

    def backward(self, volume: Volume, dout: Volume) -> Volume:
        """Gradient w.r.t. ``volume`` given the gradient w.r.t. forward(volume)."""
        raise NotImplementedError

    def __call__(self, volume: Volume) -> Volume:
        return self.forward(volume)

    def __repr__(self):
        return "{}()".format(type(self).__name__)


class Expand(Stage):
    """Filter every input slice with every kernel ('valid' mode).

    Kernels slide over the slices unflipped, as stored in
    :mod:`numnet.kernels`, and every response is divided by the sum of the
    absolute kernel values. A kernel named after an edge direction thus
    responds positively to edges of that direction.

    Output depth is ``depth * len(kernels)``, ordered slice-major: the
    first ``len(kernels)`` output slices all come from the first input
    slice.
    """

    def __init__(
        self,
        kernels: t.Sequence[t.Union[str, np.ndarray]],
        backend: t.Optional[_backend.Backend] = None,
    ):
        super(Expand, self).__init__()

        if not len(kernels):
            raise PipelineConfigurationError("Expand needs at least one kernel.")

        kernels = [
            _kernels.get_kernel(k) if isinstance(k, str) else np.asarray(k, dtype=float)
            for k in kernels
        ]

        if any(k.ndim != 2 for k in kernels) or len({k.shape for k in kernels}) != 1:
            raise PipelineConfigurationError(
                "Expand kernels must be 2-D and share the same shape (got {}).".format(
                    [k.shape for k in kernels]
                )
            )

        self.kernels = np.stack(kernels)

        norms = np.sum(np.abs(self.kernels), axis=(1, 2))

        if not np.all(norms > 0.0):
            raise PipelineConfigurationError("Expand kernels can't be all zeros.")

        # NOTE: the backend convolves, i.e. flips the kernels, so they are
        # stored pre-flipped to get a plain correlation.
        self._weights = self.kernels[:, ::-1, ::-1] / norms[:, np.newaxis, np.newaxis]
        self.backend = backend

    @property
    def kernel_size(self) -> t.Tuple[int, int]:
        return self.kernels.shape[1:]

    def output_shape(self, shape):
        depth, height, width = shape
        k_height, k_width = self.kernel_size

        if k_height >= height or k_width >= width:
            raise PipelineConfigurationError(
                "Kernel of size {}x{} must be strictly smaller than the "
                "{}x{} slices it is applied to.".format(k_height, k_width, height, width)
            )

        return (
            depth * len(self.kernels),
            height - k_height + 1,
            width - k_width + 1,
        )

    def forward(self, volume):
        out_shape = self.output_shape(volume.shape)
        conv = _backend.resolve(self.backend).convolve(
            volume.values[:, np.newaxis], self._weights[:, np.newaxis]
        )
        return Volume(conv.reshape(out_shape))

    def backward(self, volume, dout):
        _, out_height, out_width = self.output_shape(volume.shape)
        k_height, k_width = self.kernel_size

        dout = dout.values.reshape(-1, len(self.kernels), out_height, out_width)
        dout = np.pad(
            dout,
            ((0, 0), (0, 0), (k_height - 1, k_height - 1), (k_width - 1, k_width - 1)),
        )

        # NOTE: the adjoint of a 'valid' pass is the 'full' pass with the
        # spatially flipped filters, summed over every filter.
        flipped = self._weights[np.newaxis, :, ::-1, ::-1]
        dX = _backend.resolve(self.backend).convolve(dout, flipped)

        return Volume(dX[:, 0])

    def __repr__(self):
        return "Expand(kernels={}, kernel_size={})".format(
            len(self.kernels), self.kernel_size
        )


class Activation(Stage):
    def __init__(
        self,
        kind: t.Union[activations.ActivationType, str] = activations.ActivationType.RELU,
    ):
        super(Activation, self).__init__()
        self.function = activations.get_activation(kind)

    def forward(self, volume):
        return Volume(self.function.forward(volume.values))

    def backward(self, volume, dout):
        return Volume(self.function.prime(volume.values) * dout.values)


class Pool(Stage):
    """2x2 max pooling with stride 2.

    Ties resolve to the first maximum in row-major window order, which is
    also the only input the gradient flows back to.
    """

    def output_shape(self, shape):
        depth, height, width = shape

        if height % 2 or width % 2:
            raise PipelineConfigurationError(
                "Pooling requires even spatial dimensions (got {}x{}).".format(
                    height, width
                )
            )

        return depth, height // 2, width // 2

    @staticmethod
    def _windows(X):
        depth, height, width = X.shape
        windows = X.reshape(depth, height // 2, 2, width // 2, 2)
        return windows.transpose(0, 1, 3, 2, 4).reshape(
            depth, height // 2, width // 2, 4
        )

    def forward(self, volume):
        self.output_shape(volume.shape)
        return Volume(self._windows(volume.values).max(axis=-1))

    def backward(self, volume, dout):
        depth, height, width = volume.shape
        self.output_shape(volume.shape)

        inds_max = np.argmax(self._windows(volume.values), axis=-1)

        dX = np.zeros((depth, height // 2, width // 2, 4), dtype=float)
        np.put_along_axis(
            dX, inds_max[..., np.newaxis], dout.values[..., np.newaxis], axis=-1
        )

        dX = dX.reshape(depth, height // 2, width // 2, 2, 2).transpose(0, 1, 3, 2, 4)

        return Volume(dX.reshape(depth, height, width))


class Normalize(Stage):
    """Divide every slice by its maximum value.

    Slices whose maximum is not positive are passed through unchanged.
    """

    @staticmethod
    def _slice_max(X):
        maxima = X.reshape(X.shape[0], -1).max(axis=1)
        return np.where(maxima > 0.0, maxima, 1.0), maxima > 0.0

    def forward(self, volume):
        maxima, _ = self._slice_max(volume.values)
        return Volume(volume.values / maxima[:, np.newaxis, np.newaxis])

    def backward(self, volume, dout):
        X = volume.values
        dout = dout.values
        maxima, scaled = self._slice_max(X)

        dX = dout / maxima[:, np.newaxis, np.newaxis]

        flat_X = X.reshape(X.shape[0], -1)
        inds_max = np.argmax(flat_X, axis=1)
        dmax = np.sum(dout * X, axis=(1, 2)) / np.square(maxima)

        dX = dX.reshape(X.shape[0], -1)
        rows = np.flatnonzero(scaled)
        dX[rows, inds_max[rows]] -= dmax[rows]

        return Volume(dX.reshape(X.shape))


class ConvolutionPipeline:
    def __init__(
        self,
        stages: t.Sequence[Stage],
        backend: t.Optional[_backend.Backend] = None,
    ):
        if not stages:
            raise PipelineConfigurationError("A pipeline needs at least one stage.")

        for stage in stages:
            if not isinstance(stage, Stage):
                raise PipelineConfigurationError(
                    "Pipeline stages must be Stage instances (got {}).".format(
                        type(stage).__name__
                    )
                )

        self.stages = tuple(stages)
        self.backend = backend

    def output_shape(self, shape: VolumeShape) -> VolumeShape:
        for stage in self.stages:
            shape = stage.output_shape(shape)

        return shape

    def feature_size(self, shape: VolumeShape) -> int:
        return int(np.prod(self.output_shape(shape)))

    def trace(self, volume: Volume) -> t.List[Volume]:
        """Input volume followed by the output of every stage."""
        volumes = [volume]

        for stage in self.stages:
            volumes.append(stage.forward(volumes[-1]))

        return volumes

    def process(self, volume: Volume) -> Volume:
        for stage in self.stages:
            volume = stage.forward(volume)

        return volume

    def __call__(self, volume: Volume) -> Volume:
        return self.process(volume)

    def backward(self, trace: t.Sequence[Volume], dout: Volume) -> Volume:
        assert len(trace) == len(self.stages) + 1

        for stage, volume in zip(reversed(self.stages), reversed(trace[:-1])):
            dout = stage.backward(volume, dout)

        return dout

    def process_batch(self, volumes: t.Sequence[Volume]) -> t.List[Volume]:
        """Run every volume through the pipeline in parallel.

        Raises ParallelExecutionError if any sample fails, in which case no
        processed volume is returned.
        """
        if volumes:
            self.output_shape(volumes[0].shape)

        executor = _backend.resolve(self.backend).executor
        results = executor.map(lambda i: self.process(volumes[i]), len(volumes))

        logger.debug("Processed a batch of %d volume(s).", len(volumes))

        return results

    def features(self, volumes: t.Sequence[Volume]) -> np.ndarray:
        """Flattened pipeline outputs, one row per input volume."""
        return np.stack([vol.flatten() for vol in self.process_batch(volumes)])

    def __len__(self):
        return len(self.stages)

    def __iter__(self):
        return iter(self.stages)

    def __repr__(self):
        return "ConvolutionPipeline({})".format(
            ", ".join(repr(stage) for stage in self.stages)
        )
