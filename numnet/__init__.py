"""numnet: small feed-forward and convolutional networks on top of numpy.

Tensor primitives, a convolution pipeline, graph networks with
backpropagation, a family of gradient optimizers, a genetic algorithm over
network weights and a fork-join parallel harness shared by all of them.
"""
from . import activations
from . import backend
from . import convolution
from . import kernels
from . import losses
from . import optimizers
from . import schedules
from . import specs
from .activations import ActivationType
from .backend import Backend, NumpyBackend, get_backend, set_backend, use_backend
from .config import Settings, configure_logging, get_settings
from .convolution import ConvolutionPipeline, Volume
from .datasets import Dataset, Environment
from .exceptions import (
    ConfigurationError,
    CrossoverIncompatibilityError,
    DimensionMismatchError,
    GraphTopologyError,
    InvalidLayerError,
    NetworkBuildError,
    NumericOverflowError,
    NumnetError,
    ParallelExecutionError,
    PipelineConfigurationError,
)
from .genetic import GeneticAlgorithm, GeneticAlgorithmProgress
from .losses import CostFunctionType
from .network import (
    BuildResult,
    GraphNetwork,
    NeuralNetworkBase,
    TwoLayerNetwork,
    build_graph,
    build_network,
    try_build_graph,
    try_build_network,
)
from .optimizers import (
    AdaDeltaInfo,
    AdaGradInfo,
    AdaMaxInfo,
    AdamInfo,
    MomentumInfo,
    Optimizer,
    RMSPropInfo,
    SGDInfo,
    TrainingAlgorithmType,
)
from .parallel import ParallelExecutor, parallel_for
from .results import (
    DatasetEvaluationResult,
    TrainingProgress,
    TrainingSessionResult,
    TrainingStopReason,
)
from .schedules import Exponential, Linear
from .specs import NormalizationMode, Shape
from .tensor import (
    Tensor,
    apply_activation,
    multiply,
    random_init,
    random_mutate,
    two_point_crossover,
)
from .training import RelativeConvergence, train_network

__version__ = "0.1.0"
