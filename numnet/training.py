"""Mini-batch training loop for graph networks.

Every mini-batch runs in two phases: the gradients are computed in
parallel over partitions of the batch while the weights are only read,
then the optimizer update is applied on the calling thread. An epoch is
committed as a whole: if its updates overflow, or a parallel partition
fails, the network and the optimizer are rolled back to their state at the
start of that epoch.
"""
import collections
import datetime
import logging
import threading
import time
import typing as t

import numpy as np
import tqdm.auto

from . import _utils
from .datasets import Dataset, Environment
from .exceptions import ConfigurationError, ParallelExecutionError
from .network import GraphNetwork
from .optimizers import Optimizer, SGDInfo, TrainingAlgorithmInfo
from .parallel import ParallelExecutor
from .results import (
    DatasetEvaluationResult,
    TrainingProgress,
    TrainingSessionResult,
    TrainingStopReason,
)


logger = logging.getLogger(__name__)


class RelativeConvergence:
    """Converged once the last ``window`` values lie within ``tolerance``."""

    def __init__(self, tolerance: float = 1e-2, window: int = 5):
        if not float(tolerance) > 0.0:
            raise ConfigurationError(
                "'tolerance' must be positive (got {}).".format(tolerance)
            )

        if int(window) < 1:
            raise ConfigurationError(
                "'window' must be at least 1 (got {}).".format(window)
            )

        self.tolerance = float(tolerance)
        self.window = int(window)
        self.values = collections.deque(maxlen=self.window)

    def update(self, value: float) -> bool:
        self.values.append(float(value))
        return self.has_converged

    @property
    def has_converged(self) -> bool:
        if len(self.values) < self.window:
            return False

        return max(self.values) - min(self.values) < self.tolerance


def _run_epoch(
    network: GraphNetwork,
    dataset: Dataset,
    optimizer: Optimizer,
    batch_size: int,
    rng: np.random.Generator,
    executor: t.Optional[ParallelExecutor],
    verbose: bool,
) -> bool:
    """Train over every mini-batch of ``dataset``.

    Returns False if an update would have produced non-finite weights, in
    which case that update is not applied.
    """
    batches = dataset.batches(batch_size, rng)

    if verbose:
        batches = tqdm.auto.tqdm(batches, total=dataset.num_batches(batch_size))

    for X_batch, y_batch in batches:
        cost, grads = network.backpropagate(X_batch, y_batch, executor=executor)
        new_params, new_states = optimizer.step(network.parameters, grads)

        if not _utils.is_finite(*new_params):
            return False

        network.apply_parameters(new_params)
        optimizer.commit(new_states)

        if verbose:
            batches.set_description("Batch cost: {:.4f}".format(cost))

    return True


def train_network(
    network: GraphNetwork,
    source: t.Union[Dataset, Environment, t.Tuple[np.ndarray, np.ndarray]],
    epochs: int,
    algorithm: t.Optional[TrainingAlgorithmInfo] = None,
    batch_size: int = 32,
    validation_frac: t.Optional[float] = None,
    validation: t.Optional[Dataset] = None,
    test: t.Optional[Dataset] = None,
    convergence: t.Optional[RelativeConvergence] = None,
    progress_callback: t.Optional[t.Callable[[TrainingProgress], None]] = None,
    cancellation: t.Optional[threading.Event] = None,
    exploration: t.Optional[t.Iterator[float]] = None,
    clip_grad_norm: t.Optional[float] = None,
    rng=None,
    executor: t.Optional[ParallelExecutor] = None,
    verbose: bool = False,
) -> TrainingSessionResult:
    """Train ``network`` in place.

    Arguments
    ---------
    source : Dataset, (X, y) tuple or Environment
        Static training data, or an environment asked for a fresh dataset
        at the start of every epoch.

    validation_frac : float, optional
        Fraction of a static dataset held out for validation. Mutually
        exclusive with ``validation``.

    convergence : RelativeConvergence, optional
        Early stopping rule fed with the validation accuracy of each epoch.

    cancellation : threading.Event, optional
        Checked at every epoch boundary; a set event stops the training
        before the next epoch starts.

    exploration : iterator of float, optional
        Decaying rate (see :mod:`numnet.schedules`) consumed once per epoch
        and handed to the environment.

    Returns
    -------
    TrainingSessionResult

    Raises
    ------
    ParallelExecutionError
        If a gradient partition failed. The network and the optimizer are
        left as they were at the start of the failed epoch.
    """
    if not isinstance(network, GraphNetwork):
        raise ConfigurationError(
            "Only graph networks can be trained (got {}).".format(
                type(network).__name__
            )
        )

    if int(epochs) < 1:
        raise ConfigurationError("'epochs' must be at least 1 (got {}).".format(epochs))

    if int(batch_size) < 1:
        raise ConfigurationError(
            "'batch_size' must be at least 1 (got {}).".format(batch_size)
        )

    if validation_frac is not None and validation is not None:
        raise ConfigurationError(
            "Use either 'validation_frac' or 'validation', not both."
        )

    if isinstance(source, tuple):
        source = Dataset(*source)

    rng = _utils.as_rng(rng)

    if validation_frac is not None:
        if not isinstance(source, Dataset):
            raise ConfigurationError(
                "'validation_frac' requires a static dataset as training source."
            )

        source, validation = source.split(validation_frac, rng)

    if convergence is not None and validation is None:
        raise ConfigurationError("Early stopping requires a validation dataset.")

    optimizer = Optimizer(algorithm or SGDInfo(), clip_grad_norm=clip_grad_norm)
    optimizer.register(network.parameters)

    validation_reports = []  # type: t.List[DatasetEvaluationResult]
    test_reports = []  # type: t.List[DatasetEvaluationResult]

    stop_reason = TrainingStopReason.EPOCHS_COMPLETED
    completed_epochs = 0
    time_start = time.perf_counter()

    logger.info(
        "Training %s for up to %d epoch(s) with %s.",
        network,
        int(epochs),
        optimizer.algorithm,
    )

    for epoch in np.arange(1, 1 + int(epochs)):
        if cancellation is not None and cancellation.is_set():
            stop_reason = TrainingStopReason.TRAINING_CANCELED
            break

        if isinstance(source, Environment):
            rate = next(exploration) if exploration is not None else None
            dataset = source.episode(network, rate, rng)

        else:
            dataset = source

        params_snapshot = [param.copy() for param in network.parameters]
        states_snapshot = optimizer.snapshot()

        try:
            is_finite = _run_epoch(
                network, dataset, optimizer, int(batch_size), rng, executor, verbose
            )

        except ParallelExecutionError:
            network.apply_parameters(params_snapshot)
            optimizer.restore(states_snapshot)
            logger.error("Epoch %d aborted: a parallel partition failed.", epoch)
            raise

        if not is_finite:
            network.apply_parameters(params_snapshot)
            optimizer.restore(states_snapshot)
            stop_reason = TrainingStopReason.NUMERIC_OVERFLOW
            logger.warning("Epoch %d rolled back: non-finite weights.", epoch)
            break

        completed_epochs += 1

        train_report = network.evaluate(dataset.X, dataset.y)

        logger.info(
            "Epoch %d/%d - cost: %.4f - accuracy: %.4f",
            epoch,
            int(epochs),
            train_report.cost,
            train_report.accuracy,
        )

        if progress_callback is not None:
            progress_callback(
                TrainingProgress(int(epoch), train_report.cost, train_report.accuracy)
            )

        if test is not None:
            test_reports.append(network.evaluate(test.X, test.y))

        if validation is not None:
            val_report = network.evaluate(validation.X, validation.y)
            validation_reports.append(val_report)

            if convergence is not None and convergence.update(val_report.accuracy):
                stop_reason = TrainingStopReason.EARLY_STOPPING
                logger.info("Early stopping after epoch %d.", epoch)
                break

    training_time = datetime.timedelta(seconds=time.perf_counter() - time_start)

    return TrainingSessionResult(
        stop_reason=stop_reason,
        completed_epochs=completed_epochs,
        training_time=training_time,
        validation_reports=tuple(validation_reports),
        test_reports=tuple(test_reports),
    )
