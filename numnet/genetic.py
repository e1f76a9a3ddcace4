"""Generational genetic algorithm over network weights."""
import logging
import typing as t

import numpy as np

from . import _utils
from .exceptions import ConfigurationError, NumericOverflowError
from .network import NeuralNetworkBase
from .parallel import ParallelExecutor


logger = logging.getLogger(__name__)


class GeneticAlgorithmProgress(t.NamedTuple):
    generation: int
    best_fitness: float
    average_fitness: float


class GeneticAlgorithm:
    """Genetic algorithm evolving a population of compatible networks.

    +------------------------------+----------------+
    | Algorithm characteristic:    | Value:         |
    +------------------------------+----------------+
    | Overlapping population       | Elites only    |
    +------------------------------+----------------+
    | Parent selection scheme      | Fitness-prop   |
    +------------------------------+----------------+
    | Reproduction                 | Sexual         |
    +------------------------------+----------------+
    | Crossover                    | Two-point      |
    +------------------------------+----------------+
    | Mutation                     | Yes            |
    +------------------------------+----------------+

    Arguments
    ---------
    population : sequence of networks
        Initial population; every network must be structurally compatible
        with the first one.

    fitness_func : callable
        Maps a network to a finite score. Higher is better. It is called
        concurrently from several threads and must not mutate the network.

    mutation_probability : float, optional
        Per-weight mutation probability applied to every offspring.

    elitism : int, optional
        Number of best networks copied unchanged into the next generation.
    """

    def __init__(
        self,
        population: t.Sequence[NeuralNetworkBase],
        fitness_func: t.Callable[[NeuralNetworkBase], float],
        mutation_probability: float = 0.05,
        elitism: int = 1,
        rng=None,
        executor: t.Optional[ParallelExecutor] = None,
    ):
        if len(population) < 2:
            raise ConfigurationError(
                "The population needs at least 2 networks (got {}).".format(
                    len(population)
                )
            )

        if not 0.0 <= float(mutation_probability) <= 1.0:
            raise ConfigurationError(
                "'mutation_probability' must be in [0, 1] (got {}).".format(
                    mutation_probability
                )
            )

        if not 0 <= int(elitism) < len(population):
            raise ConfigurationError(
                "'elitism' must be in [0, {}) (got {}).".format(
                    len(population), elitism
                )
            )

        for network in population[1:]:
            population[0].check_compatible(network)

        self.population = list(population)
        self.fitness_func = fitness_func
        self.mutation_probability = float(mutation_probability)
        self.elitism = int(elitism)
        self.rng = _utils.as_rng(rng)
        self.executor = executor if executor is not None else ParallelExecutor()

        self.generation = 0
        self.fitness = None  # type: t.Optional[np.ndarray]
        self.best = None  # type: t.Optional[NeuralNetworkBase]
        self.best_fitness = -np.inf

    def evaluate(self, population: t.Sequence[NeuralNetworkBase]) -> np.ndarray:
        fitness = np.array(
            self.executor.map(
                lambda i: float(self.fitness_func(population[i])), len(population)
            ),
            dtype=float,
        )

        if not _utils.is_finite(fitness):
            raise NumericOverflowError("The fitness function returned non-finite values.")

        return fitness

    def _select_parents(self, num_pairs: int) -> np.ndarray:
        """Fitness-proportional selection of ``num_pairs`` parent index pairs."""
        weights = self.fitness - np.min(self.fitness) + 1e-8
        weights /= np.sum(weights)

        return self.rng.choice(
            len(self.population), size=(num_pairs, 2), replace=True, p=weights
        )

    def _update_best(self):
        id_best = int(np.argmax(self.fitness))

        if self.fitness[id_best] > self.best_fitness:
            self.best = self.population[id_best]
            self.best_fitness = float(self.fitness[id_best])
            logger.debug(
                "New best network at generation %d (fitness %.6f).",
                self.generation,
                self.best_fitness,
            )

    def _progress(self) -> GeneticAlgorithmProgress:
        return GeneticAlgorithmProgress(
            generation=self.generation,
            best_fitness=float(np.max(self.fitness)),
            average_fitness=float(np.mean(self.fitness)),
        )

    def step(self) -> GeneticAlgorithmProgress:
        """Replace the population with the next generation."""
        if self.fitness is None:
            self.fitness = self.evaluate(self.population)
            self._update_best()

        id_sorted = np.argsort(-self.fitness, kind="stable")
        elites = [self.population[i] for i in id_sorted[: self.elitism]]

        offspring = []

        for id_a, id_b in self._select_parents(len(self.population) - self.elitism):
            child = self.population[id_a].crossover(self.population[id_b], self.rng)

            if self.mutation_probability > 0.0:
                child = child.mutate(self.mutation_probability, self.rng)

            offspring.append(child)

        new_population = elites + offspring
        new_fitness = self.evaluate(new_population)

        self.population = new_population
        self.fitness = new_fitness
        self.generation += 1
        self._update_best()

        return self._progress()

    def run(
        self,
        generations: int,
        callback: t.Optional[t.Callable[[GeneticAlgorithmProgress], None]] = None,
        target_fitness: t.Optional[float] = None,
    ) -> NeuralNetworkBase:
        """Evolve for ``generations`` steps and return the best network found.

        Stops early once ``target_fitness`` is reached, if given.
        """
        if int(generations) < 1:
            raise ConfigurationError(
                "'generations' must be at least 1 (got {}).".format(generations)
            )

        for _ in np.arange(int(generations)):
            progress = self.step()

            if callback is not None:
                callback(progress)

            if target_fitness is not None and self.best_fitness >= target_fitness:
                break

        logger.info(
            "Genetic algorithm stopped after %d generation(s), best fitness %.6f.",
            self.generation,
            self.best_fitness,
        )

        return self.best
