"""
Evolution Manager for coordinating training.
"""
import json
import logging
from pathlib import Path
from typing import Callable, List, Mapping, Optional, Sequence

import numpy as np
from tqdm import tqdm

from evoai.config import EvolutionConfig
from evoai.evolution.genome import Genome
from evoai.evolution.records import EpisodeResult, EvolutionResult, RunState, TestResults
from evoai.evolution.strategies import GeneticAlgorithm
from evoai.evolution.worker import EvaluationHarness

logger = logging.getLogger(__name__)

STOP_MAX_GENERATIONS = "max_generations"
STOP_STAGNATION = "stagnation"
STOP_TARGET_REACHED = "target_reached"
STOP_ERROR = "error"


class EvolutionManager:
	"""
	Orchestrates the evolutionary training loop.

	Purpose:
		Manage the population, evaluate it through the harness, track the
		best genome and decide when to stop.

	Workflow:
		1. Initialize a random population
		2. For each generation:
			a. Evaluate every genome (in parallel, via the harness)
			b. Update the run state (best genome, history)
			c. Check the stop conditions
			d. Build the next population with the strategy
		3. Return the best-ever genome and the fitness history
	"""
	def __init__(
		self,
		harness: EvaluationHarness,
		config: Optional[EvolutionConfig] = None,
		strategy: Optional[GeneticAlgorithm] = None,
		rng: Optional[np.random.Generator] = None,
		on_generation: Optional[Callable[[RunState], None]] = None,
		catalog: Optional[Mapping[str, float]] = None,
	):
		"""
		Args:
			harness: Population evaluator
			config: Loop parameters (validated here)
			strategy: Reproduction strategy (default: GeneticAlgorithm from config)
			rng: Random generator (default: seeded from config.seed)
			on_generation: Called with the run state after every generation
			catalog: Entity priority defaults for the initial population

		Raises:
			ConfigError: If the configuration is invalid
		"""
		self.config = config or EvolutionConfig()
		self.config.validate()

		self.harness = harness
		self.rng = rng if rng is not None else np.random.default_rng(self.config.seed)
		self.strategy = strategy or GeneticAlgorithm(
			population_size=self.config.population_size,
			elite_count=self.config.elite_count,
			tournament_size=self.config.tournament_size,
			crossover_rate=self.config.crossover_rate,
			mutation_rate=self.config.mutation_rate,
			rng=self.rng,
		)
		self.on_generation = on_generation
		self.catalog = catalog

		self.state = RunState()
		self.population: List[Genome] = []
		self.last_results: List[EpisodeResult] = []

	def evolve(self) -> EvolutionResult:
		"""
		Run the generational loop until a stop condition holds.

		Returns:
			EvolutionResult with the best-ever genome and per-generation history

		Raises:
			Exception: Failures before the first generation completed
		"""
		self.population = self.strategy.initial_population(self.catalog)
		stop_reason = STOP_MAX_GENERATIONS

		logger.info(
			f"Starting evolution: population={self.config.population_size} "
			f"generations={self.config.max_generations} elites={self.config.elite_count}"
		)

		progress = tqdm(range(self.config.max_generations), desc="Evolution", unit="gen")
		try:
			for generation in progress:
				self.state.generation = generation
				scores = self._evaluate_generation(self.population)
				best, average = self._record_generation(self.population, scores)

				progress.set_postfix(best=f"{best:.1f}", avg=f"{average:.1f}", overall=f"{self.state.best_fitness:.1f}")
				logger.info(
					f"Generation {generation + 1}: Best Fitness = {best:.2f}, "
					f"Average = {average:.2f}, Overall Best = {self.state.best_fitness:.2f}"
				)
				if self.on_generation is not None:
					self.on_generation(self.state)
				if self.config.checkpoint_every and (generation + 1) % self.config.checkpoint_every == 0:
					self._save_checkpoint(Path(self.config.checkpoint_dir) / f"checkpoint_gen_{generation + 1}.json")

				reason = self.check_stop()
				if reason is not None:
					stop_reason = reason
					break

				if generation + 1 < self.config.max_generations:
					self.population = self.strategy.evolve(self.population, scores)
		except Exception as e:
			if self.state.generations_completed == 0:
				raise
			logger.error(
				f"Evolution failed after {self.state.generations_completed} generations, "
				f"returning best so far: {type(e).__name__}: {e}"
			)
			stop_reason = STOP_ERROR
		finally:
			progress.close()

		logger.info(
			f"Evolution finished ({stop_reason}) after {self.state.generations_completed} generations, "
			f"best fitness {self.state.best_fitness:.2f}"
		)
		return EvolutionResult(
			best_genome=self.state.best_genome,
			best_fitness=self.state.best_fitness,
			history=self.state.history,
			generations_completed=self.state.generations_completed,
			stop_reason=stop_reason,
		)

	def _evaluate_generation(self, population: Sequence[Genome]) -> List[float]:
		"""
		Evaluate a population and return its scores in population order.

		Raises:
			RuntimeError: If the harness returns the wrong number of results
		"""
		results = self.harness.evaluate_population(population)
		if len(results) != len(population):
			raise RuntimeError(f"Harness returned {len(results)} results for {len(population)} genomes")
		self.last_results = list(results)

		scores = [r.fitness for r in results]
		if all(score == 0.0 for score in scores):
			logger.warning(
				f"Every genome of generation {self.state.generation + 1} scored 0; "
				f"elitism keeps an arbitrary subset"
			)
		return scores

	def _record_generation(self, population: Sequence[Genome], scores: Sequence[float]):
		"""Update the best-ever genome and append (best, average) to the history."""
		for genome, score in zip(population, scores):
			if self.state.offer(genome, score):
				logger.debug(f"New best genome ({score:.2f}): {genome!r}")
		logger.debug(f"Population diversity: {self.population_diversity(population):.3f}")
		return self.state.record_generation(scores)

	def check_stop(self) -> Optional[str]:
		"""
		Stop condition after the current generation.

		Returns:
			STOP_TARGET_REACHED, STOP_STAGNATION or None to continue
		"""
		if self.state.best_fitness > self.config.target_fitness:
			return STOP_TARGET_REACHED
		improvement = self.state.improvement(self.config.stagnation_window)
		if improvement is not None and improvement < self.config.min_improvement:
			return STOP_STAGNATION
		return None

	@staticmethod
	def population_diversity(population: Sequence[Genome]) -> float:
		"""Mean diversity bonus of the population members."""
		if len(population) <= 1:
			return 0.0
		return sum(g.diversity_bonus(population) for g in population) / len(population)

	def test_best(self, map_names: Optional[Sequence[str]] = None) -> TestResults:
		"""
		Play the best genome once on each map.

		Args:
			map_names: Maps to test on (default: configured test maps, then all maps)

		Returns:
			TestResults keyed by map name

		Raises:
			RuntimeError: If no best genome exists yet
		"""
		genome = self.state.best_genome
		if genome is None:
			raise RuntimeError("No best genome to test; run evolve() first")

		worker = self.harness.worker
		maps = list(map_names or worker.config.test_maps or worker.controller.available_maps())
		results = TestResults()

		for map_name in maps:
			try:
				result = worker.run_episode(genome, map_name)
			except Exception as e:
				logger.error(f"Test on {map_name} failed: {type(e).__name__}: {e}")
				result = EpisodeResult.failure(f"{type(e).__name__}: {e}", map_name)
			results.add_result(map_name, result)
			logger.info(
				f"Test {map_name}: {'WON' if result.won else 'LOST'} wave={result.final_wave} "
				f"fitness={result.fitness:.2f}"
			)

		logger.info(f"Win rate {results.win_rate:.0%}, average fitness {results.average_fitness:.2f}")
		return results

	def _save_checkpoint(self, path: Path) -> None:
		"""
		Save a JSON snapshot of the run state.

		Args:
			path: Checkpoint file
		"""
		checkpoint = {
			'generation': self.state.generation + 1,
			'best_fitness': self.state.best_fitness,
			'best_genome': self.state.best_genome.to_dict() if self.state.best_genome else None,
			'history': [list(pair) for pair in self.state.history],
			'population': [g.to_dict() for g in self.population],
		}
		path.parent.mkdir(parents=True, exist_ok=True)
		with open(path, 'w') as f:
			json.dump(checkpoint, f, indent=2)
		logger.info(f"Saved checkpoint: {path}")
