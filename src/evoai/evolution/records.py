"""
Result records shared by the worker, the manager and the exporters.
"""

import math
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

from evoai.evolution.behavior import BehaviorStats
from evoai.evolution.genome import Genome

MIN_FITNESS = 0.0
MAX_FITNESS = 1000.0


def clamp_fitness(value: float) -> float:
	"""Clamp a fitness value into [0, 1000]; NaN counts as worst."""
	value = float(value)
	if math.isnan(value):
		return MIN_FITNESS
	return min(MAX_FITNESS, max(MIN_FITNESS, value))


@dataclass(frozen=True)
class EpisodeResult:
	"""
	Output of one (or the mean of several) simulation runs for a genome.

	Args:
		fitness: Score, clamped to [0, 1000]
		won: Whether the agent won
		final_wave: Last wave reached
		elapsed_time: Simulated seconds the episode lasted
		behavior_stats: What the executor did
		end_reason: Reason reported by the simulation, or the failure message
		map_name: Map the episode ran on
		episodes: Number of successful episodes averaged into fitness
	"""
	fitness: float
	won: bool = False
	final_wave: int = 0
	elapsed_time: float = 0.0
	behavior_stats: BehaviorStats = field(default_factory=BehaviorStats)
	end_reason: str = ""
	map_name: str = ""
	episodes: int = 1

	def __post_init__(self):
		object.__setattr__(self, "fitness", clamp_fitness(self.fitness))
		object.__setattr__(self, "final_wave", max(0, int(self.final_wave)))

	@property
	def failed(self) -> bool:
		return self.episodes == 0

	@classmethod
	def failure(cls, reason: str, map_name: str = "") -> "EpisodeResult":
		"""Worst-fitness result for an evaluation that did not complete."""
		return cls(fitness=MIN_FITNESS, end_reason=reason, map_name=map_name, episodes=0)


@dataclass
class RunState:
	"""
	Mutable state of one evolutionary run.

	Updated only by the evolution loop thread, once per generation.
	"""
	generation: int = 0
	best_genome: Optional[Genome] = None
	best_fitness: float = float("-inf")
	best_history: List[float] = field(default_factory=list)
	average_history: List[float] = field(default_factory=list)

	@property
	def generations_completed(self) -> int:
		return len(self.best_history)

	@property
	def history(self) -> List[Tuple[float, float]]:
		"""Per-generation (best, average) fitness pairs."""
		return list(zip(self.best_history, self.average_history))

	def offer(self, genome: Genome, fitness: float) -> bool:
		"""
		Replace the best-ever genome if fitness beats it.

		Returns:
			True if the best genome changed
		"""
		if fitness > self.best_fitness:
			self.best_fitness = fitness
			self.best_genome = genome.copy()
			return True
		return False

	def record_generation(self, scores: Sequence[float]) -> Tuple[float, float]:
		"""
		Append a generation's best and average fitness.

		Args:
			scores: Fitness of every genome in the generation

		Returns:
			(best, average)
		"""
		best = max(scores) if scores else 0.0
		average = sum(scores) / len(scores) if scores else 0.0
		self.best_history.append(best)
		self.average_history.append(average)
		return best, average

	def improvement(self, window: int) -> Optional[float]:
		"""
		Best-fitness change across the last `window` generations.

		Returns:
			None until `window` generations have completed
		"""
		if window < 1 or len(self.best_history) < window:
			return None
		return self.best_history[-1] - self.best_history[-window]


@dataclass
class EvolutionResult:
	"""Return value of EvolutionManager.evolve()."""
	best_genome: Optional[Genome]
	best_fitness: float
	history: List[Tuple[float, float]]
	generations_completed: int
	stop_reason: str


@dataclass
class TestResults:
	"""Per-map results of the best genome."""
	__test__ = False  # not a pytest class

	results: Dict[str, EpisodeResult] = field(default_factory=dict)

	def add_result(self, map_name: str, result: EpisodeResult) -> None:
		self.results[map_name] = result

	def get_result(self, map_name: str) -> Optional[EpisodeResult]:
		return self.results.get(map_name)

	@property
	def win_rate(self) -> float:
		if not self.results:
			return 0.0
		return sum(1 for r in self.results.values() if r.won) / len(self.results)

	@property
	def average_fitness(self) -> float:
		if not self.results:
			return 0.0
		return sum(r.fitness for r in self.results.values()) / len(self.results)
