import logging
from typing import Dict, Type

from evoai.evolution.behavior import BehaviorStats
from evoai.evolution.genome import Genome
from evoai.evolution.records import clamp_fitness
from evoai.simulation.protocol import (
	GameOutcome,
	PerformanceSummary,
	EconomySummary,
	PowerSummary,
	CombatSummary,
	EfficiencySummary,
)

logger = logging.getLogger(__name__)


class FitnessEvaluator:
	"""
	Base fitness evaluator interface.
	Subclasses implement a weighting over the episode telemetry.

	Purpose:
		Provide a standardized, bounded scoring contract for episodes.

	Workflow:
		1. Call score() with outcome, performance, genome and behavior stats
		2. score() delegates to evaluate(), clamps to [0, 1000],
		   and turns any exception into fitness 0
	"""

	def evaluate(
		self,
		outcome: GameOutcome,
		performance: PerformanceSummary,
		genome: Genome,
		behavior_stats: BehaviorStats,
	) -> float:
		"""
		Compute the raw (unclamped) fitness.

		Args:
			outcome: Game outcome telemetry
			performance: Performance telemetry
			genome: Genome that played the episode
			behavior_stats: Executor statistics

		Returns:
			Fitness score (higher is better)
		"""
		raise NotImplementedError

	def score(
		self,
		outcome: GameOutcome,
		performance: PerformanceSummary,
		genome: Genome,
		behavior_stats: BehaviorStats,
	) -> float:
		"""
		Bounded fitness in [0, 1000]; 0 if scoring fails.
		"""
		try:
			return clamp_fitness(self.evaluate(outcome, performance, genome, behavior_stats))
		except Exception as e:
			logger.warning(f"Fitness evaluation failed: {e}")
			return 0.0


class ComprehensiveFitness(FitnessEvaluator):
	"""
	Multi-component fitness.

	Purpose:
		Reward victory first, then survival, economy, power, defense,
		efficiency and behavioral diversity, each capped independently.

	Workflow:
		Sum the capped sub-scores, subtract error / failed-build /
		stagnation penalties.
	"""

	def __init__(
		self,
		victory_weight: float = 400.0,
		survival_weight: float = 200.0,
		economy_weight: float = 150.0,
		power_weight: float = 100.0,
		defense_weight: float = 80.0,
		efficiency_weight: float = 50.0,
		adaptability_weight: float = 20.0,
		error_penalty: float = 5.0,
		failure_penalty: float = 2.0,
		stagnation_grace_minutes: float = 10.0,
	):
		self.victory_weight = victory_weight
		self.survival_weight = survival_weight
		self.economy_weight = economy_weight
		self.power_weight = power_weight
		self.defense_weight = defense_weight
		self.efficiency_weight = efficiency_weight
		self.adaptability_weight = adaptability_weight
		self.error_penalty = error_penalty
		self.failure_penalty = failure_penalty
		self.stagnation_grace_minutes = stagnation_grace_minutes

	def evaluate(self, outcome, performance, genome, behavior_stats) -> float:
		fitness = 0.0
		fitness += self.victory_component(outcome, performance)
		fitness += self.survival_component(performance)
		fitness += self.economy_component(performance.economy)
		fitness += self.power_component(performance.power)
		fitness += self.defense_component(performance.combat)
		fitness += self.efficiency_component(performance.efficiency)
		fitness += self.adaptability_component(behavior_stats)
		fitness -= self.penalties(behavior_stats, performance)
		return fitness

	def victory_component(self, outcome: GameOutcome, performance: PerformanceSummary) -> float:
		"""Up to the victory weight, plus a bonus for winning early."""
		if not outcome.ended:
			return min(100.0, performance.wave * 2.0)
		if outcome.won:
			quick_win_bonus = max(0.0, (60.0 - performance.wave) * 2.0)
			return self.victory_weight + quick_win_bonus
		return min(50.0, performance.wave * 1.0)

	def survival_component(self, performance: PerformanceSummary) -> float:
		half = self.survival_weight / 2.0
		wave_points = min(half, performance.wave * 2.0)
		# One point per simulated minute
		time_points = min(half, performance.elapsed_time / 60.0)
		return wave_points + time_points

	def economy_component(self, economy: EconomySummary) -> float:
		score = economy.economy_efficiency * 50.0
		score += min(40.0, economy.average_production_rate * 4.0)

		if economy.total_items_produced > 1000:
			score += 30.0
		elif economy.total_items_produced > 100:
			score += 15.0

		if economy.total_resources_produced > 5000:
			score += 30.0
		elif economy.total_resources_produced > 1000:
			score += 15.0

		return min(self.economy_weight, score)

	def power_component(self, power: PowerSummary) -> float:
		score = power.efficiency * 40.0

		if power.shortage_events == 0:
			score += 30.0
		elif power.shortage_events < 3:
			score += 20.0
		elif power.shortage_events < 10:
			score += 10.0

		if power.total_generated > 0:
			generation_ratio = power.current_generation / max(1.0, power.current_consumption)
			score += min(30.0, generation_ratio * 15.0)

		return min(self.power_weight, score)

	def defense_component(self, combat: CombatSummary) -> float:
		score = 0.0
		if combat.damage_ratio > 2.0:
			score += 30.0
		elif combat.damage_ratio > 1.0:
			score += combat.damage_ratio * 15.0

		score += min(25.0, combat.enemy_units_destroyed * 0.5)
		# survival rate is a percentage
		score += combat.structure_survival_rate * 0.25

		return min(self.defense_weight, score)

	def efficiency_component(self, efficiency: EfficiencySummary) -> float:
		score = efficiency.overall_efficiency * 25.0
		score += efficiency.building_efficiency * 15.0
		score += efficiency.uptime * 10.0
		return min(self.efficiency_weight, score)

	def adaptability_component(self, behavior_stats: BehaviorStats) -> float:
		score = behavior_stats.build_success_rate * 10.0
		score += behavior_stats.category_diversity() * 2.5
		return min(self.adaptability_weight, score)

	def penalties(self, behavior_stats: BehaviorStats, performance: PerformanceSummary) -> float:
		penalty = behavior_stats.error_count * self.error_penalty
		penalty += behavior_stats.build_failures * self.failure_penalty

		# Stagnation: fewer builds than minutes played
		minutes = int(performance.elapsed_time // 60)
		if minutes > self.stagnation_grace_minutes and behavior_stats.total_built < minutes:
			penalty += float(minutes - behavior_stats.total_built)

		return penalty


class SimpleFitness(FitnessEvaluator):
	"""
	Victory and survival focused fitness.

	Purpose:
		Baseline weighting for quick experiments.
	"""

	def __init__(self, victory_reward: float = 500.0, wave_reward: float = 5.0):
		self.victory_reward = victory_reward
		self.wave_reward = wave_reward

	def evaluate(self, outcome, performance, genome, behavior_stats) -> float:
		fitness = self.victory_reward if outcome.won else 0.0
		fitness += performance.wave * self.wave_reward
		fitness += performance.economy.economy_efficiency * 100.0
		fitness += performance.power.efficiency * 50.0
		return fitness


class CombatFitness(FitnessEvaluator):
	"""Combat-weighted fitness for training aggressive agents."""

	def __init__(self, victory_reward: float = 400.0):
		self.victory_reward = victory_reward

	def evaluate(self, outcome, performance, genome, behavior_stats) -> float:
		combat = performance.combat
		fitness = self.victory_reward if outcome.won else 0.0
		fitness += combat.enemy_units_destroyed * 2.0
		fitness += combat.damage_ratio * 100.0
		fitness += combat.structure_survival_rate * 2.0
		fitness += behavior_stats.defense_built * 10.0
		fitness += performance.wave * 3.0
		return fitness


class EconomicFitness(FitnessEvaluator):
	"""Economy-weighted fitness for training resource-efficient agents."""

	def __init__(self, victory_reward: float = 300.0):
		self.victory_reward = victory_reward

	def evaluate(self, outcome, performance, genome, behavior_stats) -> float:
		economy = performance.economy
		fitness = self.victory_reward if outcome.won else 0.0
		fitness += economy.economy_efficiency * 200.0
		fitness += economy.average_production_rate * 5.0
		fitness += min(200.0, economy.total_resources_produced / 50.0)
		fitness += behavior_stats.mining_built * 15.0
		fitness += behavior_stats.transport_built * 10.0
		fitness += performance.power.efficiency * 100.0
		return fitness


FITNESS_EVALUATORS: Dict[str, Type[FitnessEvaluator]] = {
	"comprehensive": ComprehensiveFitness,
	"simple": SimpleFitness,
	"combat": CombatFitness,
	"economy": EconomicFitness,
}


def create_fitness_evaluator(name: str = "comprehensive", **kwargs) -> FitnessEvaluator:
	"""
	Create a fitness evaluator by name.

	Args:
		name: One of FITNESS_EVALUATORS
		**kwargs: Constructor arguments of the chosen weighting

	Returns:
		FitnessEvaluator instance

	Raises:
		ValueError: If the name is unknown
	"""
	try:
		cls = FITNESS_EVALUATORS[name]
	except KeyError:
		raise ValueError(f"Unknown fitness type: {name}") from None
	return cls(**kwargs)
