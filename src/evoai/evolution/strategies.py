"""
Reproduction strategy for the genome population.
"""
import logging
from typing import List, Mapping, Optional, Sequence

import numpy as np

from evoai.evolution.genome import Genome

logger = logging.getLogger(__name__)


class GeneticAlgorithm:
	"""
	Generational genetic algorithm over Genomes.

	Purpose:
		Build the next population from the current one and its scores.

	Workflow:
		1. Copy the top elite_count genomes unchanged
		2. Draw two parents by tournament selection
		3. Cross them over (crossover_rate) or clone the first parent
		4. Mutate the child and append it
		5. Repeat 2-4 until the population is full
	"""
	def __init__(
		self,
		population_size: int = 20,
		elite_count: int = 4,
		tournament_size: int = 3,
		crossover_rate: float = 0.7,
		mutation_rate: float = 0.15,
		rng: Optional[np.random.Generator] = None,
	):
		"""
		Args:
			population_size: Population size N, constant across the run
			elite_count: Genomes preserved unchanged (K)
			tournament_size: Genomes sampled per tournament (T)
			crossover_rate: Probability of crossover instead of cloning
			mutation_rate: Per-trait mutation probability
			rng: Random generator shared by every operator
		"""
		self.population_size = population_size
		self.elite_count = min(elite_count, population_size)
		self.tournament_size = tournament_size
		self.crossover_rate = crossover_rate
		self.mutation_rate = mutation_rate
		self.rng = rng if rng is not None else np.random.default_rng()

	def initial_population(self, catalog: Optional[Mapping[str, float]] = None) -> List[Genome]:
		"""
		Create the first generation.

		Args:
			catalog: Entity identifier -> base priority (None: built-in catalog)

		Returns:
			population_size random genomes
		"""
		return [Genome.random(self.rng, catalog) for _ in range(self.population_size)]

	def rank(self, scores: Sequence[float]) -> List[int]:
		"""Indices sorted by descending fitness, earlier index first on ties."""
		return sorted(range(len(scores)), key=lambda i: -scores[i])

	def select_elites(self, population: Sequence[Genome], scores: Sequence[float]) -> List[Genome]:
		"""
		Copies of the top elite_count genomes.

		Args:
			population: Current generation
			scores: Fitness per genome, same order

		Returns:
			Elite genomes, best first
		"""
		return [population[i].copy() for i in self.rank(scores)[:self.elite_count]]

	def tournament_select(self, population: Sequence[Genome], scores: Sequence[float]) -> Genome:
		"""
		Tournament selection.

		Samples tournament_size genomes uniformly with replacement and keeps
		the fittest; ties go to the first drawn.

		Args:
			population: Current generation
			scores: Fitness per genome, same order

		Returns:
			Winning genome (not copied)
		"""
		best_index = None
		for _ in range(self.tournament_size):
			index = int(self.rng.integers(len(population)))
			if best_index is None or scores[index] > scores[best_index]:
				best_index = index
		return population[best_index]

	def evolve(self, population: Sequence[Genome], scores: Sequence[float]) -> List[Genome]:
		"""
		Evolves the population to the next generation.

		Args:
			population: Current generation
			scores: Fitness per genome, same order

		Returns:
			List of population_size new genomes, elites first

		Raises:
			ValueError: If population and scores differ in length, or the population is empty
		"""
		if len(population) != len(scores):
			raise ValueError(
				f"Population size {len(population)} does not match score count {len(scores)}"
			)
		if not population:
			raise ValueError("Cannot evolve an empty population")

		new_population = self.select_elites(population, scores)

		while len(new_population) < self.population_size:
			parent1 = self.tournament_select(population, scores)
			parent2 = self.tournament_select(population, scores)

			if self.rng.random() < self.crossover_rate:
				child = Genome.crossover(parent1, parent2, self.rng)
			else:
				child = parent1.copy()

			new_population.append(child.mutate(self.mutation_rate, self.rng))

		return new_population
