"""
Genome encoding of an agent's strategy.

Purpose:
	A genome is a fixed set of named scalar traits plus a priority table
	over the catalog of buildable entity types. Both live in [0, 1].

Workflow:
	1. Create with Genome.random() or Genome.crossover()
	2. Derive offspring with mutate() / crossover()
	3. Read traits as attributes (genome.reaction_speed) when acting

Genomes are value objects: every operator returns a new instance.
"""

import math
from types import MappingProxyType
from typing import Dict, Iterable, List, Mapping, Optional, Sequence

import numpy as np

TRAIT_NAMES = (
	# Resource management
	"resource_conservation",
	"expansion_aggression",
	"power_buffer_target",
	# Combat
	"defensive_bias",
	"unit_production_priority",
	"combat_range_preference",
	# Economy
	"mining_focus",
	"production_chain_depth",
	"transport_efficiency",
	# Strategy
	"adaptability",
	"risk_tolerance",
	"planning_horizon",
	# Timing
	"reaction_speed",
	"building_pacing",
	"tech_progression",
	# Spatial organization
	"compactness",
	"symmetry_preference",
	"centralized_storage",
)

DEFAULT_TRAIT_VALUE = 0.5
DEFAULT_PRIORITY = 0.5

# Noise bounds for the genetic operators
PRIORITY_JITTER = 0.2
MUTATION_STEP = 0.1

DEFAULT_PRIORITIES: Dict[str, float] = {
	# Cores
	"core-shard": 0.8,
	"core-foundation": 0.85,
	"core-nucleus": 0.9,
	# Drills
	"mechanical-drill": 0.7,
	"pneumatic-drill": 0.75,
	"laser-drill": 0.85,
	"blast-drill": 0.9,
	# Power
	"combustion-generator": 0.6,
	"steam-generator": 0.7,
	"differential-generator": 0.75,
	"rtg-generator": 0.8,
	"solar-panel": 0.65,
	"large-solar-panel": 0.75,
	"power-node": 0.6,
	"power-node-large": 0.65,
	"battery": 0.55,
	# Crafting
	"graphite-press": 0.65,
	"multi-press": 0.7,
	"silicon-smelter": 0.7,
	"silicon-crucible": 0.75,
	"kiln": 0.6,
	"plastanium-compressor": 0.8,
	"phase-weaver": 0.85,
	# Turrets
	"duo": 0.6,
	"scatter": 0.65,
	"scorch": 0.6,
	"hail": 0.7,
	"wave": 0.7,
	"lancer": 0.75,
	"arc": 0.7,
	"swarmer": 0.8,
	"salvo": 0.75,
	"ripple": 0.9,
	"cyclone": 0.9,
	# Transport
	"conveyor": 0.5,
	"titanium-conveyor": 0.6,
	"junction": 0.55,
	"router": 0.5,
	"bridge-conveyor": 0.6,
	"mass-driver": 0.85,
	# Storage
	"container": 0.5,
	"vault": 0.6,
	# Units
	"ground-factory": 0.7,
	"air-factory": 0.75,
	"additive-reconstructor": 0.8,
	"multiplicative-reconstructor": 0.85,
	# Utility
	"mender": 0.6,
	"mend-projector": 0.75,
	"overdrive-projector": 0.8,
	"force-projector": 0.9,
}


def clamp_unit(value: float) -> float:
	"""Clamp a scalar into [0, 1] as a plain float."""
	return float(min(1.0, max(0.0, float(value))))


def _rng(rng: Optional[np.random.Generator]) -> np.random.Generator:
	return rng if rng is not None else np.random.default_rng()


class Genome:
	"""
	Heritable encoding of one agent's strategy.

	Purpose:
		Hold the 18 named traits and the entity priority table, and
		provide the genetic operators used by the evolution loop.

	Args:
		traits: Trait values by name. Missing traits default to 0.5.
		priorities: Entity identifier -> priority weight.

	Raises:
		ValueError: If an unknown trait name is supplied.
	"""

	__slots__ = ("_traits", "_priorities")

	def __init__(
		self,
		traits: Optional[Mapping[str, float]] = None,
		priorities: Optional[Mapping[str, float]] = None,
	):
		values = dict.fromkeys(TRAIT_NAMES, DEFAULT_TRAIT_VALUE)
		for name, value in (traits or {}).items():
			if name not in values:
				raise ValueError(f"Unknown trait: {name}")
			values[name] = clamp_unit(value)

		table = {key: clamp_unit(value) for key, value in (priorities or {}).items()}

		self._traits = MappingProxyType(values)
		self._priorities = MappingProxyType(table)

	# ===== Accessors =====

	@property
	def traits(self) -> Mapping[str, float]:
		"""Read-only view of the named traits."""
		return self._traits

	@property
	def priorities(self) -> Mapping[str, float]:
		"""Read-only view of the priority table."""
		return self._priorities

	def __getattr__(self, name: str) -> float:
		if name.startswith("_"):
			raise AttributeError(name)
		try:
			return self._traits[name]
		except KeyError:
			raise AttributeError(f"{type(self).__name__} has no trait '{name}'") from None

	def priority(self, entity: str) -> float:
		"""Priority of an entity type, 0.5 when it is not in the table."""
		return self._priorities.get(entity, DEFAULT_PRIORITY)

	def highest_priority(self, candidates: Iterable[str]) -> Optional[str]:
		"""
		Pick the candidate with the largest priority.

		Args:
			candidates: Entity identifiers, in preference order for ties.

		Returns:
			The winning identifier, or None if there are no candidates.
		"""
		best = None
		best_priority = -1.0
		for entity in candidates:
			value = self.priority(entity)
			if value > best_priority:
				best_priority = value
				best = entity
		return best

	# ===== Construction =====

	@classmethod
	def random(
		cls,
		rng: Optional[np.random.Generator] = None,
		catalog: Optional[Mapping[str, float]] = None,
	) -> "Genome":
		"""
		Create a genome with random traits.

		Purpose:
			Initial population member. Traits are uniform on [0, 1];
			priorities are the catalog defaults jittered by +/-20%.

		Args:
			rng: Random generator
			catalog: Entity identifier -> base priority (defaults to DEFAULT_PRIORITIES)

		Returns:
			New Genome
		"""
		rng = _rng(rng)
		catalog = DEFAULT_PRIORITIES if catalog is None else catalog

		traits = {name: rng.random() for name in TRAIT_NAMES}
		priorities = {
			entity: base + rng.uniform(-PRIORITY_JITTER, PRIORITY_JITTER)
			for entity, base in catalog.items()
		}
		return cls(traits, priorities)

	@classmethod
	def crossover(
		cls,
		parent1: "Genome",
		parent2: "Genome",
		rng: Optional[np.random.Generator] = None,
	) -> "Genome":
		"""
		Create a child from two parents.

		Purpose:
			One threshold is drawn for the whole trait block, so the child
			inherits all of its traits from a single parent. Priorities are
			inherited per entity with an independent coin flip.

		Args:
			parent1: First parent (its table defines the child's keys)
			parent2: Second parent
			rng: Random generator

		Returns:
			Child Genome
		"""
		rng = _rng(rng)

		donor = parent1 if rng.random() < 0.5 else parent2
		traits = dict(donor.traits)

		priorities = {}
		for entity, value in parent1.priorities.items():
			if rng.random() < 0.5:
				priorities[entity] = value
			else:
				priorities[entity] = parent2.priorities.get(entity, DEFAULT_PRIORITY)

		return cls(traits, priorities)

	def mutate(self, rate: float, rng: Optional[np.random.Generator] = None) -> "Genome":
		"""
		Return a mutated copy of this genome.

		Args:
			rate: Per-trait mutation probability. Priorities use rate / 2.
			rng: Random generator

		Returns:
			New Genome
		"""
		rng = _rng(rng)

		traits = dict(self._traits)
		for name in TRAIT_NAMES:
			if rng.random() < rate:
				traits[name] = traits[name] + rng.uniform(-MUTATION_STEP, MUTATION_STEP)

		priorities = dict(self._priorities)
		for entity in priorities:
			if rng.random() < rate * 0.5:
				priorities[entity] = priorities[entity] + rng.uniform(-MUTATION_STEP, MUTATION_STEP)

		return Genome(traits, priorities)

	def copy(self) -> "Genome":
		"""Clone this genome."""
		return Genome(self._traits, self._priorities)

	# ===== Diversity =====

	def to_vector(self) -> np.ndarray:
		"""Trait values as a vector in TRAIT_NAMES order."""
		return np.array([self._traits[name] for name in TRAIT_NAMES], dtype=float)

	def distance(self, other: "Genome") -> float:
		"""Euclidean distance over the named traits (priorities excluded)."""
		return float(np.linalg.norm(self.to_vector() - other.to_vector()))

	def diversity_bonus(self, population: Sequence["Genome"]) -> float:
		"""
		Diversity bonus relative to a population.

		Args:
			population: Genomes to compare against (self is skipped by identity)

		Returns:
			10 x the mean distance to the other members, 0 if there are none.
		"""
		others = [g for g in population if g is not self]
		if len(population) <= 1 or not others:
			return 0.0
		return 10.0 * sum(self.distance(g) for g in others) / len(others)

	# ===== Serialization =====

	def to_dict(self) -> Dict[str, Dict[str, float]]:
		"""Plain-dict form: {"traits": {...}, "priorities": {...}}."""
		return {
			"traits": dict(self._traits),
			"priorities": dict(self._priorities),
		}

	@classmethod
	def from_dict(cls, data: Mapping[str, Mapping[str, float]]) -> "Genome":
		"""Inverse of to_dict()."""
		return cls(data.get("traits", {}), data.get("priorities", {}))

	def trait_list(self) -> List[float]:
		"""Trait values in TRAIT_NAMES order."""
		return [self._traits[name] for name in TRAIT_NAMES]

	# ===== Value semantics =====

	def __eq__(self, other: object) -> bool:
		if not isinstance(other, Genome):
			return NotImplemented
		return dict(self._traits) == dict(other._traits) and dict(self._priorities) == dict(other._priorities)

	def __hash__(self) -> int:
		return hash((tuple(self.trait_list()), tuple(sorted(self._priorities.items()))))

	def __getstate__(self):
		return self.to_dict()

	def __setstate__(self, state):
		self._traits = MappingProxyType(dict(state["traits"]))
		self._priorities = MappingProxyType(dict(state["priorities"]))

	def __repr__(self) -> str:
		t = self._traits
		return (
			f"Genome(resource={t['resource_conservation']:.2f}, expansion={t['expansion_aggression']:.2f}, "
			f"power={t['power_buffer_target']:.2f}, defensive={t['defensive_bias']:.2f}, "
			f"reaction={t['reaction_speed']:.2f}, pacing={t['building_pacing']:.2f}, "
			f"priorities={len(self._priorities)})"
		)


def is_valid(genome: Genome) -> bool:
	"""True when every scalar of the genome is a finite value in [0, 1]."""
	values = list(genome.traits.values()) + list(genome.priorities.values())
	return all(math.isfinite(v) and 0.0 <= v <= 1.0 for v in values)
