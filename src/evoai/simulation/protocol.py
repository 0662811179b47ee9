"""
Simulation Boundary Protocol

Defines the contracts the evolution engine consumes from the external
simulation / controller layer, and the telemetry records it reads back.

Purpose:
	Keep the engine independent from any concrete game server. A real
	controller and the in-process SyntheticSimulation both implement the
	same abstract classes.

Workflow:
	1. SimulationController.start_episode() returns an EpisodeHandle
	2. EpisodeHandle.create_agent() returns an AgentHandle
	3. The behavior executor drives the AgentHandle
	4. The worker reads GameOutcome / PerformanceSummary at the end
"""

import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field, fields, asdict
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

Cell = Tuple[int, int]

# Entity categories the executor asks the simulation about
CATEGORY_CORE = "core"
CATEGORY_DRILL = "drill"
CATEGORY_GENERATOR = "generator"
CATEGORY_POWER_NODE = "power-node"
CATEGORY_CONVEYOR = "conveyor"
CATEGORY_TURRET = "turret"
CATEGORY_CRAFTER = "crafter"
CATEGORY_UNIT_FACTORY = "unit-factory"
CATEGORY_RECONSTRUCTOR = "reconstructor"
CATEGORY_STORAGE = "storage"
CATEGORY_UTILITY = "utility"


TRUE_STRINGS = ("true", "1", "yes")
FALSE_STRINGS = ("false", "0", "no", "")


def _parse_bool(value: Any) -> bool:
	"""
	Read a boolean telemetry flag.

	Accepts bools, numbers and the strings in TRUE_STRINGS / FALSE_STRINGS
	(case-insensitive).

	Raises:
		ValueError: For any other value.
	"""
	if isinstance(value, (bool, int, float)):
		return bool(value)
	if isinstance(value, str):
		text = value.strip().lower()
		if text in TRUE_STRINGS:
			return True
		if text in FALSE_STRINGS:
			return False
	raise ValueError(f"Not a boolean: {value!r}")


def _coerce(cls, data: Mapping[str, Any]):
	"""
	Build a flat telemetry dataclass from a mapping.

	Args:
		cls: Dataclass type
		data: Source mapping; unknown keys are ignored, missing keys use defaults

	Returns:
		Instance of cls

	Raises:
		ValueError: If data is not a mapping or a value has the wrong type.
	"""
	if not isinstance(data, Mapping):
		raise ValueError(f"{cls.__name__} expects a mapping, got {type(data).__name__}")

	kwargs = {}
	for f in fields(cls):
		if f.name not in data:
			continue
		value = data[f.name]
		try:
			if f.type in (float, "float"):
				kwargs[f.name] = float(value)
			elif f.type in (int, "int"):
				kwargs[f.name] = int(value)
			elif f.type in (bool, "bool"):
				kwargs[f.name] = _parse_bool(value)
			else:
				kwargs[f.name] = value
		except (TypeError, ValueError) as e:
			raise ValueError(f"Invalid {cls.__name__}.{f.name}: {value!r}") from e
	return cls(**kwargs)


# ===== Telemetry =====

@dataclass
class GameOutcome:
	"""
	Outcome of one episode.

	Args:
		ended: Whether the game reached a terminal state
		won: Whether the agent's team won
		winner_id: Identifier of the winning team (empty if none)
		end_reason: Free-form reason reported by the simulation
		final_wave: Last wave reached
	"""
	ended: bool = False
	won: bool = False
	winner_id: str = ""
	end_reason: str = ""
	final_wave: int = 0

	@classmethod
	def from_dict(cls, data: Mapping[str, Any]) -> "GameOutcome":
		return _coerce(cls, data)


@dataclass
class EconomySummary:
	"""Production and throughput telemetry."""
	total_items_produced: int = 0
	total_items_consumed: int = 0
	total_resources_produced: int = 0
	average_production_rate: float = 0.0
	economy_efficiency: float = 0.0

	@classmethod
	def from_dict(cls, data: Mapping[str, Any]) -> "EconomySummary":
		return _coerce(cls, data)


@dataclass
class PowerSummary:
	"""Power network telemetry."""
	total_generated: float = 0.0
	total_consumed: float = 0.0
	current_generation: float = 0.0
	current_consumption: float = 0.0
	efficiency: float = 0.0
	shortage_events: int = 0

	@classmethod
	def from_dict(cls, data: Mapping[str, Any]) -> "PowerSummary":
		return _coerce(cls, data)


@dataclass
class CombatSummary:
	"""Combat and defense telemetry."""
	total_damage_dealt: float = 0.0
	total_damage_received: float = 0.0
	damage_ratio: float = 0.0
	enemy_units_destroyed: int = 0
	player_units_lost: int = 0
	structure_survival_rate: float = 0.0  # percent, 0-100

	@classmethod
	def from_dict(cls, data: Mapping[str, Any]) -> "CombatSummary":
		return _coerce(cls, data)


@dataclass
class EfficiencySummary:
	"""Aggregate efficiency telemetry, all ratios in [0, 1]."""
	power_efficiency: float = 0.0
	building_efficiency: float = 0.0
	resource_efficiency: float = 0.0
	overall_efficiency: float = 0.0
	uptime: float = 0.0

	@classmethod
	def from_dict(cls, data: Mapping[str, Any]) -> "EfficiencySummary":
		return _coerce(cls, data)


@dataclass
class PerformanceSummary:
	"""
	Performance telemetry for an episode.

	Args:
		wave: Current wave
		elapsed_time: Simulated seconds since the episode started
		economy: Economy section
		power: Power section
		combat: Combat section
		efficiency: Efficiency section
	"""
	wave: int = 0
	elapsed_time: float = 0.0
	economy: EconomySummary = field(default_factory=EconomySummary)
	power: PowerSummary = field(default_factory=PowerSummary)
	combat: CombatSummary = field(default_factory=CombatSummary)
	efficiency: EfficiencySummary = field(default_factory=EfficiencySummary)

	@classmethod
	def from_dict(cls, data: Mapping[str, Any]) -> "PerformanceSummary":
		"""
		Build from nested mappings (as returned by a JSON stats service).

		Raises:
			ValueError: If any section is malformed.
		"""
		if not isinstance(data, Mapping):
			raise ValueError(f"PerformanceSummary expects a mapping, got {type(data).__name__}")
		try:
			return cls(
				wave=int(data.get("wave", 0)),
				elapsed_time=float(data.get("elapsed_time", 0.0)),
				economy=EconomySummary.from_dict(data.get("economy", {})),
				power=PowerSummary.from_dict(data.get("power", {})),
				combat=CombatSummary.from_dict(data.get("combat", {})),
				efficiency=EfficiencySummary.from_dict(data.get("efficiency", {})),
			)
		except (TypeError, ValueError) as e:
			raise ValueError(f"Invalid PerformanceSummary: {e}") from e

	def to_dict(self) -> Dict[str, Any]:
		return asdict(self)


# ===== Boundary contracts =====

class AgentHandle(ABC):
	"""
	Action primitives for one agent inside an episode.

	Coordinates are integer grid cells.
	"""

	@abstractmethod
	def core_position(self) -> Optional[Cell]:
		"""Cell of the agent's primary structure, None if it has none."""

	@abstractmethod
	def available_entities(self, category: str) -> List[str]:
		"""Entity types of a category the agent can currently build."""

	def describe_entity(self, entity: str) -> Dict[str, Any]:
		"""Static properties of an entity type (e.g. {"range": 11.0})."""
		return {}

	@abstractmethod
	def can_place(self, entity: str, x: int, y: int) -> bool:
		"""Whether the cell is a legal placement for the entity."""

	@abstractmethod
	def place_entity(self, entity: str, x: int, y: int, rotation: int = 0) -> bool:
		"""Place an entity. Returns False if the simulation rejects it."""

	@abstractmethod
	def nearby_resources(self, x: int, y: int, radius: float) -> List[Cell]:
		"""Resource cells within radius."""

	@abstractmethod
	def nearby_buildings(self, x: int, y: int, radius: float, category: Optional[str] = None) -> List[Cell]:
		"""Cells of the agent's buildings within radius, optionally filtered by category."""

	@abstractmethod
	def nearby_units(self, x: int, y: int, radius: float, enemy: bool = True) -> List[Cell]:
		"""Positions of units within radius."""

	@abstractmethod
	def start_mining(self, x: int, y: int) -> None:
		"""Start manual resource extraction at a cell."""

	@abstractmethod
	def stop_mining(self) -> None:
		"""Stop manual resource extraction."""

	@abstractmethod
	def set_target(self, x: int, y: int) -> None:
		"""Set the combat target."""

	@abstractmethod
	def move_to(self, x: int, y: int) -> None:
		"""Move the agent's unit towards a cell."""


class EpisodeHandle(ABC):
	"""One running simulation episode."""

	@abstractmethod
	def create_agent(self, name: str, team: str) -> AgentHandle:
		"""Create the agent that will be driven by the executor."""

	@abstractmethod
	def is_episode_over(self) -> bool:
		"""Whether the simulation reports game over."""

	@abstractmethod
	def get_outcome(self) -> GameOutcome:
		"""Outcome telemetry."""

	@abstractmethod
	def get_performance_summary(self) -> PerformanceSummary:
		"""Performance telemetry."""

	def power_efficiency(self) -> float:
		"""Current power efficiency ratio."""
		return self.get_performance_summary().power.efficiency

	def is_power_shortage(self) -> bool:
		"""Whether the power network is currently short."""
		return self.power_efficiency() < 1.0

	@abstractmethod
	def is_storage_full(self) -> bool:
		"""Whether the agent's primary storage is at capacity."""

	def step(self, dt: float) -> None:
		"""
		Let the simulation advance by dt seconds.

		Real-time simulations advance on their own, so the default just
		sleeps. In-process simulations override this to tick directly.
		"""
		time.sleep(dt)

	def close(self) -> None:
		"""Release the episode's simulation resources."""


class SimulationController(ABC):
	"""Entry point into the simulation layer."""

	@abstractmethod
	def available_maps(self) -> Sequence[str]:
		"""Names of maps that can be started."""

	@abstractmethod
	def start_episode(self, map_name: str, rules: Optional[Mapping[str, Any]] = None) -> EpisodeHandle:
		"""Start a fresh episode on a map."""

	def shutdown(self) -> None:
		"""Release controller-wide resources."""
