"""
In-process synthetic simulation.

Produces a small, seeded tower-defense world that implements the
simulation boundary contracts, for quick runs, benchmarks and tests
without a game server.

Workflow:
	1. SyntheticSimulation.start_episode() lays out a grid with ore tiles
	   and a starting core
	2. Every step() advances simulated time: drills mine, generators
	   feed consumers, crafters refine, factories train units
	3. Waves spawn on a fixed spacing and are resolved against the
	   agent's defenses
	4. Telemetry is derived from what the agent has built
"""

import logging
import math
import threading
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Sequence

import numpy as np

from evoai.simulation.protocol import (
	AgentHandle,
	EpisodeHandle,
	SimulationController,
	Cell,
	GameOutcome,
	PerformanceSummary,
	EconomySummary,
	PowerSummary,
	CombatSummary,
	EfficiencySummary,
	CATEGORY_CORE,
	CATEGORY_DRILL,
	CATEGORY_GENERATOR,
	CATEGORY_POWER_NODE,
	CATEGORY_CONVEYOR,
	CATEGORY_TURRET,
	CATEGORY_CRAFTER,
	CATEGORY_UNIT_FACTORY,
	CATEGORY_RECONSTRUCTOR,
	CATEGORY_STORAGE,
	CATEGORY_UTILITY,
)

logger = logging.getLogger(__name__)

STANDARD_MAPS = (
	"Ancient Caldera",
	"Frozen Forest",
	"Biomass Synthesis Facility",
	"Craters",
	"Ruinous Shores",
	"Windswept Islands",
	"Tar Fields",
	"Impact 0078",
	"Desolate Rift",
	"Planetary Launch Terminal",
)

PLAYER_TEAM = "sharded"
ENEMY_TEAM = "crux"

# Seconds each wave stays on the field
WAVE_DURATION = 20.0
UNIT_TRAIN_TIME = 30.0
UNIT_DPS = 4.0
MANUAL_MINING_RATE = 0.7
CORE_HEALTH = 4000.0
CORE_CAPACITY = 4000


@dataclass(frozen=True)
class EntitySpec:
	"""
	Static properties of a buildable entity.

	Args:
		category: Entity category
		cost: Items spent on placement
		power: Generation (> 0) or consumption (< 0) per second
		output: Items mined or crafted per second
		range: Turret range in cells
		dps: Turret damage per second
		capacity: Extra storage capacity
		unlock_wave: Wave from which the entity is buildable
	"""
	category: str
	cost: int = 10
	power: float = 0.0
	output: float = 0.0
	range: float = 0.0
	dps: float = 0.0
	capacity: int = 0
	unlock_wave: int = 0


CATALOG: Dict[str, EntitySpec] = {
	"core-shard": EntitySpec(CATEGORY_CORE, cost=0, capacity=CORE_CAPACITY),
	"mechanical-drill": EntitySpec(CATEGORY_DRILL, cost=12, output=0.26),
	"pneumatic-drill": EntitySpec(CATEGORY_DRILL, cost=18, output=0.36, unlock_wave=3),
	"laser-drill": EntitySpec(CATEGORY_DRILL, cost=35, power=-1.1, output=0.9, unlock_wave=10),
	"combustion-generator": EntitySpec(CATEGORY_GENERATOR, cost=28, power=1.0),
	"solar-panel": EntitySpec(CATEGORY_GENERATOR, cost=15, power=0.1),
	"steam-generator": EntitySpec(CATEGORY_GENERATOR, cost=35, power=5.5, unlock_wave=10),
	"power-node": EntitySpec(CATEGORY_POWER_NODE, cost=1),
	"battery": EntitySpec(CATEGORY_POWER_NODE, cost=5, unlock_wave=5),
	"conveyor": EntitySpec(CATEGORY_CONVEYOR, cost=1),
	"titanium-conveyor": EntitySpec(CATEGORY_CONVEYOR, cost=2, unlock_wave=8),
	"duo": EntitySpec(CATEGORY_TURRET, cost=35, range=8.5, dps=9.0),
	"scatter": EntitySpec(CATEGORY_TURRET, cost=85, range=27.5, dps=7.0, unlock_wave=4),
	"hail": EntitySpec(CATEGORY_TURRET, cost=40, range=17.5, dps=6.0, unlock_wave=2),
	"lancer": EntitySpec(CATEGORY_TURRET, cost=100, power=-2.0, range=20.6, dps=20.0, unlock_wave=12),
	"ripple": EntitySpec(CATEGORY_TURRET, cost=150, range=36.0, dps=40.0, unlock_wave=25),
	"graphite-press": EntitySpec(CATEGORY_CRAFTER, cost=75, output=0.5),
	"silicon-smelter": EntitySpec(CATEGORY_CRAFTER, cost=30, power=-0.5, output=0.7, unlock_wave=6),
	"kiln": EntitySpec(CATEGORY_CRAFTER, cost=60, power=-0.6, output=0.8, unlock_wave=9),
	"ground-factory": EntitySpec(CATEGORY_UNIT_FACTORY, cost=50, power=-1.2, unlock_wave=5),
	"air-factory": EntitySpec(CATEGORY_UNIT_FACTORY, cost=60, power=-1.2, unlock_wave=8),
	"additive-reconstructor": EntitySpec(CATEGORY_RECONSTRUCTOR, cost=200, power=-3.0, unlock_wave=20),
	"container": EntitySpec(CATEGORY_STORAGE, cost=100, capacity=300),
	"vault": EntitySpec(CATEGORY_STORAGE, cost=250, capacity=1000, unlock_wave=15),
	"mender": EntitySpec(CATEGORY_UTILITY, cost=25, power=-0.3),
}


@dataclass
class Building:
	entity: str
	spec: EntitySpec


class SyntheticEpisode(EpisodeHandle):
	"""
	One synthetic game.

	Args:
		map_name: Map label (only seeds the layout)
		rng: Random generator owned by this episode
		grid_radius: Half-size of the square grid
		ore_density: Fraction of cells holding ore
		wave_spacing: Simulated seconds between waves
		win_wave: Wave to survive for a win
		enemy_strength: Health of the first wave
		time_scale: Simulated seconds per step() second
		starting_items: Items in the core at start
	"""

	def __init__(
		self,
		map_name: str,
		rng: np.random.Generator,
		grid_radius: int = 24,
		ore_density: float = 0.08,
		wave_spacing: float = 60.0,
		win_wave: int = 30,
		enemy_strength: float = 60.0,
		time_scale: float = 10.0,
		starting_items: int = 300,
	):
		self.map_name = map_name
		self.rng = rng
		self.grid_radius = grid_radius
		self.wave_spacing = wave_spacing
		self.win_wave = win_wave
		self.enemy_strength = enemy_strength
		self.time_scale = time_scale

		self.buildings: Dict[Cell, Building] = {}
		self.ore: set = set()
		self._scatter_ore(ore_density)

		self.core: Optional[Cell] = (0, 0)
		self.buildings[(0, 0)] = Building("core-shard", CATALOG["core-shard"])
		self.core_health = CORE_HEALTH
		self.spawn: Cell = self._pick_spawn()

		self.time = 0.0
		self.wave = 0
		self.items = float(starting_items)
		self.agent: Optional["SyntheticAgent"] = None
		self.closed = False

		# Running totals
		self.mined = 0.0
		self.crafted = 0.0
		self.spent = 0.0
		self.wasted = 0.0
		self.power_generated = 0.0
		self.power_consumed = 0.0
		self.current_generation = 0.0
		self.current_consumption = 0.0
		self.efficiency = 1.0
		self.shortage_events = 0
		self.powered_time = 0.0
		self.damage_dealt = 0.0
		self.damage_received = 0.0
		self.enemies_destroyed = 0
		self.units_lost = 0
		self.structures_built = 0
		self.structures_lost = 0
		self.placements = 0
		self.placement_failures = 0

		self.units = 0
		self.unit_progress = 0.0
		self.enemies_alive = 0
		self.enemy_health = 0.0
		self.wave_started = 0.0
		self.manual_mining: Optional[Cell] = None
		self.target: Optional[Cell] = None
		self.units_engaged = False

	def _scatter_ore(self, density: float) -> None:
		r = self.grid_radius
		for x in range(-r, r + 1):
			for y in range(-r, r + 1):
				if max(abs(x), abs(y)) > 1 and self.rng.random() < density:
					self.ore.add((x, y))

	def _pick_spawn(self) -> Cell:
		angle = self.rng.uniform(0.0, 2.0 * math.pi)
		r = self.grid_radius
		return (int(round(math.cos(angle) * r)), int(round(math.sin(angle) * r)))

	# ===== Contracts =====

	def create_agent(self, name: str, team: str) -> AgentHandle:
		self.agent = SyntheticAgent(self, name, team)
		return self.agent

	def _survived(self) -> bool:
		return self.core is not None and self.wave >= self.win_wave and self.enemies_alive == 0

	def is_episode_over(self) -> bool:
		return self.core is None or self._survived()

	def get_outcome(self) -> GameOutcome:
		if self.core is None:
			return GameOutcome(True, False, ENEMY_TEAM, "core destroyed", self.wave)
		if self._survived():
			return GameOutcome(True, True, PLAYER_TEAM, "waves survived", self.wave)
		return GameOutcome(False, False, "", "", self.wave)

	def get_performance_summary(self) -> PerformanceSummary:
		elapsed = max(1.0, self.time)
		produced = self.mined + self.crafted
		economy_efficiency = 1.0 - self.wasted / self.mined if self.mined > 0 else 0.0
		building_efficiency = 1.0 - self.placement_failures / self.placements if self.placements else 0.0
		survival = 100.0
		if self.structures_built > 0:
			survival = 100.0 * (self.structures_built - self.structures_lost) / self.structures_built
		uptime = self.powered_time / self.time if self.time > 0 else 1.0

		return PerformanceSummary(
			wave=self.wave,
			elapsed_time=self.time,
			economy=EconomySummary(
				total_items_produced=int(produced),
				total_items_consumed=int(self.spent),
				total_resources_produced=int(self.mined),
				average_production_rate=produced / elapsed,
				economy_efficiency=economy_efficiency,
			),
			power=PowerSummary(
				total_generated=self.power_generated,
				total_consumed=self.power_consumed,
				current_generation=self.current_generation,
				current_consumption=self.current_consumption,
				efficiency=self.efficiency,
				shortage_events=self.shortage_events,
			),
			combat=CombatSummary(
				total_damage_dealt=self.damage_dealt,
				total_damage_received=self.damage_received,
				damage_ratio=self.damage_dealt / max(1.0, self.damage_received),
				enemy_units_destroyed=self.enemies_destroyed,
				player_units_lost=self.units_lost,
				structure_survival_rate=survival,
			),
			efficiency=EfficiencySummary(
				power_efficiency=self.efficiency,
				building_efficiency=building_efficiency,
				resource_efficiency=economy_efficiency,
				overall_efficiency=(self.efficiency + building_efficiency + economy_efficiency) / 3.0,
				uptime=uptime,
			),
		)

	def power_efficiency(self) -> float:
		return self.efficiency

	def capacity(self) -> int:
		return sum(b.spec.capacity for b in self.buildings.values())

	def is_storage_full(self) -> bool:
		return self.items >= self.capacity()

	def step(self, dt: float) -> None:
		"""Advance the world by dt * time_scale simulated seconds."""
		if self.closed or self.is_episode_over():
			return
		sim_dt = dt * self.time_scale
		self._tick_power(sim_dt)
		self._tick_economy(sim_dt)
		self._tick_units(sim_dt)
		self.time += sim_dt
		self._tick_waves(sim_dt)

	def close(self) -> None:
		self.closed = True

	# ===== World update =====

	def _of_category(self, category: str) -> List[Building]:
		return [b for b in self.buildings.values() if b.spec.category == category]

	def _tick_power(self, dt: float) -> None:
		generation = sum(b.spec.power for b in self.buildings.values() if b.spec.power > 0)
		consumption = -sum(b.spec.power for b in self.buildings.values() if b.spec.power < 0)
		previous = self.efficiency
		self.efficiency = min(1.0, generation / consumption) if consumption > 0 else 1.0
		if self.efficiency < 1.0 <= previous:
			self.shortage_events += 1
		if self.efficiency >= 1.0:
			self.powered_time += dt

		self.current_generation = generation
		self.current_consumption = consumption
		self.power_generated += generation * dt
		self.power_consumed += min(generation, consumption) * dt

	def _powered(self, spec: EntitySpec) -> float:
		return self.efficiency if spec.power < 0 else 1.0

	def _tick_economy(self, dt: float) -> None:
		mined = 0.0
		for cell, building in self.buildings.items():
			if building.spec.category != CATEGORY_DRILL:
				continue
			rate = building.spec.output * self._powered(building.spec)
			if not self._feeds_core(cell):
				rate *= 0.6
			mined += rate * dt
		if self.manual_mining is not None:
			mined += MANUAL_MINING_RATE * dt
		self._store(mined)
		self.mined += mined

		for building in self._of_category(CATEGORY_CRAFTER):
			wanted = building.spec.output * self._powered(building.spec) * dt
			used = min(self.items, wanted * 2.0)
			self.items -= used
			self.spent += used
			self.crafted += used / 2.0

	def _feeds_core(self, cell: Cell) -> bool:
		"""A drill feeds the core when it touches the core or a conveyor."""
		x, y = cell
		for nx, ny in ((x + 1, y), (x - 1, y), (x, y + 1), (x, y - 1)):
			neighbor = self.buildings.get((nx, ny))
			if neighbor is not None and neighbor.spec.category in (CATEGORY_CORE, CATEGORY_CONVEYOR):
				return True
		return False

	def _store(self, amount: float) -> None:
		room = max(0.0, self.capacity() - self.items)
		stored = min(room, amount)
		self.items += stored
		self.wasted += amount - stored

	def _tick_units(self, dt: float) -> None:
		factories = self._of_category(CATEGORY_UNIT_FACTORY)
		if not factories:
			return
		self.unit_progress += sum(self._powered(f.spec) for f in factories) * dt
		while self.unit_progress >= UNIT_TRAIN_TIME:
			self.unit_progress -= UNIT_TRAIN_TIME
			self.units += 1
		for building in self._of_category(CATEGORY_RECONSTRUCTOR):
			self.unit_progress += 0.5 * self._powered(building.spec) * dt

	def _defense_dps(self) -> float:
		dps = sum(b.spec.dps * self._powered(b.spec) for b in self._of_category(CATEGORY_TURRET))
		unit_dps = self.units * UNIT_DPS
		if self.units_engaged:
			unit_dps *= 1.2
		return dps + unit_dps

	def _tick_waves(self, dt: float) -> None:
		if self.enemies_alive > 0 and self.time - self.wave_started >= WAVE_DURATION:
			self._resolve_wave()
		while self.core is not None and self.wave < self.win_wave and self.time >= (self.wave + 1) * self.wave_spacing:
			self._spawn_wave()
			if self.time - self.wave_started >= WAVE_DURATION:
				self._resolve_wave()

	def _spawn_wave(self) -> None:
		self.wave += 1
		self.wave_started = self.wave * self.wave_spacing
		self.enemy_health = self.enemy_strength * self.wave ** 1.3
		self.enemies_alive = 2 + self.wave // 2
		logger.debug(f"[{self.map_name}] wave {self.wave}: {self.enemies_alive} enemies, {self.enemy_health:.0f} hp")

	def _resolve_wave(self) -> None:
		dealt = min(self.enemy_health, self._defense_dps() * WAVE_DURATION)
		health_per_enemy = self.enemy_health / max(1, self.enemies_alive)
		destroyed = int(dealt // health_per_enemy) if health_per_enemy > 0 else self.enemies_alive
		leftover = self.enemy_health - dealt

		self.damage_dealt += dealt
		self.enemies_destroyed += destroyed
		if leftover > 0:
			self.damage_received += leftover
			self._take_damage(leftover)

		self.enemies_alive = 0
		self.enemy_health = 0.0
		self.units_engaged = False

	def _take_damage(self, damage: float) -> None:
		lost_units = min(self.units, int(damage // 100))
		self.units -= lost_units
		self.units_lost += lost_units

		menders = len(self._of_category(CATEGORY_UTILITY))
		damage *= max(0.5, 1.0 - 0.05 * menders)

		# Buildings closest to the spawn fall first
		outer = sorted(
			(cell for cell, b in self.buildings.items() if b.spec.category != CATEGORY_CORE),
			key=lambda c: math.dist(c, self.spawn),
		)
		for cell in outer[: int(damage // 150)]:
			del self.buildings[cell]
			self.structures_lost += 1

		self.core_health -= damage
		if self.core_health <= 0 and self.core is not None:
			del self.buildings[self.core]
			self.core = None
			logger.debug(f"[{self.map_name}] core destroyed at wave {self.wave}")

	# ===== Actions =====

	def in_bounds(self, x: int, y: int) -> bool:
		return abs(x) <= self.grid_radius and abs(y) <= self.grid_radius

	def can_place(self, entity: str, x: int, y: int) -> bool:
		spec = CATALOG.get(entity)
		if spec is None or not self.in_bounds(x, y) or (x, y) in self.buildings:
			return False
		if spec.category == CATEGORY_DRILL:
			return (x, y) in self.ore
		if spec.category == CATEGORY_CORE:
			return self.core is None
		return True

	def place(self, entity: str, x: int, y: int) -> bool:
		self.placements += 1
		spec = CATALOG.get(entity)
		if spec is None or spec.unlock_wave > self.wave or not self.can_place(entity, x, y) or self.items < spec.cost:
			self.placement_failures += 1
			return False
		self.items -= spec.cost
		self.spent += spec.cost
		self.buildings[(x, y)] = Building(entity, spec)
		self.structures_built += 1
		if spec.category == CATEGORY_CORE:
			self.core = (x, y)
			self.core_health = CORE_HEALTH
		return True


class SyntheticAgent(AgentHandle):
	"""Agent handle bound to a SyntheticEpisode."""

	def __init__(self, episode: SyntheticEpisode, name: str, team: str):
		self.episode = episode
		self.name = name
		self.team = team

	def core_position(self) -> Optional[Cell]:
		return self.episode.core

	def available_entities(self, category: str) -> List[str]:
		wave = self.episode.wave
		return [name for name, spec in CATALOG.items() if spec.category == category and spec.unlock_wave <= wave]

	def describe_entity(self, entity: str) -> Dict[str, Any]:
		spec = CATALOG.get(entity)
		if spec is None:
			return {}
		return {"category": spec.category, "cost": spec.cost, "power": spec.power, "range": spec.range}

	def can_place(self, entity: str, x: int, y: int) -> bool:
		return self.episode.can_place(entity, x, y)

	def place_entity(self, entity: str, x: int, y: int, rotation: int = 0) -> bool:
		return self.episode.place(entity, x, y)

	def nearby_resources(self, x: int, y: int, radius: float) -> List[Cell]:
		cells = [c for c in self.episode.ore if c not in self.episode.buildings and math.dist(c, (x, y)) <= radius]
		return sorted(cells, key=lambda c: (math.dist(c, (x, y)), c))

	def nearby_buildings(self, x: int, y: int, radius: float, category: Optional[str] = None) -> List[Cell]:
		cells = [
			cell for cell, b in self.episode.buildings.items()
			if math.dist(cell, (x, y)) <= radius and (category is None or b.spec.category == category)
		]
		return sorted(cells, key=lambda c: (math.dist(c, (x, y)), c))

	def nearby_units(self, x: int, y: int, radius: float, enemy: bool = True) -> List[Cell]:
		episode = self.episode
		if enemy:
			if episode.enemies_alive == 0 or math.dist(episode.spawn, (x, y)) > radius + episode.grid_radius:
				return []
			return [episode.spawn] * episode.enemies_alive
		if episode.core is None:
			return []
		return [episode.core] * episode.units

	def start_mining(self, x: int, y: int) -> None:
		if (x, y) in self.episode.ore:
			self.episode.manual_mining = (x, y)

	def stop_mining(self) -> None:
		self.episode.manual_mining = None

	def set_target(self, x: int, y: int) -> None:
		self.episode.target = (x, y)
		if self.episode.units > 0 and self.episode.enemies_alive > 0:
			self.episode.units_engaged = True

	def move_to(self, x: int, y: int) -> None:
		self.episode.target = (x, y)


class SyntheticSimulation(SimulationController):
	"""
	Controller producing seeded synthetic episodes.

	Each started episode gets its own random generator, drawn from the
	controller's generator under a lock, so concurrent workers never
	share world state.

	Args:
		seed: Seed for the layout generators (None: nondeterministic)
		maps: Map names (default: STANDARD_MAPS)
		**episode_kwargs: Defaults for SyntheticEpisode; rules override them per episode
	"""

	def __init__(self, seed: Optional[int] = None, maps: Optional[Sequence[str]] = None, **episode_kwargs):
		self.rng = np.random.default_rng(seed)
		self.maps = tuple(maps) if maps else STANDARD_MAPS
		self.episode_kwargs = episode_kwargs
		self._lock = threading.Lock()
		self.episodes_started = 0

	def available_maps(self) -> Sequence[str]:
		return self.maps

	def start_episode(self, map_name: str, rules: Optional[Mapping[str, Any]] = None) -> SyntheticEpisode:
		"""
		Start a fresh episode.

		Args:
			map_name: One of available_maps()
			rules: Overrides of the SyntheticEpisode parameters

		Raises:
			ValueError: If the map is unknown
		"""
		if map_name not in self.maps:
			raise ValueError(f"Unknown map: {map_name}")
		with self._lock:
			seed = int(self.rng.integers(2**32))
			self.episodes_started += 1
		kwargs = {**self.episode_kwargs, **(rules or {})}
		return SyntheticEpisode(map_name, np.random.default_rng(seed), **kwargs)


def create_controller(seed: Optional[int] = None, **kwargs) -> SyntheticSimulation:
	"""Factory used by the training script's --controller option."""
	return SyntheticSimulation(seed=seed, **kwargs)
