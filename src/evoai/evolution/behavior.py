"""
Genome-driven behavior executor.

Purpose:
	Translate a Genome into concrete simulation actions once per update,
	following a coarse game-phase state machine.

Workflow:
	1. The episode loop calls update(now) every tick
	2. Reaction speed gates how often an update actually runs
	3. The current phase picks an ordered checklist of sub-behaviors
	4. Sub-behaviors queue build plans; the queue is drained at a rate
	   set by the building pacing trait
"""

import logging
import math
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Deque, Dict, Iterator, List, Optional, Set, Tuple

from evoai.evolution.genome import Genome
from evoai.simulation.protocol import (
	AgentHandle,
	EpisodeHandle,
	Cell,
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

# Placement search
DEFAULT_SEARCH_RADIUS = 12
RESOURCE_SCAN_RADIUS = 15.0
BASE_SCAN_RADIUS = 20.0
THREAT_SCAN_RADIUS = 25.0

# Turrets shorter than this are dropped by long-range preferring genomes
SHORT_RANGE_LIMIT = 10.0

# Pending plans allowed per queued action drained each update
QUEUE_DEPTH_PER_ACTION = 4


class Phase(Enum):
	"""Coarse strategic stage of an episode."""
	EARLY = "early"
	MID = "mid"
	LATE = "late"
	SURVIVAL = "survival"


@dataclass
class PhaseThresholds:
	"""
	Guards for phase transitions.

	Args:
		mid_wave: Wave required to leave EARLY
		mid_time: Simulated seconds required to leave EARLY
		late_wave: Wave required to leave MID
		late_time: Simulated seconds required to leave MID
		endgame_wave: Wave from which the agent stays in SURVIVAL
		min_power_efficiency: Below this the agent enters SURVIVAL
	"""
	mid_wave: int = 10
	mid_time: float = 300.0
	late_wave: int = 30
	late_time: float = 1200.0
	endgame_wave: int = 60
	min_power_efficiency: float = 0.3


def strategic_phase(current: Phase, wave: int, elapsed: float, thresholds: PhaseThresholds) -> Phase:
	"""
	Advance the strategic (non-emergency) phase.

	Progress is monotone: EARLY -> MID -> LATE, and each step needs both
	the wave and the elapsed-time guard to hold.

	Args:
		current: Current strategic phase (SURVIVAL is treated as EARLY)
		wave: Current wave
		elapsed: Simulated seconds elapsed
		thresholds: Transition guards

	Returns:
		The new strategic phase
	"""
	phase = Phase.EARLY if current is Phase.SURVIVAL else current
	if phase is Phase.EARLY and wave >= thresholds.mid_wave and elapsed >= thresholds.mid_time:
		phase = Phase.MID
	if phase is Phase.MID and wave >= thresholds.late_wave and elapsed >= thresholds.late_time:
		phase = Phase.LATE
	return phase


def is_emergency(power_efficiency: float, storage_full: bool, thresholds: PhaseThresholds) -> bool:
	"""Whether the agent must drop into SURVIVAL immediately."""
	return power_efficiency < thresholds.min_power_efficiency or storage_full


class PhaseMachine:
	"""
	Tracks the executor's phase.

	The strategic phase only moves forward. SURVIVAL overrides it while an
	emergency holds, and permanently from the endgame wave on.
	"""

	def __init__(self, thresholds: Optional[PhaseThresholds] = None):
		self.thresholds = thresholds or PhaseThresholds()
		self.strategic = Phase.EARLY
		self.current = Phase.EARLY

	def update(self, wave: int, elapsed: float, power_efficiency: float, storage_full: bool) -> Phase:
		self.strategic = strategic_phase(self.strategic, wave, elapsed, self.thresholds)
		if wave >= self.thresholds.endgame_wave or is_emergency(power_efficiency, storage_full, self.thresholds):
			self.current = Phase.SURVIVAL
		else:
			self.current = self.strategic
		return self.current


@dataclass
class BehaviorStats:
	"""
	Counters describing what the executor did during an episode.

	Attempts are counted when a plan is queued; successes and failures
	when the simulation accepts or rejects the placement.
	"""
	update_count: int = 0
	error_count: int = 0
	build_queue_size: int = 0
	actions_issued: int = 0
	attempts: Dict[str, int] = field(default_factory=dict)
	successes: Dict[str, int] = field(default_factory=dict)
	failures: Dict[str, int] = field(default_factory=dict)
	phase: Phase = Phase.EARLY
	phases_visited: Set[Phase] = field(default_factory=lambda: {Phase.EARLY})

	def record_attempt(self, category: str) -> None:
		self.attempts[category] = self.attempts.get(category, 0) + 1

	def record_success(self, category: str) -> None:
		self.successes[category] = self.successes.get(category, 0) + 1

	def record_failure(self, category: str) -> None:
		self.failures[category] = self.failures.get(category, 0) + 1

	def queued(self, category: str) -> int:
		return self.attempts.get(category, 0)

	@property
	def total_built(self) -> int:
		return sum(self.successes.values())

	@property
	def build_failures(self) -> int:
		return sum(self.failures.values())

	@property
	def build_success_rate(self) -> float:
		total = self.total_built + self.build_failures
		return self.total_built / total if total > 0 else 0.0

	@property
	def mining_built(self) -> int:
		return self.queued("mining")

	@property
	def power_built(self) -> int:
		return self.queued("power")

	@property
	def defense_built(self) -> int:
		return self.queued("defense")

	@property
	def transport_built(self) -> int:
		return self.queued("transport")

	def category_diversity(self) -> int:
		"""Number of core economic categories with at least one attempt."""
		return sum(1 for c in ("mining", "power", "defense", "transport") if self.queued(c) > 0)

	def to_dict(self) -> Dict[str, object]:
		return {
			"update_count": self.update_count,
			"error_count": self.error_count,
			"actions_issued": self.actions_issued,
			"total_built": self.total_built,
			"build_failures": self.build_failures,
			"attempts": dict(self.attempts),
			"phase": self.phase.value,
		}


@dataclass
class BuildPlan:
	"""A queued placement."""
	entity: str
	x: int
	y: int
	rotation: int = 0
	category: str = "misc"


def ring_cells(center: Cell, radius: int) -> Iterator[Cell]:
	"""
	Cells on the square ring at Chebyshev distance `radius` from center.

	Radius 0 yields the center only.
	"""
	cx, cy = center
	if radius == 0:
		yield (cx, cy)
		return
	for dx in range(-radius, radius + 1):
		yield (cx + dx, cy - radius)
	for dy in range(-radius + 1, radius + 1):
		yield (cx + radius, cy + dy)
	for dx in range(radius - 1, -radius - 1, -1):
		yield (cx + dx, cy + radius)
	for dy in range(radius - 1, -radius, -1):
		yield (cx - radius, cy + dy)


def spiral_search(
	center: Cell,
	accept: Callable[[int, int], bool],
	max_radius: int = DEFAULT_SEARCH_RADIUS,
	skip: Optional[Set[Cell]] = None,
) -> Optional[Cell]:
	"""
	Find the closest acceptable cell around center.

	Args:
		center: Reference cell
		accept: Predicate on (x, y)
		max_radius: Search gives up beyond this ring
		skip: Cells to ignore (already reserved by queued plans)

	Returns:
		First accepted cell in ring order, or None
	"""
	skip = skip or set()
	for radius in range(max_radius + 1):
		for cell in ring_cells(center, radius):
			if cell in skip:
				continue
			if accept(*cell):
				return cell
	return None


# Cooldowns in simulated seconds, keyed by sub-behavior name
EARLY_CHECKLIST: List[Tuple[str, float]] = [
	("core", 0.0),
	("mining", 2.0),
	("power", 3.0),
	("transport", 5.0),
	("defense", 8.0),
]
MID_CHECKLIST: List[Tuple[str, float]] = [
	("expansion", 5.0),
	("production", 4.0),
	("defense", 6.0),
	("transport", 7.0),
	("units", 10.0),
]
LATE_CHECKLIST: List[Tuple[str, float]] = [
	("advanced_production", 8.0),
	("heavy_defense", 7.0),
	("advanced_units", 12.0),
	("territory", 15.0),
]
SURVIVAL_CHECKLIST: List[Tuple[str, float]] = [
	("emergency_power", 1.0),
	("immediate_defense", 2.0),
	("conserve", 5.0),
	("repair", 6.0),
]


class BehaviorExecutor:
	"""
	Drives one agent according to a genome.

	Purpose:
		Decide and issue actions once per invocation. Failures never
		abort the episode: exceptions are counted in BehaviorStats.

	Args:
		genome: Strategy to follow
		agent: Action primitives of the controlled agent
		episode: Telemetry of the running episode
		thresholds: Phase transition guards
		search_radius: Placement search bound in cells
	"""

	def __init__(
		self,
		genome: Genome,
		agent: AgentHandle,
		episode: EpisodeHandle,
		thresholds: Optional[PhaseThresholds] = None,
		search_radius: int = DEFAULT_SEARCH_RADIUS,
	):
		self.genome = genome
		self.agent = agent
		self.episode = episode
		self.search_radius = search_radius

		self.phases = PhaseMachine(thresholds)
		self.stats = BehaviorStats()
		self.build_queue: Deque[BuildPlan] = deque()
		self.last_action_times: Dict[str, float] = {}
		self.last_update: Optional[float] = None
		self.core: Optional[Cell] = None

		self._behaviors: Dict[str, Callable[[], None]] = {
			"core": self._ensure_core,
			"mining": self._build_resource_extraction,
			"power": self._maintain_power_buffer,
			"transport": self._build_transport,
			"defense": self._build_defense,
			"expansion": self._expand_extraction,
			"production": self._build_production,
			"units": self._produce_units,
			"advanced_production": self._build_advanced_production,
			"heavy_defense": self._build_heavy_defense,
			"advanced_units": self._build_advanced_units,
			"territory": self._expand_territory,
			"emergency_power": self._emergency_power,
			"immediate_defense": self._immediate_defense,
			"conserve": self._conserve_resources,
			"repair": self._repair,
		}
		self._checklists = {
			Phase.EARLY: EARLY_CHECKLIST,
			Phase.MID: MID_CHECKLIST,
			Phase.LATE: LATE_CHECKLIST,
			Phase.SURVIVAL: SURVIVAL_CHECKLIST,
		}

		logger.debug(f"BehaviorExecutor initialized: {genome!r}")

	# ===== Derived pacing =====

	@property
	def phase(self) -> Phase:
		return self.phases.current

	@property
	def update_interval(self) -> float:
		"""Seconds between updates: 0.1 to 10 updates per simulated second."""
		rate = 0.1 + 9.9 * self.genome.reaction_speed
		return 1.0 / rate

	@property
	def actions_per_update(self) -> int:
		"""Queued plans drained per update (1-4)."""
		return int(self.genome.building_pacing * 3 + 1)

	@property
	def max_queue_size(self) -> int:
		"""Pending plans beyond which new plans are not queued."""
		return self.actions_per_update * QUEUE_DEPTH_PER_ACTION

	# ===== Main loop =====

	def update(self, now: float) -> bool:
		"""
		Run one decision step if the reaction cooldown has elapsed.

		Args:
			now: Simulated seconds since episode start

		Returns:
			True if a decision step ran
		"""
		if self.last_update is not None and now - self.last_update < self.update_interval:
			return False
		self.last_update = now

		try:
			self._update_phase()
			self._update_core()
		except Exception as e:
			logger.warning(f"Telemetry read failed: {e}")
			self.stats.error_count += 1
		else:
			self._run_checklist(now)
		self._execute_build_queue()

		self.stats.update_count += 1
		self.stats.build_queue_size = len(self.build_queue)
		return True

	def _run_checklist(self, now: float) -> None:
		for name, cooldown in self._checklists[self.phase]:
			if not self._should_perform(name, cooldown, now):
				continue
			try:
				self._behaviors[name]()
			except Exception as e:
				logger.warning(f"Behavior '{name}' failed: {e}")
				self.stats.error_count += 1

	def _should_perform(self, name: str, cooldown: float, now: float) -> bool:
		last = self.last_action_times.get(name)
		if last is None or now - last >= cooldown:
			self.last_action_times[name] = now
			return True
		return False

	def _update_phase(self) -> None:
		performance = self.episode.get_performance_summary()
		phase = self.phases.update(
			wave=performance.wave,
			elapsed=performance.elapsed_time,
			power_efficiency=performance.power.efficiency,
			storage_full=self.episode.is_storage_full(),
		)
		if phase is not self.stats.phase:
			logger.debug(f"Phase {self.stats.phase.value} -> {phase.value}")
		self.stats.phase = phase
		self.stats.phases_visited.add(phase)

	def _update_core(self) -> None:
		self.core = self.agent.core_position()

	# ===== Queue =====

	def queue_build(self, entity: Optional[str], cell: Optional[Cell], category: str, rotation: int = 0) -> bool:
		"""
		Queue a placement.

		Returns:
			False when there is nothing to queue or the queue is full
		"""
		if entity is None or cell is None or len(self.build_queue) >= self.max_queue_size:
			return False
		self.build_queue.append(BuildPlan(entity, cell[0], cell[1], rotation, category))
		self.stats.record_attempt(category)
		return True

	def _execute_build_queue(self) -> None:
		for _ in range(min(self.actions_per_update, len(self.build_queue))):
			plan = self.build_queue.popleft()
			self.stats.actions_issued += 1
			try:
				placed = self.agent.place_entity(plan.entity, plan.x, plan.y, plan.rotation)
			except Exception as e:
				logger.warning(f"Failed to place {plan.entity} at ({plan.x}, {plan.y}): {e}")
				self.stats.error_count += 1
				self.stats.record_failure(plan.category)
				continue
			if placed:
				self.stats.record_success(plan.category)
			else:
				self.stats.record_failure(plan.category)

	def _reserved(self) -> Set[Cell]:
		return {(p.x, p.y) for p in self.build_queue}

	# ===== Choice helpers =====

	def choose(self, category: str, fallback: Optional[str] = None) -> Optional[str]:
		"""Highest-priority buildable entity of a category."""
		candidates = self.agent.available_entities(category)
		if not candidates:
			return fallback
		return self.genome.highest_priority(candidates)

	def choose_turret(self) -> Optional[str]:
		candidates = self.agent.available_entities(CATEGORY_TURRET)
		if self.genome.combat_range_preference > 0.6:
			ranged = [t for t in candidates if self.agent.describe_entity(t).get("range", SHORT_RANGE_LIMIT) >= SHORT_RANGE_LIMIT]
			candidates = ranged or candidates
		return self.genome.highest_priority(candidates)

	def find_placement(self, entity: str, reference: Cell) -> Optional[Cell]:
		"""Spiral search for a legal cell around reference."""
		return spiral_search(
			reference,
			lambda x, y: self.agent.can_place(entity, x, y),
			max_radius=self.search_radius,
			skip=self._reserved(),
		)

	def offset_from_core(self, angle: float, scale: float = 1.0) -> Cell:
		"""
		Reference point at an angle around the core.

		Compact genomes build close to the core, spread-out ones further
		away.
		"""
		cx, cy = self.core if self.core is not None else (0, 0)
		distance = (2.0 + (1.0 - self.genome.compactness) * 6.0) * scale
		return (int(round(cx + math.cos(angle) * distance)), int(round(cy + math.sin(angle) * distance)))

	def _place_near(self, category: str, entity_category: str, reference: Cell, fallback: Optional[str] = None) -> bool:
		entity = self.choose(entity_category, fallback)
		if entity is None:
			return False
		return self.queue_build(entity, self.find_placement(entity, reference), category)

	# ===== Early game =====

	def _ensure_core(self) -> None:
		if self.core is not None:
			return
		if self.stats.queued("core") > self.stats.failures.get("core", 0):
			return
		entity = self.choose(CATEGORY_CORE)
		if entity is None:
			return
		self.queue_build(entity, self.find_placement(entity, (0, 0)), "core")

	def _build_resource_extraction(self, radius: float = RESOURCE_SCAN_RADIUS, limit: Optional[int] = None) -> None:
		if self.core is None:
			return
		drill = self.choose(CATEGORY_DRILL)
		if drill is None:
			return
		if limit is None:
			limit = 1 + int(self.genome.mining_focus * 3)
		reserved = self._reserved()
		placed = 0
		for cell in self.agent.nearby_resources(self.core[0], self.core[1], radius):
			if placed >= limit:
				break
			if cell in reserved or not self.agent.can_place(drill, *cell):
				continue
			if not self.queue_build(drill, cell, "mining"):
				break
			reserved.add(cell)
			placed += 1
			if self.genome.transport_efficiency > 0.6:
				self._connect_to_core(cell)
		if placed == 0 and self.genome.mining_focus > 0.5:
			resources = self.agent.nearby_resources(self.core[0], self.core[1], radius)
			if resources:
				self.agent.start_mining(*resources[0])

	def _maintain_power_buffer(self) -> None:
		if self.core is None:
			return
		efficiency = self.episode.power_efficiency()
		if efficiency < 1.0 - self.genome.power_buffer_target or self.stats.power_built == 0:
			reference = self.offset_from_core(math.pi / 4)
			if self._place_near("power", CATEGORY_GENERATOR, reference):
				self._place_near("power", CATEGORY_POWER_NODE, reference)

	def _build_transport(self) -> None:
		if self.core is None or self.genome.transport_efficiency <= 0.5:
			return
		for drill in self.agent.nearby_buildings(self.core[0], self.core[1], BASE_SCAN_RADIUS, CATEGORY_DRILL)[:2]:
			self._connect_to_core(drill)

	def _connect_to_core(self, cell: Cell) -> None:
		"""Queue a conveyor one step from cell towards the core."""
		conveyor = self.choose(CATEGORY_CONVEYOR)
		if conveyor is None or self.core is None:
			return
		dx = self.core[0] - cell[0]
		dy = self.core[1] - cell[1]
		if dx == 0 and dy == 0:
			return
		step = (cell[0] + (dx > 0) - (dx < 0), cell[1] + (dy > 0) - (dy < 0))
		if step == self.core or step in self._reserved() or not self.agent.can_place(conveyor, *step):
			return
		if abs(dx) >= abs(dy):
			rotation = 0 if dx > 0 else 2
		else:
			rotation = 1 if dy > 0 else 3
		self.queue_build(conveyor, step, "transport", rotation)

	def _build_defense(self, minimum: int = 2, spread: int = 8) -> None:
		if self.core is None:
			return
		wanted = int(self.genome.defensive_bias * spread + minimum)
		current = self.agent.nearby_buildings(self.core[0], self.core[1], RESOURCE_SCAN_RADIUS, CATEGORY_TURRET)
		if len(current) >= wanted:
			return
		turret = self.choose_turret()
		if turret is None:
			return
		angle = 2.0 * math.pi * (len(current) / max(1, wanted))
		if self.genome.symmetry_preference > 0.5:
			angle = (math.pi / 2) * len(current)
		self.queue_build(turret, self.find_placement(turret, self.offset_from_core(angle, 1.5)), "defense")

	# ===== Mid game =====

	def _expand_extraction(self) -> None:
		scale = 1.0 + self.genome.expansion_aggression
		self._build_resource_extraction(radius=RESOURCE_SCAN_RADIUS * scale)

	def _build_production(self) -> None:
		if self.core is None:
			return
		count = 1 + int(self.genome.production_chain_depth * 2)
		for i in range(count):
			self._place_near("production", CATEGORY_CRAFTER, self.offset_from_core(math.pi + i * 0.5))
		if self.genome.centralized_storage > 0.5 and self.stats.queued("storage") == 0:
			self._place_near("storage", CATEGORY_STORAGE, self.offset_from_core(-math.pi / 2, 0.5))

	def _produce_units(self) -> None:
		if self.core is None:
			return
		if self.genome.unit_production_priority >= 0.3:
			self._place_near("units", CATEGORY_UNIT_FACTORY, self.offset_from_core(3 * math.pi / 4))
		self._command_units()

	def _command_units(self) -> None:
		"""Engage the closest threat, or hold near the core when defensive."""
		if self.core is None:
			return
		threats = self.agent.nearby_units(self.core[0], self.core[1], THREAT_SCAN_RADIUS, enemy=True)
		if not threats:
			return
		closest = min(threats, key=lambda c: (c[0] - self.core[0]) ** 2 + (c[1] - self.core[1]) ** 2)
		self.agent.set_target(*closest)
		if self.genome.defensive_bias < 0.5 or self.genome.risk_tolerance > 0.7:
			self.agent.move_to(*closest)
		else:
			self.agent.move_to(*self.core)

	# ===== Late game =====

	def _build_advanced_production(self) -> None:
		if self.core is None or self.genome.tech_progression < 0.3:
			return
		self._place_near("production", CATEGORY_CRAFTER, self.offset_from_core(math.pi, 2.0))

	def _build_heavy_defense(self) -> None:
		self._build_defense(minimum=4, spread=12)

	def _build_advanced_units(self) -> None:
		if self.core is None:
			return
		if self.genome.tech_progression >= 0.5:
			self._place_near("units", CATEGORY_RECONSTRUCTOR, self.offset_from_core(3 * math.pi / 4, 1.5))
		self._command_units()

	def _expand_territory(self) -> None:
		if self.core is None or self.genome.expansion_aggression < 0.4:
			return
		self._build_resource_extraction(radius=RESOURCE_SCAN_RADIUS * 2.0, limit=2)

	# ===== Survival =====

	def _emergency_power(self) -> None:
		if self.core is None or not self.episode.is_power_shortage():
			return
		self._place_near("power", CATEGORY_GENERATOR, self.offset_from_core(math.pi / 4, 0.5))

	def _immediate_defense(self) -> None:
		if self.core is None:
			return
		turret = self.choose_turret()
		if turret is not None:
			self.queue_build(turret, self.find_placement(turret, self.offset_from_core(0.0, 0.75)), "defense")
		self._command_units()

	def _conserve_resources(self) -> None:
		if self.genome.resource_conservation > 0.5:
			self.agent.stop_mining()
		elif self.episode.is_storage_full():
			self._place_near("storage", CATEGORY_STORAGE, self.offset_from_core(-math.pi / 2, 0.5))

	def _repair(self) -> None:
		if self.core is None or self.genome.adaptability < 0.4:
			return
		self._place_near("repair", CATEGORY_UTILITY, self.offset_from_core(math.pi / 2, 0.5))
