"""
Shared pytest fixtures for test suite.
Provides genomes, random generators and stub simulation collaborators.
"""

import sys
import tempfile
import threading
from pathlib import Path
from typing import Dict, List, Optional

import numpy as np
import pytest

# Add src for imports
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT / "src"))

from evoai.config import EvaluationConfig, EvolutionConfig
from evoai.evolution.genome import Genome, TRAIT_NAMES
from evoai.evolution.records import EpisodeResult
from evoai.simulation.protocol import (
    AgentHandle,
    EpisodeHandle,
    SimulationController,
    GameOutcome,
    PerformanceSummary,
    PowerSummary,
)


# ===== Stub simulation =====

class StubAgent(AgentHandle):
    """Scripted agent: records every action, accepts placements on free cells."""

    def __init__(self, entities: Optional[Dict[str, List[str]]] = None, core=(0, 0)):
        self.entities = entities if entities is not None else {
            "core": ["core-shard"],
            "drill": ["mechanical-drill", "pneumatic-drill"],
            "generator": ["combustion-generator"],
            "power-node": ["power-node"],
            "conveyor": ["conveyor"],
            "turret": ["duo", "hail"],
            "crafter": ["graphite-press"],
            "unit-factory": ["ground-factory"],
            "reconstructor": [],
            "storage": ["container"],
            "utility": ["mender"],
        }
        self.core = core
        self.ranges = {"duo": 8.5, "hail": 17.5}
        self.placed = []
        self.occupied = set()
        self.blocked = set()
        self.reject_all = False
        self.place_error: Optional[Exception] = None
        self.resources = [(3, 0), (0, 3), (-3, 0)]
        self.enemies = []
        self.mining = None
        self.mining_stopped = 0
        self.target = None
        self.moved_to = None

    def core_position(self):
        return self.core

    def available_entities(self, category):
        return list(self.entities.get(category, []))

    def describe_entity(self, entity):
        return {"range": self.ranges[entity]} if entity in self.ranges else {}

    def can_place(self, entity, x, y):
        return (x, y) not in self.occupied and (x, y) not in self.blocked and (x, y) != self.core

    def place_entity(self, entity, x, y, rotation=0):
        if self.place_error is not None:
            raise self.place_error
        if self.reject_all or not self.can_place(entity, x, y):
            return False
        self.placed.append((entity, x, y, rotation))
        self.occupied.add((x, y))
        if entity.startswith("core") and self.core is None:
            self.core = (x, y)
        return True

    def nearby_resources(self, x, y, radius):
        return [c for c in self.resources if c not in self.occupied]

    def nearby_buildings(self, x, y, radius, category=None):
        cells = []
        for entity, bx, by, _ in self.placed:
            if category is None or entity in self.entities.get(category, []):
                cells.append((bx, by))
        return cells

    def nearby_units(self, x, y, radius, enemy=True):
        return list(self.enemies) if enemy else []

    def start_mining(self, x, y):
        self.mining = (x, y)

    def stop_mining(self):
        self.mining = None
        self.mining_stopped += 1

    def set_target(self, x, y):
        self.target = (x, y)

    def move_to(self, x, y):
        self.moved_to = (x, y)


class StubEpisode(EpisodeHandle):
    """
    Scripted episode advancing one simulated second per step() second.

    Waves arrive every wave_spacing seconds; the game ends at end_time.
    """

    def __init__(
        self,
        end_time: float = 60.0,
        won: bool = True,
        wave_spacing: float = 10.0,
        power_efficiency: float = 1.0,
        storage_full: bool = False,
        agent: Optional[StubAgent] = None,
    ):
        self.end_time = end_time
        self.won = won
        self.wave_spacing = wave_spacing
        self.efficiency = power_efficiency
        self.storage_full = storage_full
        self.agent = agent or StubAgent()
        self.elapsed = 0.0
        self.closed = False
        self.steps = 0

    @property
    def wave(self):
        return int(self.elapsed // self.wave_spacing)

    def create_agent(self, name, team):
        return self.agent

    def is_episode_over(self):
        return self.elapsed >= self.end_time

    def get_outcome(self):
        over = self.is_episode_over()
        return GameOutcome(
            ended=over,
            won=over and self.won,
            winner_id="sharded" if over and self.won else "",
            end_reason="stub finished" if over else "",
            final_wave=self.wave,
        )

    def get_performance_summary(self):
        return PerformanceSummary(
            wave=self.wave,
            elapsed_time=self.elapsed,
            power=PowerSummary(efficiency=self.efficiency),
        )

    def is_storage_full(self):
        return self.storage_full

    def step(self, dt):
        self.elapsed += dt
        self.steps += 1

    def close(self):
        self.closed = True


class StubController(SimulationController):
    """Starts StubEpisodes; maps in fail_maps raise on start."""

    def __init__(self, maps=("Alpha", "Beta", "Gamma"), fail_maps=(), **episode_kwargs):
        self.maps = tuple(maps)
        self.fail_maps = set(fail_maps)
        self.episode_kwargs = episode_kwargs
        self.episodes = []
        self.started_maps = []
        self._lock = threading.Lock()

    def available_maps(self):
        return self.maps

    def start_episode(self, map_name, rules=None):
        with self._lock:
            self.started_maps.append(map_name)
        if map_name in self.fail_maps:
            raise RuntimeError(f"map {map_name} crashed")
        episode = StubEpisode(**self.episode_kwargs)
        with self._lock:
            self.episodes.append(episode)
        return episode


class ScoreHarness:
    """
    Harness replacement scoring each genome with a fixed function.

    Results are reported per index; calls are recorded.
    """

    def __init__(self, score_fn, fail_on_call: Optional[int] = None):
        self.score_fn = score_fn
        self.fail_on_call = fail_on_call
        self.calls = 0
        self.populations = []
        self.worker = None

    def evaluate_population(self, genomes):
        self.calls += 1
        if self.fail_on_call is not None and self.calls >= self.fail_on_call:
            raise RuntimeError("harness crashed")
        self.populations.append(list(genomes))
        return [EpisodeResult(fitness=self.score_fn(g)) for g in genomes]


# ===== Fixtures =====

@pytest.fixture
def rng():
    """Seeded random generator."""
    return np.random.default_rng(1234)


@pytest.fixture
def temp_dir():
    """Create temporary directory for tests."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def default_genome():
    """Genome with every trait at 0.5 and a small priority table."""
    return Genome(priorities={"duo": 0.6, "hail": 0.7, "mechanical-drill": 0.8})


@pytest.fixture
def random_genome(rng):
    """Random genome over the built-in catalog."""
    return Genome.random(rng)


@pytest.fixture
def make_genome():
    """Factory: genome with every trait set to one value."""
    def _make(value: float = 0.5, priorities=None, **overrides):
        traits = dict.fromkeys(TRAIT_NAMES, value)
        traits.update(overrides)
        return Genome(traits, priorities)
    return _make


@pytest.fixture
def stub_agent():
    return StubAgent()


@pytest.fixture
def stub_episode(stub_agent):
    return StubEpisode(agent=stub_agent)


@pytest.fixture
def stub_controller():
    return StubController()


@pytest.fixture
def controller_factory():
    """Factory for StubControllers with custom episode settings."""
    return StubController


@pytest.fixture
def score_harness_factory():
    """Factory for ScoreHarness instances."""
    return ScoreHarness


@pytest.fixture
def fast_evaluation_config():
    """Evaluation settings for quick stub episodes."""
    return EvaluationConfig(
        episodes_per_genome=2,
        max_sim_time=120.0,
        max_wall_time=30.0,
        tick_interval=1.0,
        evaluation_timeout=30.0,
        num_workers=2,
    )


@pytest.fixture
def small_evolution_config():
    """Small GA settings."""
    return EvolutionConfig(
        population_size=8,
        max_generations=5,
        elite_count=2,
        tournament_size=3,
        crossover_rate=0.7,
        mutation_rate=0.15,
        seed=42,
    )
