"""
Evolutionary Training Script for tower-defense agents.

Purpose:
	Evolve agent genomes with the genetic algorithm and export the results.

Workflow:
	1. Load configuration and apply the run mode preset
	2. Create the simulation controller
	3. Run evolution (or the population-size benchmark)
	4. Test the best genome on the test maps
	5. Save genome, fitness history and test report

Usage:
	python scripts/train_evolution.py --config configs/evolution_config.yaml
	python scripts/train_evolution.py --mode quick --seed 7
"""
import argparse
import importlib
import logging
import sys
import time
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from evoai.config import Config, ConfigError
from evoai.evolution.behavior import PhaseThresholds, DEFAULT_SEARCH_RADIUS
from evoai.evolution.fitness import create_fitness_evaluator
from evoai.evolution.manager import EvolutionManager
from evoai.evolution.worker import EvolutionWorker, EvaluationHarness
from evoai.export import save_results
from evoai.simulation.protocol import SimulationController

logger = logging.getLogger(__name__)

DEFAULT_CONTROLLER = "evoai.simulation.synthetic:create_controller"

# Short runs for smoke testing a controller
QUICK_PRESET = {
	"evolution.population_size": 8,
	"evolution.max_generations": 10,
	"evolution.elite_count": 2,
	"evaluation.episodes_per_genome": 1,
	"evaluation.max_sim_time": 600.0,
}

BENCHMARK_POPULATIONS = (4, 8, 12, 16, 20)
BENCHMARK_GENERATIONS = 5


def load_config(config_path: Optional[str]) -> Config:
	"""
	Load YAML configuration.

	Args:
		config_path: Path to config file (None: defaults)

	Returns:
		Config object

	Raises:
		FileNotFoundError: If the path is given but does not exist
	"""
	if config_path is None:
		return Config()
	if not Path(config_path).exists():
		raise FileNotFoundError(f"Config file not found: {config_path}")
	return Config.from_file(config_path)


def apply_overrides(config: Config, args: argparse.Namespace) -> Config:
	"""
	Apply the mode preset and command-line overrides.

	Args:
		config: Loaded configuration (modified in place)
		args: Parsed arguments

	Returns:
		The same Config
	"""
	if args.mode == "quick":
		for key, value in QUICK_PRESET.items():
			config.set(key, value)
	if args.population is not None:
		config.set("evolution.population_size", args.population)
	if args.generations is not None:
		config.set("evolution.max_generations", args.generations)
	if args.seed is not None:
		config.set("evolution.seed", args.seed)
	return config


def load_controller(spec: str, seed: Optional[int] = None) -> SimulationController:
	"""
	Create a simulation controller from a "module:factory" spec.

	Args:
		spec: Import path of a factory returning a SimulationController
		seed: Passed to the factory as seed=

	Returns:
		SimulationController instance

	Raises:
		ValueError: If the spec is malformed or the factory returns something else
	"""
	module_name, sep, factory_name = spec.partition(":")
	if not sep or not module_name or not factory_name:
		raise ValueError(f"Controller must be given as module:factory, got '{spec}'")
	factory = getattr(importlib.import_module(module_name), factory_name)
	controller = factory(seed=seed)
	if not isinstance(controller, SimulationController):
		raise ValueError(f"{spec} returned {type(controller).__name__}, not a SimulationController")
	return controller


def build_manager(config: Config, controller: SimulationController) -> EvolutionManager:
	"""
	Wire worker, harness and manager from the configuration.

	Raises:
		ConfigError: If any section is invalid
	"""
	evolution_config = config.evolution_config()
	evaluation_config = config.evaluation_config()

	fitness_section = dict(config.fitness)
	fitness_type = fitness_section.pop("type", "comprehensive")
	try:
		fitness_evaluator = create_fitness_evaluator(fitness_type, **fitness_section)
	except (TypeError, ValueError) as e:
		raise ConfigError(f"Invalid fitness section: {e}") from e

	behavior_section = dict(config.behavior)
	search_radius = behavior_section.pop("search_radius", DEFAULT_SEARCH_RADIUS)
	try:
		thresholds = PhaseThresholds(**behavior_section)
	except TypeError as e:
		raise ConfigError(f"Invalid behavior section: {e}") from e

	worker = EvolutionWorker(controller, fitness_evaluator, evaluation_config, thresholds, search_radius)
	harness = EvaluationHarness(
		worker,
		num_workers=evaluation_config.num_workers,
		timeout=evaluation_config.evaluation_timeout,
	)
	return EvolutionManager(harness, evolution_config)


def run_evolution(config: Config, controller: SimulationController, output_dir: Path) -> Dict[str, Path]:
	"""
	Evolve, test the best genome and save the results.

	Returns:
		Mapping of artifact name -> path written
	"""
	manager = build_manager(config, controller)
	result = manager.evolve()

	logger.info(
		f"Best fitness {result.best_fitness:.2f} after {result.generations_completed} generations "
		f"({result.stop_reason})"
	)
	logger.info(f"Best genome: {result.best_genome!r}")

	test_results = manager.test_best()
	return save_results(result, output_dir, test_results)


def run_benchmark(
	config: Config,
	controller: SimulationController,
	population_sizes: Sequence[int] = BENCHMARK_POPULATIONS,
	generations: int = BENCHMARK_GENERATIONS,
) -> List[Dict[str, Any]]:
	"""
	Time short runs at several population sizes.

	Returns:
		One {"population", "seconds_per_generation", "best_fitness"} row per size
	"""
	rows = []
	for population in population_sizes:
		config.set("evolution.population_size", population)
		config.set("evolution.max_generations", generations)
		config.set("evolution.elite_count", min(config.get("evolution.elite_count", 4), population))

		manager = build_manager(config, controller)
		start = time.perf_counter()
		result = manager.evolve()
		duration = time.perf_counter() - start

		row = {
			"population": population,
			"seconds_per_generation": duration / max(1, result.generations_completed),
			"best_fitness": result.best_fitness,
		}
		logger.info(
			f"Population {population}: {row['seconds_per_generation']:.1f} seconds/generation, "
			f"Best fitness: {result.best_fitness:.2f}"
		)
		rows.append(row)
	return rows


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
	parser = argparse.ArgumentParser(description='Evolutionary Training')
	parser.add_argument('--config', type=str, default=None, help='Path to YAML config')
	parser.add_argument('--mode', choices=['full', 'quick', 'benchmark'], default='full', help='Run mode')
	parser.add_argument('--output', type=str, default='evolution-results', help='Output directory')
	parser.add_argument('--population', type=int, default=None, help='Override population size')
	parser.add_argument('--generations', type=int, default=None, help='Override max generations')
	parser.add_argument('--controller', type=str, default=DEFAULT_CONTROLLER, help='Controller factory (module:factory)')
	parser.add_argument('--seed', type=int, default=None, help='Random seed')
	return parser.parse_args(argv)


def main(argv: Optional[Sequence[str]] = None) -> int:
	"""
	Main entry point.

	Returns:
		Process exit code (0 on success, 2 on configuration errors)
	"""
	logging.basicConfig(level=logging.INFO, format='%(asctime)s %(levelname)s %(name)s: %(message)s')
	args = parse_args(argv)

	try:
		config = apply_overrides(load_config(args.config), args)
		controller = load_controller(args.controller, args.seed)
	except (ConfigError, ValueError, FileNotFoundError, ImportError, AttributeError) as e:
		logger.error(f"Invalid setup: {e}")
		return 2

	try:
		if args.mode == 'benchmark':
			run_benchmark(config, controller)
		else:
			written = run_evolution(config, controller, Path(args.output))
			logger.info(f"Training complete. Results in {args.output} ({len(written)} files)")
	except ConfigError as e:
		logger.error(f"Invalid configuration: {e}")
		return 2
	finally:
		controller.shutdown()
	return 0


if __name__ == '__main__':
	sys.exit(main())
