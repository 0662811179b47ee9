"""
Result export.

Writes the best genome, the per-generation fitness history and the
per-map test report to an output directory.
"""

import csv
import json
import logging
from pathlib import Path
from typing import Dict, Optional, Sequence, Tuple, Union

from evoai.evolution.genome import Genome, TRAIT_NAMES
from evoai.evolution.records import EvolutionResult, TestResults

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]

BEST_GENOME_FILE = "best-genome.json"
HISTORY_FILE = "fitness-history.csv"
TEST_RESULTS_FILE = "map-test-results.csv"


def save_best_genome(genome: Genome, fitness: float, generation: int, path: PathLike) -> Path:
	"""
	Save the best genome as JSON.

	Args:
		genome: Genome to save
		fitness: Its fitness
		generation: Generations completed when it was found
		path: Output file

	Returns:
		Path written
	"""
	path = Path(path)
	path.parent.mkdir(parents=True, exist_ok=True)
	data = {
		"fitness": fitness,
		"generation": generation,
		"traits": {name: genome.traits[name] for name in TRAIT_NAMES},
		"priorities": dict(sorted(genome.priorities.items())),
	}
	with open(path, "w") as f:
		json.dump(data, f, indent=2)
	return path


def load_best_genome(path: PathLike) -> Genome:
	"""Read a genome saved by save_best_genome()."""
	with open(path, "r") as f:
		data = json.load(f)
	return Genome.from_dict(data)


def save_fitness_history(history: Sequence[Tuple[float, float]], path: PathLike) -> Path:
	"""
	Save per-generation (best, average) fitness as CSV.

	Columns: Generation,BestFitness,AverageFitness (generations are 1-based).
	"""
	path = Path(path)
	path.parent.mkdir(parents=True, exist_ok=True)
	with open(path, "w", newline="") as f:
		writer = csv.writer(f)
		writer.writerow(["Generation", "BestFitness", "AverageFitness"])
		for generation, (best, average) in enumerate(history, start=1):
			writer.writerow([generation, f"{best:.2f}", f"{average:.2f}"])
	return path


def save_test_results(results: TestResults, path: PathLike) -> Path:
	"""
	Save the per-map test report as CSV.

	Columns: MapName,Won,FinalWave,Fitness,GameTime,EndReason
	"""
	path = Path(path)
	path.parent.mkdir(parents=True, exist_ok=True)
	with open(path, "w", newline="") as f:
		writer = csv.writer(f)
		writer.writerow(["MapName", "Won", "FinalWave", "Fitness", "GameTime", "EndReason"])
		for map_name, result in results.results.items():
			writer.writerow([
				map_name,
				str(result.won).lower(),
				result.final_wave,
				f"{result.fitness:.2f}",
				f"{result.elapsed_time:.1f}",
				result.end_reason,
			])
	return path


def save_results(
	result: EvolutionResult,
	output_dir: PathLike,
	test_results: Optional[TestResults] = None,
) -> Dict[str, Path]:
	"""
	Save everything a run produced.

	Args:
		result: Return value of EvolutionManager.evolve()
		output_dir: Directory to write into
		test_results: Optional per-map report of the best genome

	Returns:
		Mapping of artifact name -> path written
	"""
	output_dir = Path(output_dir)
	written: Dict[str, Path] = {}

	if result.best_genome is not None:
		written["best_genome"] = save_best_genome(
			result.best_genome, result.best_fitness, result.generations_completed, output_dir / BEST_GENOME_FILE
		)
	written["history"] = save_fitness_history(result.history, output_dir / HISTORY_FILE)
	if test_results is not None:
		written["test_results"] = save_test_results(test_results, output_dir / TEST_RESULTS_FILE)

	for name, path in written.items():
		logger.info(f"Saved {name}: {path}")
	return written
