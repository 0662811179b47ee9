"""
Evolution Worker for evaluating genomes.
"""
import logging
import os
import threading
import time
from concurrent.futures import ThreadPoolExecutor, FIRST_COMPLETED, wait
from typing import Dict, List, Optional, Sequence

from evoai.config import EvaluationConfig
from evoai.evolution.behavior import BehaviorExecutor, PhaseThresholds, DEFAULT_SEARCH_RADIUS
from evoai.evolution.fitness import FitnessEvaluator
from evoai.evolution.genome import Genome
from evoai.evolution.records import EpisodeResult
from evoai.simulation.protocol import EpisodeHandle, SimulationController

logger = logging.getLogger(__name__)


class EvaluationCancelled(Exception):
	"""Raised inside an episode loop that was abandoned after its timeout."""


class EvolutionWorker:
	"""
	Handles the evaluation episodes of one genome.

	Purpose:
		Run a genome inside the simulation and turn the telemetry into
		an EpisodeResult.

	Workflow:
		1. Start a fresh episode and create one agent
		2. Drive a BehaviorExecutor until game over or a time ceiling
		3. Read outcome / performance telemetry
		4. Score it with the fitness evaluator
	"""
	def __init__(
		self,
		controller: SimulationController,
		fitness_evaluator: FitnessEvaluator,
		config: Optional[EvaluationConfig] = None,
		thresholds: Optional[PhaseThresholds] = None,
		search_radius: int = DEFAULT_SEARCH_RADIUS,
	):
		"""
		Args:
			controller: Simulation entry point
			fitness_evaluator: Scoring contract
			config: Evaluation parameters
			thresholds: Phase transition guards for the executor
			search_radius: Placement search bound for the executor
		"""
		self.controller = controller
		self.fitness_evaluator = fitness_evaluator
		self.config = config or EvaluationConfig()
		self.thresholds = thresholds
		self.search_radius = search_radius

		# Running episodes keyed by the cancel event of their evaluation
		self._active: Dict[threading.Event, EpisodeHandle] = {}
		self._active_lock = threading.Lock()

	def map_for(self, index: int) -> str:
		"""Training map of the index-th episode (maps are cycled)."""
		maps = list(self.config.maps) or list(self.controller.available_maps())
		if not maps:
			raise ValueError("No maps available for evaluation")
		return maps[index % len(maps)]

	def run_episode(
		self,
		genome: Genome,
		map_name: Optional[str] = None,
		cancel_event: Optional[threading.Event] = None,
	) -> EpisodeResult:
		"""
		Run a single episode.

		Args:
			genome: Strategy to play
			map_name: Map to play on (default: first training map)
			cancel_event: Set by the harness to abandon the episode

		Returns:
			EpisodeResult of the episode

		Raises:
			EvaluationCancelled: If cancel_event is set while the episode runs
			Exception: Any simulation failure propagates to the caller
		"""
		map_name = map_name or self.map_for(0)
		episode = self.controller.start_episode(map_name, self.config.rules)
		if cancel_event is not None:
			with self._active_lock:
				self._active[cancel_event] = episode
		try:
			agent = episode.create_agent(self.config.agent_name, self.config.team)
			executor = BehaviorExecutor(genome, agent, episode, self.thresholds, self.search_radius)

			started = time.monotonic()
			stop_reason = "game over"
			while True:
				if cancel_event is not None and cancel_event.is_set():
					raise EvaluationCancelled(f"Episode on {map_name} cancelled")
				if episode.is_episode_over():
					break
				now = episode.get_performance_summary().elapsed_time
				if now >= self.config.max_sim_time:
					stop_reason = "time limit"
					break
				if time.monotonic() - started >= self.config.max_wall_time:
					stop_reason = "wall clock limit"
					break
				executor.update(now)
				episode.step(self.config.tick_interval)

			outcome = episode.get_outcome()
			performance = episode.get_performance_summary()
			fitness = self.fitness_evaluator.score(outcome, performance, genome, executor.stats)

			logger.debug(
				f"Episode on {map_name}: fitness={fitness:.1f} wave={performance.wave} "
				f"won={outcome.won} built={executor.stats.total_built} errors={executor.stats.error_count}"
			)
			return EpisodeResult(
				fitness=fitness,
				won=outcome.won,
				final_wave=outcome.final_wave or performance.wave,
				elapsed_time=performance.elapsed_time,
				behavior_stats=executor.stats,
				end_reason=outcome.end_reason or stop_reason,
				map_name=map_name,
			)
		finally:
			if cancel_event is not None:
				with self._active_lock:
					self._active.pop(cancel_event, None)
			episode.close()

	def abandon(self, cancel_event: threading.Event) -> bool:
		"""
		Close the episode running under cancel_event from another thread.

		Used by the harness after a timeout so that a simulation call blocked
		inside step() is released instead of pinning its pool thread.

		Returns:
			True if an episode was running and has been closed
		"""
		with self._active_lock:
			episode = self._active.pop(cancel_event, None)
		if episode is None:
			return False
		try:
			episode.close()
		except Exception as e:
			logger.warning(f"Closing abandoned episode failed: {type(e).__name__}: {e}")
		return True

	def evaluate(self, genome: Genome, cancel_event: Optional[threading.Event] = None) -> EpisodeResult:
		"""
		Evaluate a genome over episodes_per_genome episodes.

		Purpose:
			Fitness is the mean over the successful episodes; a genome whose
			episodes all fail scores 0.

		Args:
			genome: Genome to evaluate
			cancel_event: Forwarded to every episode

		Returns:
			Aggregated EpisodeResult (fields of the best episode, mean fitness)
		"""
		results: List[EpisodeResult] = []
		last_error = ""
		for index in range(self.config.episodes_per_genome):
			map_name = self.map_for(index)
			try:
				results.append(self.run_episode(genome, map_name, cancel_event))
			except EvaluationCancelled:
				raise
			except Exception as e:
				last_error = f"{type(e).__name__}: {e}"
				logger.warning(f"Episode {index + 1} on {map_name} failed: {last_error}")

		if not results:
			return EpisodeResult.failure(last_error or "all episodes failed")

		best = max(results, key=lambda r: r.fitness)
		return EpisodeResult(
			fitness=sum(r.fitness for r in results) / len(results),
			won=any(r.won for r in results),
			final_wave=best.final_wave,
			elapsed_time=sum(r.elapsed_time for r in results) / len(results),
			behavior_stats=best.behavior_stats,
			end_reason=best.end_reason,
			map_name=best.map_name,
			episodes=len(results),
		)


class EvaluationHarness:
	"""
	Parallel population evaluation.

	Purpose:
		Evaluate every genome of a generation on a bounded thread pool,
		isolating failures and timeouts per genome.

	Workflow:
		1. Submit one task per genome, keyed by its population index
		2. Collect completed tasks as they finish
		3. Abandon tasks running longer than the timeout: set the cancel
		   event, close the running episode and record a failure
		4. Return results in population order

	Note:
		Pool threads cannot be killed. A simulation call that ignores both
		the cancel event and close() keeps its thread alive, and since pool
		threads are not daemons it can delay interpreter exit.
	"""
	def __init__(
		self,
		worker: EvolutionWorker,
		num_workers: Optional[int] = None,
		timeout: float = 600.0,
		poll_interval: float = 0.1,
	):
		"""
		Args:
			worker: Evaluates single genomes
			num_workers: Pool size cap (None: available CPUs)
			timeout: Wall-clock seconds per genome, measured from the task's start
			poll_interval: Seconds between timeout checks
		"""
		self.worker = worker
		self.num_workers = num_workers
		self.timeout = timeout
		self.poll_interval = poll_interval

	def pool_size(self, population_size: int) -> int:
		available = self.num_workers or os.cpu_count() or 1
		return max(1, min(population_size, available))

	def evaluate_population(self, genomes: Sequence[Genome]) -> List[EpisodeResult]:
		"""
		Evaluate a whole generation.

		Args:
			genomes: Population, in order

		Returns:
			One EpisodeResult per genome, same order. Failed or timed-out
			evaluations are worst-fitness results; nothing is raised.
		"""
		if not genomes:
			return []

		results: List[Optional[EpisodeResult]] = [None] * len(genomes)
		cancel_events = [threading.Event() for _ in genomes]
		started: Dict[int, float] = {}

		def task(index: int, genome: Genome) -> EpisodeResult:
			started[index] = time.monotonic()
			return self.worker.evaluate(genome, cancel_events[index])

		pool = ThreadPoolExecutor(max_workers=self.pool_size(len(genomes)), thread_name_prefix="evaluation")
		try:
			futures = {pool.submit(task, i, genome): i for i, genome in enumerate(genomes)}
			pending = set(futures)
			while pending:
				done, pending = wait(pending, timeout=self.poll_interval, return_when=FIRST_COMPLETED)
				for future in done:
					index = futures[future]
					try:
						results[index] = future.result()
					except Exception as e:
						logger.error(f"Evaluation of genome {index} failed: {type(e).__name__}: {e}")
						results[index] = EpisodeResult.failure(f"{type(e).__name__}: {e}")

				now = time.monotonic()
				for future in list(pending):
					index = futures[future]
					if index in started and now - started[index] > self.timeout:
						cancel_events[index].set()
						self.worker.abandon(cancel_events[index])
						future.cancel()
						pending.discard(future)
						logger.error(f"Evaluation of genome {index} timed out after {self.timeout}s")
						results[index] = EpisodeResult.failure(f"timed out after {self.timeout}s")
		finally:
			for event in cancel_events:
				event.set()
			pool.shutdown(wait=False, cancel_futures=True)

		failures = sum(1 for r in results if r.failed)
		if failures:
			logger.warning(f"{failures}/{len(genomes)} evaluations failed")
		return results
