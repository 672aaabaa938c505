from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import Callable, Dict, Optional


logger = logging.getLogger(__name__)

SweepJob = Callable[[], int]


class PeriodicSweeper:
	"""Runs registered purge jobs on a fixed interval from one asyncio task."""

	def __init__(self, interval_s: float, jobs: Optional[Dict[str, SweepJob]] = None):
		self._interval_s = interval_s
		self._jobs: Dict[str, SweepJob] = dict(jobs or {})
		self._task: Optional[asyncio.Task[None]] = None
		self._running = False
		self.runs = 0

	@property
	def running(self) -> bool:
		return self._task is not None and not self._task.done()

	def add_job(self, name: str, job: SweepJob) -> None:
		self._jobs[name] = job

	def start(self) -> None:
		if self._task is None or self._task.done():
			self._running = True
			self._task = asyncio.create_task(self._sweep_loop(), name="codecoach_sweeper")

	async def stop(self) -> None:
		self._running = False
		if self._task and not self._task.done():
			self._task.cancel()
			with contextlib.suppress(asyncio.CancelledError):
				await self._task
		self._task = None

	def sweep_once(self) -> Dict[str, int]:
		removed: Dict[str, int] = {}
		for name, job in self._jobs.items():
			try:
				removed[name] = job()
			except Exception:
				logger.exception("Sweep job %s failed", name)
				removed[name] = 0
		self.runs += 1
		total = sum(removed.values())
		if total:
			logger.info("Sweep removed %d stale entries: %s", total, removed)
		return removed

	async def _sweep_loop(self) -> None:
		while self._running:
			await asyncio.sleep(self._interval_s)
			self.sweep_once()
