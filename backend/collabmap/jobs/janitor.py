"""Periodic stats and stale-connection reconciliation for the realtime core."""

from __future__ import annotations

import logging
import resource
import sys
from datetime import datetime, timezone
from typing import Callable, Optional

from collabmap.domain.activities.service import ParticipationService
from collabmap.infra.scheduler import IntervalScheduler
from collabmap.obs import metrics as obs_metrics
from collabmap.realtime.capacity import CapacityGovernor

logger = logging.getLogger(__name__)

_STATS_JOB = "realtime-stats"
_RECONCILE_JOB = "realtime-reconcile"


def _peak_rss_megabytes() -> int:
	peak = resource.getrusage(resource.RUSAGE_SELF).ru_maxrss
	# Linux reports kilobytes, macOS bytes.
	divisor = 1024 * 1024 if sys.platform == "darwin" else 1024
	return round(peak / divisor)


class Janitor:
	"""Backstop for connections that vanished without a disconnect handshake."""

	def __init__(
		self,
		*,
		service: ParticipationService,
		governor: CapacityGovernor,
		is_live: Callable[[str], bool],
		stats_interval: float = 10.0,
		stale_interval: float = 30.0,
		inflight_bound: int = 50,
		namespace: str = "/",
		scheduler: Optional[IntervalScheduler] = None,
	) -> None:
		self._service = service
		self._governor = governor
		self._is_live = is_live
		self._stats_interval = stats_interval
		self._stale_interval = stale_interval
		self._inflight_bound = inflight_bound
		self._namespace = namespace
		self._scheduler = scheduler or IntervalScheduler()

	def start(self) -> None:
		self._scheduler.schedule_every(_STATS_JOB, self.run_stats_once, seconds=self._stats_interval)
		self._scheduler.schedule_every(_RECONCILE_JOB, self.run_reconcile_once, seconds=self._stale_interval)
		self._scheduler.start()

	def stop(self) -> None:
		self._scheduler.shutdown()

	async def run_stats_once(self) -> dict:
		started = datetime.now(timezone.utc)
		try:
			registry = self._service.registry
			inflight = self._service.inflight
			rss_mb = _peak_rss_megabytes()
			stats = {
				"connections": self._governor.count,
				"activities": registry.activity_count,
				"rss_mb": rss_mb,
				"inflight": len(inflight),
				"inflight_cleared": 0,
			}
			obs_metrics.set_registry_sizes(registry.connection_count, registry.activity_count)
			obs_metrics.PROCESS_RSS_MB.set(rss_mb)
			if len(inflight) > self._inflight_bound:
				cleared = inflight.clear()
				stats["inflight_cleared"] = cleared
				obs_metrics.INFLIGHT_CLEARED.inc(cleared)
				logger.warning("inflight_keys_cleared", extra={"cleared": cleared, "bound": self._inflight_bound})
			logger.info("realtime_stats", extra=stats)
			obs_metrics.BACKGROUND_RUNS.labels(name=_STATS_JOB, result="success").inc()
			return stats
		except Exception:
			obs_metrics.BACKGROUND_RUNS.labels(name=_STATS_JOB, result="error").inc()
			raise
		finally:
			duration = (datetime.now(timezone.utc) - started).total_seconds()
			obs_metrics.BACKGROUND_DURATION.labels(name=_STATS_JOB).observe(duration)

	async def run_reconcile_once(self) -> dict:
		started = datetime.now(timezone.utc)
		try:
			registry = self._service.registry
			candidates = set(registry.connection_ids()) | set(self._governor.admitted_ids())
			stale = sorted(sid for sid in candidates if not self._is_live(sid))
			for sid in stale:
				if self._governor.release(sid):
					obs_metrics.socket_disconnected(self._namespace)
				await self._service.disconnect(sid)
			pruned = registry.prune_empty()
			obs_metrics.STALE_CONNECTIONS_CLEANED.inc(len(stale))
			obs_metrics.EMPTY_ACTIVITIES_PRUNED.inc(pruned)
			obs_metrics.set_registry_sizes(registry.connection_count, registry.activity_count)
			if stale or pruned:
				logger.info("stale_connections_reconciled", extra={"cleaned": len(stale), "pruned": pruned})
			obs_metrics.BACKGROUND_RUNS.labels(name=_RECONCILE_JOB, result="success").inc()
			return {"cleaned": len(stale), "pruned": pruned}
		except Exception:
			obs_metrics.BACKGROUND_RUNS.labels(name=_RECONCILE_JOB, result="error").inc()
			raise
		finally:
			duration = (datetime.now(timezone.utc) - started).total_seconds()
			obs_metrics.BACKGROUND_DURATION.labels(name=_RECONCILE_JOB).observe(duration)


__all__ = ["Janitor"]
