"""Timers and periodic jobs.

``TimerRegistry`` keeps one-shot timers (reminders, response checks) in a
min-heap keyed by explicit hashable keys; a single pump calls ``run_due``.
``PeriodicDriver`` runs the fixed-cadence jobs (queue drain, escalation
sweep, recurring tick and the timer pump) on an APScheduler event loop
scheduler.
"""
import heapq
import inspect
import itertools
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, Hashable, List, Optional, Set, Tuple

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from choreflow.utils.monitoring import StructuredLogger

TimerCallback = Callable[[], Any]


@dataclass
class _Timer:
    key: Hashable
    fire_at: datetime
    callback: TimerCallback
    group: Optional[Hashable]
    seq: int = field(compare=False)


class TimerRegistry:
    """Cancellable one-shot timers fired by an external pump"""

    def __init__(self):
        self._heap: List[Tuple[datetime, int, Hashable]] = []
        self._timers: Dict[Hashable, _Timer] = {}
        self._groups: Dict[Hashable, Set[Hashable]] = {}
        self._seq = itertools.count()

    def __len__(self) -> int:
        return len(self._timers)

    def __contains__(self, key: Hashable) -> bool:
        return key in self._timers

    def schedule(
        self,
        key: Hashable,
        fire_at: datetime,
        callback: TimerCallback,
        group: Optional[Hashable] = None,
    ) -> None:
        """Register ``callback`` to fire at ``fire_at``; an existing timer under ``key`` is replaced"""
        self.cancel(key)
        timer = _Timer(key=key, fire_at=fire_at, callback=callback, group=group, seq=next(self._seq))
        self._timers[key] = timer
        if group is not None:
            self._groups.setdefault(group, set()).add(key)
        heapq.heappush(self._heap, (fire_at, timer.seq, key))

    def cancel(self, key: Hashable) -> bool:
        timer = self._timers.pop(key, None)
        if timer is None:
            return False
        self._forget_group_member(timer)
        # Heap entry is dropped lazily when popped
        return True

    def cancel_group(self, group: Hashable) -> int:
        keys = self._groups.pop(group, set())
        for key in keys:
            self._timers.pop(key, None)
        return len(keys)

    def pending(self, group: Optional[Hashable] = None) -> List[Tuple[Hashable, datetime]]:
        if group is None:
            timers = list(self._timers.values())
        else:
            timers = [self._timers[key] for key in self._groups.get(group, ()) if key in self._timers]
        return sorted(((timer.key, timer.fire_at) for timer in timers), key=lambda item: item[1])

    def next_fire_time(self) -> Optional[datetime]:
        self._discard_stale_head()
        return self._heap[0][0] if self._heap else None

    def clear(self) -> None:
        self._heap.clear()
        self._timers.clear()
        self._groups.clear()

    async def run_due(self, now: datetime) -> int:
        """Fire every live timer due at or before ``now`` in time order"""
        fired = 0
        while True:
            self._discard_stale_head()
            if not self._heap or self._heap[0][0] > now:
                break
            _, _, key = heapq.heappop(self._heap)
            timer = self._timers.pop(key)
            self._forget_group_member(timer)
            fired += 1
            try:
                result = timer.callback()
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                StructuredLogger.log_error(
                    e,
                    context={"function": "TimerRegistry.run_due", "timer_key": str(key)},
                )
        return fired

    def _discard_stale_head(self) -> None:
        while self._heap:
            _, seq, key = self._heap[0]
            timer = self._timers.get(key)
            if timer is not None and timer.seq == seq:
                return
            heapq.heappop(self._heap)

    def _forget_group_member(self, timer: _Timer) -> None:
        if timer.group is None:
            return
        members = self._groups.get(timer.group)
        if members is not None:
            members.discard(timer.key)
            if not members:
                del self._groups[timer.group]


class PeriodicDriver:
    """Fixed-cadence jobs on an APScheduler AsyncIOScheduler"""

    def __init__(self, scheduler: Optional[AsyncIOScheduler] = None):
        self.scheduler = scheduler or AsyncIOScheduler()

    @property
    def running(self) -> bool:
        return self.scheduler.running

    def add_job(self, job_id: str, name: str, func: Callable[[], Awaitable[Any]], seconds: int) -> None:
        async def guarded():
            try:
                await func()
            except Exception as e:
                StructuredLogger.log_error(e, context={"function": job_id})

        self.scheduler.add_job(
            guarded,
            trigger=IntervalTrigger(seconds=seconds),
            id=job_id,
            name=name,
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )

    def start(self) -> None:
        if self.scheduler.running:
            return
        self.scheduler.start()
        StructuredLogger.log_event(
            "scheduler_initialized",
            "Background scheduler started",
            metadata={
                job.id: str(job.next_run_time) for job in self.scheduler.get_jobs()
            },
        )

    def shutdown(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            StructuredLogger.log_event(
                "scheduler_shutdown",
                "Background scheduler stopped",
            )
