"""Monitoring loop and scheduling."""

from limitbuy.monitor.scheduler import AsyncioScheduler, Scheduler, SchedulerStatus
from limitbuy.monitor.supervisor import MonitoringSupervisor, MonitorStatus, TickOutcome

__all__ = [
    "AsyncioScheduler",
    "MonitorStatus",
    "MonitoringSupervisor",
    "Scheduler",
    "SchedulerStatus",
    "TickOutcome",
]
