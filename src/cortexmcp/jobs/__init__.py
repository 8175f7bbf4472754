"""Background jobs: the cadence scheduler, spawned tasks and job bodies.

Exports are loaded lazily: the CRM services import the scheduler while
the job bodies import the CRM and context packages.
"""

from __future__ import annotations

from importlib import import_module

__all__ = [
    "BackgroundTasks",
    "JobScheduler",
    "RefreshRunResult",
    "ScheduledJob",
    "daily_usage_report",
    "handoff_reminder",
    "nightly_context_refresh",
    "stale_context_cleanup",
]


_EXPORT_TO_MODULE = {
    "BackgroundTasks": "cortexmcp.jobs.scheduler",
    "JobScheduler": "cortexmcp.jobs.scheduler",
    "ScheduledJob": "cortexmcp.jobs.scheduler",
    "RefreshRunResult": "cortexmcp.jobs.tasks",
    "daily_usage_report": "cortexmcp.jobs.tasks",
    "handoff_reminder": "cortexmcp.jobs.tasks",
    "nightly_context_refresh": "cortexmcp.jobs.tasks",
    "stale_context_cleanup": "cortexmcp.jobs.tasks",
}


def __getattr__(name: str):
    module_name = _EXPORT_TO_MODULE.get(name)
    if module_name is None:
        raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
    module = import_module(module_name)
    return getattr(module, name)
