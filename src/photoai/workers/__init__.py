"""Background workers for async processing tasks."""

from photoai.workers.pending_sweep_worker import run_pending_sweep_worker, sweep_once

__all__ = [
    "run_pending_sweep_worker",
    "sweep_once",
]
