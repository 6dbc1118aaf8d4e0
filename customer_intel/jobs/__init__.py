from customer_intel.jobs.scheduler import SchedulerLoop
from customer_intel.jobs.sweeps import detect_abandoned_carts, detect_at_risk_vips, process_due_jobs

__all__ = [
    "SchedulerLoop",
    "detect_abandoned_carts",
    "detect_at_risk_vips",
    "process_due_jobs",
]
