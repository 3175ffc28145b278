"""
Scheduling of the Brussels address and dog place imports.
"""

from .service import ScheduledDataService
from .strategies import UpdateStrategyFactory
from .update_scheduler import UpdateScheduler
from .versioning import DataVersionService
