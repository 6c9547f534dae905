# Application Stats Package
from .metrics_calculator import DaySchedule, MetricsCalculator, ReviewStats

__all__ = ["MetricsCalculator", "ReviewStats", "DaySchedule"]
