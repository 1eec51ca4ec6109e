"""ECG training simulator: gamification engine."""

__version__ = "0.1.0"
