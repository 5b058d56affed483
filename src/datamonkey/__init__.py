"""Job orchestration core for HyPhy analyses on batch schedulers."""

__version__ = "0.1.0"
