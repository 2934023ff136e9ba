"""
dqsync - Data-quality check compiler and job reconciler

Compiles declarative check definitions into scheduled BigQuery validation
jobs and keeps the job set in sync with the definitions table.
"""

__version__ = "0.1.0"


__all__ = [
    "DqsyncConfig",
    "load_config",
    "get_dqsync_home",
    "compile_check",
    "JobSynchronizer",
    "Reconciler",
]

from .config import DqsyncConfig, load_config, get_dqsync_home
from .compiler import compile_check
from .synchronizer import JobSynchronizer
from .reconciler import Reconciler
