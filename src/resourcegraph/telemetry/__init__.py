"""Telemetry and observability for ResourceGraph runs.

Provides:
- ProgressCallback: Live progress bar (tqdm)
"""

from .progress import ProgressCallback

__all__ = [
    "ProgressCallback",
]
