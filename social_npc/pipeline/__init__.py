"""Turn pipeline: intent collection, GM resolution, memory update.

See orchestrator.py for the phase contracts.
"""

from .orchestrator import Engine  # noqa: F401
