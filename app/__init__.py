"""Integration Job Queue - Resilient Job Orchestration Service

Asynchronous job queue, retry executor and integration health gating for the
documentation service backend.
"""

__version__ = "0.1.0"
