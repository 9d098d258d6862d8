"""
Conductor — Worker Orchestration Engine

Runs a pool of AI worker agents, each a separate server process configured
from a WorkerProfile, and routes work to them.

Layers (bottom to top):
    1. Worker registry (live instances, status transitions, listeners)
    2. Spawner (model resolution, server start, session bootstrap)
    3. Dispatcher (one message to one worker, bounded by a timeout)
    4. Job registry (trackable async dispatches with await and retention)
    5. Workflow engine (fail-fast pipelines with carry-forward context)
    6. WorkerManager (the façade callers use)
"""

__version__ = "0.1.0"
