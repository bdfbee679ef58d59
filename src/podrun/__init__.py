"""
podrun - ephemeral execution pods for connector operations.

A workflow engine hands podrun one connector operation at a time (discover,
check or sync). podrun writes the run's configuration to shared storage,
launches a single-use pod that mounts it, waits for the pod to finish,
extracts a structured result and deletes the pod again.

Layout::

    podrun.core         errors, structured logging, settings
    podrun.execution    materializer, spec builder, scheduler clients,
                        poller, extractor, lifecycle coordinator
    podrun.activities   entry points called by the workflow engine
    podrun.cli          operator CLI (``podrun``)
"""

__version__ = "0.3.0"
