"""podrun core -- errors, logging and settings shared by every layer.

Architecture::

    errors.py      PodrunError hierarchy (category, retryable, context)
    logging.py     structlog configuration + LogContext
    settings.py    PodrunSettings (pydantic-settings, PODRUN_ env prefix)
"""
