"""I/O utilities for agentspec.

This package contains:
- config: AgentSpecConfig dataclass for configuration management
- event_sink: ProgressSink implementations (console, null, guarded)
- store: JSON-file specification store
- log_output/: Console logging and run metadata
"""

from src.infra.io.config import AgentSpecConfig, ConfigurationError
from src.infra.io.event_protocol import EventRunConfig, ProgressEvent, ProgressSink
from src.infra.io.event_sink import (
    ConsoleEventSink,
    GuardedEventSink,
    NullEventSink,
)
from src.infra.io.store import FileSpecificationStore

__all__ = [
    "AgentSpecConfig",
    "ConfigurationError",
    "ConsoleEventSink",
    "EventRunConfig",
    "FileSpecificationStore",
    "GuardedEventSink",
    "NullEventSink",
    "ProgressEvent",
    "ProgressSink",
]
