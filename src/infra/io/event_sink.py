"""Event sink implementations for the generation pipeline.

Provides concrete implementations of the ProgressSink protocol:
- BaseEventSink: Base class with no-op implementations
- NullEventSink: Silent sink for testing
- GuardedEventSink: Best-effort wrapper used by the orchestrator
- ConsoleEventSink: Full console output implementation
"""

from .base_sink import BaseEventSink, GuardedEventSink, NullEventSink
from .console_sink import ConsoleEventSink

__all__ = [
    "BaseEventSink",
    "ConsoleEventSink",
    "GuardedEventSink",
    "NullEventSink",
]
