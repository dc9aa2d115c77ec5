"""Event sink protocol for the generation pipeline.

The protocol definition lives in src/core/protocols.py. Implementations are in:
- base_sink.py: BaseEventSink, NullEventSink, GuardedEventSink
- console_sink.py: ConsoleEventSink
"""

from src.core.protocols import EventRunConfig, ProgressEvent, ProgressSink

__all__ = ["EventRunConfig", "ProgressEvent", "ProgressSink"]
