"""In-memory fake implementations for testing.

This module provides fake implementations of agentspec protocols for use in
unit tests. Fakes are preferred over mocks because they:

1. Implement real protocol contracts, catching interface mismatches at test time
2. Provide deterministic, predictable behavior without call-order dependencies
3. Enable behavior-based testing (assert outputs/state) over interaction testing

Available fakes:
- ScriptedOracle: GenerationOracle replaying canned replies per stage
- InMemorySpecificationStore: SpecificationStore with failure switches
- FakeEventSink: Event capture for asserting on progress and warnings
- replies: Canned stage replies for a small gym-membership system

Usage:
    from tests.fakes import FakeEventSink, InMemorySpecificationStore, ScriptedOracle

    async def test_something():
        oracle = ScriptedOracle()
        oracle.fail(StageId.MODELS, times=2)
        # build an orchestrator with these fakes
"""

from tests.fakes.event_sink import FakeEventSink, RaisingEventSink
from tests.fakes.oracle import ScriptedOracle
from tests.fakes.store import InMemorySpecificationStore

__all__ = [
    "FakeEventSink",
    "InMemorySpecificationStore",
    "RaisingEventSink",
    "ScriptedOracle",
]
