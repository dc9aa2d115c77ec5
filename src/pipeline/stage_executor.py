"""Single-attempt execution of one pipeline stage.

The executor builds the stage's context bundle, hands it to the generation
oracle together with the expected output shape, parses the reply into the
stage's closed output type and, for the generation stages, runs the local
analysis. It performs no retries and no validation; failures surface as
exceptions for the retry controller.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any

from src.domain.stages import STAGE_DEFINITIONS, StageDefinition

if TYPE_CHECKING:
    from src.core.protocols import GenerationOracle
    from src.core.stages import StageId
    from src.domain.stages import StageInputs

logger = logging.getLogger(__name__)


class StageExecutor:
    """Run one attempt of a stage against a generation oracle.

    Args:
        oracle: Generation oracle.
        timeout_seconds: Upper bound for a single oracle call; None waits
            indefinitely. A timeout is an ordinary (retried) failure.
        definitions: Stage definitions, overridable in tests.
    """

    def __init__(
        self,
        oracle: GenerationOracle,
        *,
        timeout_seconds: float | None = None,
        definitions: dict[StageId, StageDefinition[Any]] | None = None,
    ) -> None:
        self._oracle = oracle
        self._timeout = timeout_seconds
        self._definitions = definitions or STAGE_DEFINITIONS

    def definition(self, stage: StageId) -> StageDefinition[Any]:
        return self._definitions[stage]

    def build_context(self, stage: StageId, inputs: StageInputs) -> dict[str, Any]:
        return self.definition(stage).build_context(inputs)

    async def execute(self, stage: StageId, inputs: StageInputs) -> Any:  # noqa: ANN401
        """Execute ``stage`` once and return its parsed output.

        Raises:
            StageOutputError: The reply does not match the stage's shape.
            TimeoutError: The oracle call exceeded ``timeout_seconds``.
            Exception: Whatever the oracle raises.
        """
        definition = self.definition(stage)
        context = definition.build_context(inputs)
        logger.debug(
            "Executing stage %s with context keys %s", stage.value, sorted(context)
        )
        call = self._oracle.generate(stage, context, definition.output_shape)
        if self._timeout is not None:
            reply = await asyncio.wait_for(call, timeout=self._timeout)
        else:
            reply = await call
        output = definition.parse(reply)
        if definition.analyze is not None:
            output = definition.analyze(output, inputs)
        return output
