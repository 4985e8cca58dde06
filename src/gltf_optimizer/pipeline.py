"""Pipeline orchestration: run configured stages against one document."""

from __future__ import annotations

import logging
import threading
import time
from typing import Any, Iterable, Optional

from gltf_optimizer.engine import TransformEngine
from gltf_optimizer.errors import ConfigurationError, PipelineCancelled, StageError
from gltf_optimizer.stages import StageDescriptor, order_violations

logger = logging.getLogger(__name__)


class Pipeline:
    """Applies an ordered list of stages to a scene document.

    Stages run exactly once each, in the order given. The first failing
    stage aborts the rest and is raised as a StageError naming the stage.

    Example:
        pipeline = Pipeline(engine)
        pipeline.run(document, default_stages())
    """

    def __init__(self, engine: TransformEngine) -> None:
        self.engine = engine

    def validate(self, stages: Iterable[Any]) -> list[StageDescriptor]:
        """Parse stages and check the engine provides each of them.

        Raises ConfigurationError before anything runs. Out-of-order stages
        are allowed and only logged.
        """
        descriptors = [StageDescriptor.parse(stage) for stage in stages]
        capabilities = self.engine.capabilities

        missing = [d.name.value for d in descriptors if d.name not in capabilities]
        if missing:
            supported = ", ".join(kind.value for kind in capabilities)
            raise ConfigurationError(
                f"No capability for stage kind(s): {', '.join(missing)}; "
                f"this engine supports: {supported}"
            )

        for earlier, later in order_violations(descriptors):
            logger.warning(
                "Stage %s runs after %s; the recommended order is the reverse",
                later.describe(),
                earlier.describe(),
            )
        return descriptors

    def run(
        self,
        document: Any,
        stages: Iterable[Any],
        cancel: Optional[threading.Event] = None,
    ) -> Any:
        """Run ``stages`` on ``document`` in place and return it."""
        descriptors = self.validate(stages)
        capabilities = self.engine.capabilities

        for index, stage in enumerate(descriptors, start=1):
            if cancel is not None and cancel.is_set():
                raise PipelineCancelled(
                    f"Cancelled before stage {index}/{len(descriptors)} ({stage.describe()})"
                )

            logger.debug("Stage %d/%d: %s", index, len(descriptors), stage.describe())
            start = time.perf_counter()
            try:
                capabilities[stage.name](document, stage.params)
            except StageError as e:
                if e.stage is None:
                    e.stage = stage
                raise
            except Exception as e:
                raise StageError(str(e) or type(e).__name__, stage=stage, cause=e) from e

            logger.debug(
                "Stage %s done in %.1f ms", stage.name.value, (time.perf_counter() - start) * 1000
            )

        return document


def run_pipeline(engine: TransformEngine, document: Any, stages: Iterable[Any]) -> Any:
    """Run ``stages`` on ``document``.

    Convenience function that creates a Pipeline instance.
    """
    return Pipeline(engine).run(document, stages)
