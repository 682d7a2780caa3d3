"""Resource transform pipeline: resolve, instrument, embed the source map."""

from __future__ import annotations

import logging
from typing import Optional

from .config import InstrumentationConfig
from .instrumenter import Instrumenter, get_latest_source_map
from .models import TransformedResource
from .resources import ResourceReader


async def transform_resource(
    path: str,
    *,
    resources: ResourceReader,
    instrumenter: Instrumenter,
    config: InstrumentationConfig,
    logger: logging.Logger,
) -> Optional[TransformedResource]:
    """Return the instrumented resource, or ``None`` when nothing resolves for ``path``."""
    logger.debug("Looking up resource %s for instrumentation", path)
    resource = await resources.by_path(path)
    if resource is None:
        logger.warning("No resource found for %s, passing request on", path)
        return None

    source = await resource.get_string()
    text = await instrumenter.instrument(source, path, config.instrument)
    logger.debug("Instrumented %s", path)

    if config.instrument.produce_source_map:
        source_map = get_latest_source_map(instrumenter)
        if source_map:
            text += source_map
            logger.debug("Embedded inline source map for %s", path)
        else:
            logger.warning("No source map produced for %s", path)

    return TransformedResource(text=text)


__all__ = ["transform_resource"]
