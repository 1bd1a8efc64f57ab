"""
FastAPI dependency injection for Reengage.

Provides the outreach pipeline and its ingestion loop as injectable
dependencies. Both are created at app startup via lifespan; tests swap
in their own with ``set_pipeline``.
"""

import logging
from functools import lru_cache

from src.metrics.aggregator import MetricsAggregator
from src.outreach.config import OutreachConfig, get_outreach_config
from src.outreach.pipeline import IngestionLoop, OutreachPipeline, build_pipeline

from .config import get_app_config

logger = logging.getLogger(__name__)

_pipeline: OutreachPipeline | None = None
_loop: IngestionLoop | None = None


@lru_cache
def get_pipeline_config() -> OutreachConfig:
    """Return cached outreach pipeline config."""
    return get_outreach_config()


def get_pipeline() -> OutreachPipeline:
    """Return the running pipeline, building one on first use."""
    global _pipeline
    if _pipeline is None:
        _pipeline = build_pipeline(get_pipeline_config())
    return _pipeline


def get_ingestion_loop() -> IngestionLoop:
    """Return the ingestion loop bound to the current pipeline."""
    global _loop
    if _loop is None:
        _loop = IngestionLoop(
            get_pipeline(),
            maxsize=get_pipeline_config().ingestion_queue_size,
            poll_seconds=get_app_config().ingestion_poll_seconds,
        )
    return _loop


def get_aggregator() -> MetricsAggregator:
    return get_pipeline().aggregator


def set_pipeline(pipeline: OutreachPipeline | None, loop: IngestionLoop | None = None) -> None:
    """Set the pipeline and loop (used by lifespan and tests)."""
    global _pipeline, _loop
    _pipeline = pipeline
    _loop = loop


def release_pipeline() -> None:
    """Stop the loop, shut the pipeline down and forget both."""
    global _pipeline, _loop
    if _loop is not None:
        _loop.stop()
    if _pipeline is not None:
        _pipeline.shutdown(wait=False)
    _pipeline = None
    _loop = None
