"""
Workflows module - Pipeline orchestration for personalized digests.
"""
from workflows.base import ContentPipeline, PipelineRun, PipelineState
from workflows.orchestrator import PersonalizedContentPipeline
from workflows.pipeline_factory import create_pipeline_from_config

__all__ = [
    "ContentPipeline",
    "PipelineRun",
    "PipelineState",
    "PersonalizedContentPipeline",
    "create_pipeline_from_config",
]
