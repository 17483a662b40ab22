"""Orchestrator module for provisioning, status and publishing."""

from static_edge.orchestrator.pipeline import (
    PipelineDriver,
    PipelineResult,
    PipelineStatus,
    StageCallback,
)
from static_edge.orchestrator.status import StatusReport, StatusReporter
from static_edge.orchestrator.publish import ContentPublisher, PublishResult, UploadItem

__all__ = [
    # Provisioning pipeline
    'PipelineDriver',
    'PipelineResult',
    'PipelineStatus',
    'StageCallback',

    # Status
    'StatusReport',
    'StatusReporter',

    # Publishing
    'ContentPublisher',
    'PublishResult',
    'UploadItem',
]
