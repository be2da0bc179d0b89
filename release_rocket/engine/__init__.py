"""Release orchestration engine.

Key Components:
    - state_machine: Step lifecycle transitions and dependency gating
    - template: The versioned default pipeline
    - ReleaseWorkflowOrchestrator: Pull requests and workflow dispatch for a step
    - ReleaseService: Operations offered to the UI and CLI
"""

from release_rocket.engine.orchestrator import ReleaseWorkflowOrchestrator
from release_rocket.engine.service import ReleaseService
from release_rocket.engine.template import DEFAULT_PIPELINE, PIPELINE_TEMPLATE_VERSION, instantiate_pipeline

__all__ = [
    "DEFAULT_PIPELINE",
    "PIPELINE_TEMPLATE_VERSION",
    "ReleaseService",
    "ReleaseWorkflowOrchestrator",
    "instantiate_pipeline",
]
