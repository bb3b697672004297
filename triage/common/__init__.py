"""
Triage Common Module

Shared infrastructure: configuration, LLM access, schemas.
"""

from .config import (
    TriageConfig,
    Project,
    ProjectConfigError,
    UnknownProjectError,
    load_config,
    resolve_project,
)
from .llm_client import LLMClient, LLMRequestError
from .llm_utils import parse_llm_json

__all__ = [
    "TriageConfig",
    "Project",
    "ProjectConfigError",
    "UnknownProjectError",
    "load_config",
    "resolve_project",
    "LLMClient",
    "LLMRequestError",
    "parse_llm_json",
]
