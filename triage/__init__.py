"""
Issue Triage

Hygiene suggestions for an issue queue: deterministic rules first, then a
bundled semantic check, with pending/checked suggestions kept per project.

Philosophy:
- The source system's change time versions every snapshot
- At most one pending suggestion per issue; a human disposes of it
- Suggestions only; nothing is ever written back to the issue tracker

Usage:
    from triage.common import load_config, resolve_project
    from triage.suggester import SuggestionPipeline
    from triage.store import JsonFileBackend
"""

__version__ = "0.1.0"
