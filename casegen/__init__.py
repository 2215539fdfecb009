"""
CaseGen
Detective case generation pipeline: plan, expand, design, generate, normalize,
validate, red-team, fix and package.

The entry point is casegen.orchestrator.CaseOrchestrator.
"""

__version__ = "0.1.0"
