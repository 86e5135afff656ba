"""
Prompt templates for every language-model call the orchestrator makes.
"""

from agent_orchestrator.prompts.loader import render
from agent_orchestrator.prompts.templates import Template

__all__ = [
    "Template",
    "render",
]
