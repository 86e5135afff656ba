"""
Renders the .jinja2 prompt templates.

Every constant on `Template` must have a file in templates/; a missing one
fails at import rather than on the first model call of a conversation.
Rendered prompts are trimmed and runs of blank lines left behind by
conditional blocks are collapsed.
"""

import logging
import re
from functools import lru_cache
from pathlib import Path
from typing import List

from jinja2 import Environment, FileSystemLoader, select_autoescape

from .templates import Template

logger = logging.getLogger(__name__)

TEMPLATES_DIR = Path(__file__).parent / "templates"
BLANK_RUN = re.compile(r"\n{3,}")


def template_names() -> List[str]:
    return [getattr(Template, name) for name in dir(Template) if not name.startswith("_")]


def _validate_templates():
    missing = [name for name in template_names() if not (TEMPLATES_DIR / f"{name}.jinja2").exists()]
    if missing:
        raise FileNotFoundError(f"Prompt templates missing from {TEMPLATES_DIR}: {', '.join(sorted(missing))}")


_validate_templates()


@lru_cache(maxsize=1)
def _get_environment() -> Environment:
    return Environment(
        loader=FileSystemLoader(TEMPLATES_DIR),
        autoescape=select_autoescape(default=False),
        trim_blocks=True,
        lstrip_blocks=True,
    )


def render(template_name: str, **context) -> str:
    """
    Args:
        template_name: One of the `Template` constants
        **context: Variables the template refers to

    Returns:
        The prompt text, stripped
    """
    template = _get_environment().get_template(f"{template_name}.jinja2")
    text = BLANK_RUN.sub("\n\n", template.render(**context)).strip()
    logger.debug(f"Rendered prompt '{template_name}' ({len(text)} chars)")
    return text
