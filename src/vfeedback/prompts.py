"""Prompt templates: turn a Change into the text the agent reads.

Rendering is a pure function of (change, template, bead context). Only the
placeholders in PLACEHOLDERS are substituted; any other ``{{NAME}}`` is left
in the output as written so a typo in a template stays visible.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from pathlib import Path

import frontmatter

from vfeedback.models import Change

logger = logging.getLogger(__name__)

PLACEHOLDERS = (
    "TASK_ID",
    "FEEDBACK",
    "ELEMENT_TAG",
    "SELECTOR",
    "ELEMENT_ID",
    "ELEMENT_CLASSES",
    "DOM_PATH",
    "SOURCE_HINT",
    "ELEMENT_SUMMARY",
    "COMPUTED_STYLES",
    "VISUAL_ADJUSTMENTS",
    "CSS_FRAMEWORK",
    "PAGE_URL",
    "BEAD_CONTEXT",
)

DEFAULT_SEPARATOR = "\n\n---\n\n"

DEFAULT_TEMPLATE = """\
# Visual Feedback Request

Task ID: {{TASK_ID}}

## User Feedback
"{{FEEDBACK}}"

## Target Element
- **Tag:** <{{ELEMENT_TAG}}>
- **Selector:** {{SELECTOR}}
{{ELEMENT_ID}}
{{ELEMENT_CLASSES}}
{{DOM_PATH}}
{{SOURCE_HINT}}
{{CSS_FRAMEWORK}}

{{ELEMENT_SUMMARY}}

{{COMPUTED_STYLES}}

{{VISUAL_ADJUSTMENTS}}

{{PAGE_URL}}

{{BEAD_CONTEXT}}

## Instructions
1. Find the source file containing this element
2. Make the requested change
"""

_PLACEHOLDER_RE = re.compile(r"\{\{([A-Z_]+)\}\}")

# (style key, label) in display order
_STYLE_LABELS = (
    ("width", "Width"),
    ("height", "Height"),
    ("backgroundColor", "Background"),
    ("color", "Text Color"),
    ("fontSize", "Font Size"),
    ("display", "Display"),
    ("position", "Position"),
)


@dataclass
class PromptTemplate:
    """A template body plus the separator used when listing several changes."""

    body: str = DEFAULT_TEMPLATE
    separator: str = DEFAULT_SEPARATOR
    source: str = "built-in fallback"


def load_template(path: Path | None) -> PromptTemplate:
    """Load a Markdown template, with optional YAML front matter.

    Front matter may set ``separator``. Falls back to the built-in template
    when no path is configured or the file cannot be read.
    """
    if path is None:
        logger.info("Prompt template: using built-in fallback")
        return PromptTemplate()
    try:
        post = frontmatter.load(str(path))
    except (OSError, ValueError) as e:
        logger.error("Failed to load prompt template %s: %s", path, e)
        return PromptTemplate()

    separator = post.metadata.get("separator")
    template = PromptTemplate(
        body=post.content,
        separator=str(separator) if separator else DEFAULT_SEPARATOR,
        source=str(path),
    )
    logger.info("Prompt template: %s (%d lines)", path, len(post.content.splitlines()))
    return template


def format_computed_styles(styles: dict[str, str] | None) -> str:
    if not styles:
        return ""
    lines = ["## Current Styles"]
    for key, label in _STYLE_LABELS:
        if styles.get(key):
            lines.append(f"- {label}: {styles[key]}")
    return "\n".join(lines) if len(lines) > 1 else ""


def format_visual_adjustments(
    adjustments: dict[str, str] | None, original_units: dict[str, str] | None = None
) -> str:
    """List the literal values from the user's in-page edits, in the order they were made."""
    if not adjustments:
        return ""
    units = original_units or {}
    lines = ["## Visual Adjustments"]
    for key, value in adjustments.items():
        line = f"- {key}: {value}"
        if units.get(key):
            line += f" (source uses {units[key]})"
        lines.append(line)
    return "\n".join(lines)


def _placeholder_values(change: Change, bead_context: str | None) -> dict[str, str]:
    element = change.element

    dom_path = ""
    if element.path:
        parts = [seg.get("selector") or seg.get("tag", "") for seg in element.path]
        dom_path = f"- **DOM Path:** {' > '.join(parts)}"

    return {
        "TASK_ID": change.id or "unknown",
        "FEEDBACK": change.feedback,
        "ELEMENT_TAG": element.tag,
        "SELECTOR": element.selector or "N/A",
        "ELEMENT_ID": f"- **ID:** #{element.id}" if element.id else "",
        "ELEMENT_CLASSES": (
            f"- **Classes:** .{', .'.join(element.classes)}" if element.classes else ""
        ),
        "DOM_PATH": dom_path,
        "SOURCE_HINT": f"- **Source:** {element.source_hint}" if element.source_hint else "",
        "ELEMENT_SUMMARY": (
            f"## Element Summary\n{element.smart_summary}" if element.smart_summary else ""
        ),
        "COMPUTED_STYLES": format_computed_styles(element.computed_styles),
        "VISUAL_ADJUSTMENTS": format_visual_adjustments(
            change.visual_adjustments, change.original_units
        ),
        "CSS_FRAMEWORK": (
            f"- **CSS Framework:** {change.css_framework}" if change.css_framework else ""
        ),
        "PAGE_URL": f"## Page URL\n{change.page_url}" if change.page_url else "",
        "BEAD_CONTEXT": bead_context or "",
    }


def render_prompt(
    change: Change,
    template: PromptTemplate | str | None = None,
    bead_context: str | None = None,
) -> str:
    """Substitute the known placeholders in ``template`` for ``change``."""
    if template is None:
        body = DEFAULT_TEMPLATE
    elif isinstance(template, PromptTemplate):
        body = template.body
    else:
        body = template

    values = _placeholder_values(change, bead_context)
    rendered = _PLACEHOLDER_RE.sub(lambda m: values.get(m.group(1), m.group(0)), body)

    # Collapse blank runs left by empty optional sections
    rendered = re.sub(r"\n{3,}", "\n\n", rendered)
    return rendered.strip()
