"""Display text templates for ResetKeeper.

All user-facing text (titles, descriptions, field labels, footers, colors)
lives in a language pack: a nested mapping of keys to Jinja2 template
strings. Built-in defaults can be overridden per key from a YAML file, so
operators can translate or restyle displays without touching code.

Keys are addressed with dot paths, e.g. ``countdown.embed.title``.
"""

from __future__ import annotations

import copy
from pathlib import Path
from typing import Any

import yaml
from jinja2 import Environment, StrictUndefined, Template, TemplateError

from resetkeeper.logging import get_logger

log = get_logger("templates")


# =============================================================================
# Default Language Pack
# =============================================================================


DEFAULT_LANGUAGE: dict[str, Any] = {
    "countdown": {
        "embed": {
            "color": "0x3498db",
            "title": "⏰ Server Reset Countdown",
            "description": (
                "Time remaining until {{ server_name }} resets at "
                "{{ reset_time }} {{ timezone }}."
            ),
            "thumbnail": None,
            "fields": {
                "time_remaining": {
                    "name": "⏱️ Time Remaining",
                    "value": "**{{ time_remaining }}**",
                    "inline": True,
                },
                "next_reset": {
                    "name": "🕒 Next Reset",
                    "value": "**{{ reset_time }} {{ timezone }}**",
                    "inline": True,
                },
                "server": {
                    "name": "🖥️ Server",
                    "value": "**{{ server_name }}**",
                    "inline": True,
                },
            },
            "footer": "Last updated: {{ current_time }} {{ timezone }}",
        },
    },
    "reset": {
        "embed": {
            "color": "0xF1C40F",
            "title": "🔄 Server Reset Complete",
            "description": (
                "**{{ server_name }}** was reset at **{{ reset_time }}** **{{ timezone }}**."
            ),
            "thumbnail": None,
            "fields": {
                "time_elapsed": {
                    "name": "⏱️ Time Since Reset",
                    "value": "**{{ time_elapsed }}**",
                    "inline": True,
                },
                "reset_time": {
                    "name": "🕒 Reset Time",
                    "value": "**{{ reset_time }} {{ timezone }}**",
                    "inline": True,
                },
                "server": {
                    "name": "🖥️ Server",
                    "value": "**{{ server_name }}**",
                    "inline": True,
                },
            },
            "footer": "This message will auto-delete in {{ delete_time }}",
        },
    },
}


# =============================================================================
# Template Engine
# =============================================================================


class TemplateEngine:
    """Resolves language-pack keys and renders them with Jinja2.

    Undefined substitutions raise instead of rendering as empty strings, so
    a missing value is reported to the caller rather than silently shipped.

    Attributes:
        language_file: Optional YAML file overriding the default pack.
        language: The merged language pack.
    """

    def __init__(self, language_file: Path | None = None) -> None:
        """Initialize the template engine.

        Args:
            language_file: YAML file whose keys override DEFAULT_LANGUAGE.
                Missing files fall back to the defaults with a warning.
        """
        self.language_file = language_file

        self.env = Environment(
            undefined=StrictUndefined,
            autoescape=False,
            keep_trailing_newline=False,
        )

        self._compiled: dict[str, Template] = {}
        self.language = self._load_language()

        log.debug(
            "template_engine_initialized",
            language_file=str(language_file) if language_file else None,
        )

    def _load_language(self) -> dict[str, Any]:
        """Merge the optional language file over the defaults."""
        language = copy.deepcopy(DEFAULT_LANGUAGE)

        if self.language_file is None:
            log.debug("language_loaded", source="default")
            return language

        if not self.language_file.exists():
            log.warning("language_file_not_found", path=str(self.language_file))
            return language

        with open(self.language_file, encoding="utf-8") as f:
            overrides = yaml.safe_load(f) or {}

        if not isinstance(overrides, dict):
            log.warning("language_file_invalid", path=str(self.language_file))
            return language

        _deep_merge(language, overrides)
        log.debug("language_loaded", source="file", path=str(self.language_file))
        return language

    def get_value(self, key: str, default: Any = None) -> Any:
        """Look up a raw language-pack value by dot path.

        Args:
            key: Dot path such as ``reset.embed.color``.
            default: Returned when any path segment is missing.
        """
        node: Any = self.language
        for part in key.split("."):
            if not isinstance(node, dict) or part not in node:
                return default
            node = node[part]
        return node

    def render(self, template_key: str, substitutions: dict[str, Any] | None = None) -> str:
        """Render a language-pack string with substitutions.

        Args:
            template_key: Dot path of the template string.
            substitutions: Values referenced by the template.

        Returns:
            The rendered string.

        Raises:
            TemplateNotFoundError: If the key is missing or not a string.
            TemplateRenderError: If rendering fails, including undefined values.
        """
        template = self._get_template(template_key)
        try:
            return template.render(**(substitutions or {}))
        except TemplateError as e:
            log.error("template_render_failed", key=template_key, error=str(e))
            raise TemplateRenderError(f"Failed to render {template_key}: {e}") from e

    def _get_template(self, template_key: str) -> Template:
        template = self._compiled.get(template_key)
        if template is not None:
            return template

        source = self.get_value(template_key)
        if not isinstance(source, str):
            log.error("template_not_found", key=template_key)
            raise TemplateNotFoundError(f"Template not found: {template_key}")

        try:
            template = self.env.from_string(source)
        except TemplateError as e:
            raise TemplateRenderError(f"Invalid template {template_key}: {e}") from e

        self._compiled[template_key] = template
        return template


def _deep_merge(base: dict[str, Any], overrides: dict[str, Any]) -> None:
    """Recursively merge ``overrides`` into ``base`` in place."""
    for key, value in overrides.items():
        if isinstance(value, dict) and isinstance(base.get(key), dict):
            _deep_merge(base[key], value)
        else:
            base[key] = value


class TemplateRenderError(Exception):
    """Raised when a language-pack template cannot be rendered."""


class TemplateNotFoundError(TemplateRenderError):
    """Raised when a language-pack key does not resolve to a template."""
