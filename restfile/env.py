"""Environment handling: ``{{placeholder}}`` substitution and env files.

An environment file is a JSON object mapping environment names to flat
objects of placeholder values, e.g.::

    {"dev": {"host": "localhost:8080", "token": "42069"}}
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any, Mapping

logger = logging.getLogger(__name__)

# Conventional name of the env file, looked up next to the request document
DEFAULT_ENV_FILENAME = "http-client.env.json"


def render_value(value: Any) -> str:
    """Render an environment value the way it should appear in the text.

    Strings are inserted verbatim, every other scalar as its JSON text
    (``true``, ``5``, ``null``).
    """
    if isinstance(value, str):
        return value
    return json.dumps(value)


def replace_placeholders(content: str, environment: Mapping[str, Any] | None) -> str:
    """Replace every ``{{key}}`` in *content* with the environment value.

    All keys are matched in a single pass, so a replacement value is never
    scanned again for further placeholders. Placeholders without a matching
    key are left untouched.

    Args:
        content: The raw document text.
        environment: Placeholder name to value mapping.

    Returns:
        The substituted text.
    """
    if not environment:
        return content

    replacements = {
        "{{%s}}" % key: render_value(value) for key, value in environment.items()
    }
    # Longest first so that overlapping keys resolve the same way every run
    ordered = sorted(replacements, key=lambda token: (-len(token), token))
    pattern = re.compile("|".join(re.escape(token) for token in ordered))

    return pattern.sub(lambda match: replacements[match.group(0)], content)


def load_environments(filepath: str) -> dict[str, dict[str, Any]]:
    """Load all environments from a JSON env file.

    Raises:
        FileNotFoundError: If the file does not exist.
        ValueError: If the file is not valid JSON or not an object of objects.
    """
    with open(filepath, "r", encoding="utf-8") as fh:
        try:
            data = json.load(fh)
        except json.JSONDecodeError as exc:
            raise ValueError(f"Invalid env file {filepath!r}: {exc}") from exc

    if not isinstance(data, dict):
        raise ValueError(f"Env file {filepath!r} must contain a JSON object")

    for name, values in data.items():
        if not isinstance(values, dict):
            raise ValueError(
                f"Environment {name!r} in {filepath!r} must be a JSON object"
            )

    return data


def select_environment(
    environments: Mapping[str, dict[str, Any]], name: str
) -> dict[str, Any]:
    """Return the environment called *name*.

    Raises:
        ValueError: If no environment with that name exists.
    """
    try:
        environment = environments[name]
    except KeyError:
        available = ", ".join(sorted(environments)) or "<none>"
        raise ValueError(
            f"Unknown environment {name!r} (available: {available})"
        ) from None

    logger.debug("Using environment %r with %d values", name, len(environment))
    return environment
