"""Module for building the override values of a helm release.

Values come from up to three places, applied in order with later sources
winning at every leaf:
- Inline `key=value` assignments using the same dotted-path syntax as
  `helm --set` e.g. `image.tag=1.2.3,ingress.hosts[0]=example.com`.
- An inline YAML document.
- A YAML document fetched from a URL (`s3://` or `https://`).
"""

from collections.abc import Iterable
import logging
from pathlib import Path
import re
from typing import Any, Protocol

import aiofiles
import yaml

from .exceptions import ParseError, ValidationError

__all__ = [
    "parse_values",
    "merge_values",
    "process_values",
]

_LOGGER = logging.getLogger(__name__)

VALUES_FILE_NAME = "values.yaml"

_INDEX_RE = re.compile(r"^(?P<name>.*?)(?P<indices>(?:\[\d+\])+)$")
_INDICES_RE = re.compile(r"\[(\d+)\]")
_INT_RE = re.compile(r"^-?(0|[1-9][0-9]*)$")

# Upper bound on list indices accepted from an assignment, matching helm.
MAX_INDEX = 65536


class Fetcher(Protocol):
    """Downloads a document to a local path."""

    async def fetch(self, url: str, dest: Path) -> None:
        """Download `url` to `dest`."""


def _split_unescaped(text: str, sep: str, track_braces: bool = False) -> list[str]:
    """Split text on sep, ignoring escaped separators and those inside braces.

    Escape sequences are kept in the output so they can be resolved later.
    """
    parts: list[str] = []
    current: list[str] = []
    depth = 0
    chars = iter(text)
    for char in chars:
        if char == "\\":
            current.append(char)
            current.append(next(chars, ""))
            continue
        if track_braces and char == "{":
            depth += 1
        elif track_braces and char == "}":
            depth -= 1
        if char == sep and depth <= 0:
            parts.append("".join(current))
            current = []
            continue
        current.append(char)
    parts.append("".join(current))
    return parts


def _unescape(text: str) -> str:
    return re.sub(r"\\(.)", r"\1", text)


def _typed_value(raw: str) -> Any:
    """Convert an assignment value to the type helm would give it."""
    if raw.lower() == "true":
        return True
    if raw.lower() == "false":
        return False
    if raw.lower() == "null":
        return None
    if _INT_RE.match(raw):
        return int(raw)
    return _unescape(raw)


def _parse_value(raw: str) -> Any:
    if raw.startswith("{") and raw.endswith("}"):
        inner = raw[1:-1]
        if not inner:
            return []
        return [_typed_value(item) for item in _split_unescaped(inner, ",")]
    return _typed_value(raw)


def _set_list_item(items: list[Any], index: int, value: Any) -> list[Any]:
    if index > MAX_INDEX:
        raise ValidationError(f"Index {index} is larger than maximum {MAX_INDEX}")
    while len(items) <= index:
        items.append(None)
    items[index] = value
    return items


def _set_path(dest: dict[str, Any], path: list[str], value: Any, assignment: str) -> None:
    """Assign value at the dotted path, creating maps and lists as needed."""
    node: Any = dest
    for position, segment in enumerate(path):
        last = position == len(path) - 1
        key = _unescape(segment)
        if not (match := _INDEX_RE.match(segment)):
            if not key:
                raise ValidationError(f"Empty key in assignment '{assignment}'")
            if last:
                node[key] = value
                return
            child = node.get(key)
            if not isinstance(child, dict):
                child = {}
                node[key] = child
            node = child
            continue

        name = _unescape(match.group("name"))
        indices = [
            int(index) for index in _INDICES_RE.findall(match.group("indices"))
        ]
        if not name:
            raise ValidationError(f"Empty key in assignment '{assignment}'")
        items = node.get(name)
        if not isinstance(items, list):
            items = []
        node[name] = items
        # Each index but the last selects a nested list
        for index in indices[:-1]:
            nested = items[index] if index < len(items) else None
            if not isinstance(nested, list):
                nested = []
                _set_list_item(items, index, nested)
            items = nested
        index = indices[-1]
        if last:
            _set_list_item(items, index, value)
            return
        child = items[index] if index < len(items) else None
        if not isinstance(child, dict):
            child = {}
            _set_list_item(items, index, child)
        node = child


def _parse_assignment(assignment: str, dest: dict[str, Any]) -> None:
    for pair in _split_unescaped(assignment, ",", track_braces=True):
        if not pair:
            continue
        key_value = _split_unescaped(pair, "=")
        if len(key_value) < 2:
            raise ValidationError(
                f"Unable to parse values '{assignment}': key '{pair}' has no value"
            )
        key, raw = key_value[0], "=".join(key_value[1:])
        if not key:
            raise ValidationError(
                f"Unable to parse values '{assignment}': empty key in '{pair}'"
            )
        _set_path(dest, _split_unescaped(key, "."), _parse_value(raw), assignment)


def parse_values(assignments: Iterable[str] | None) -> dict[str, Any]:
    """Parse `helm --set` style assignments into a nested mapping.

    Later assignments to the same path win.
    """
    values: dict[str, Any] = {}
    for assignment in assignments or []:
        _parse_assignment(assignment, values)
    return values


def merge_values(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Recursively merge two dictionaries, similar to how Helm merges values.

    Values in override win. Lists are replaced entirely (Helm behavior). Neither
    input is modified.
    """
    result = base.copy()
    for key, override_value in override.items():
        base_value = result.get(key)
        if isinstance(base_value, dict) and isinstance(override_value, dict):
            result[key] = merge_values(base_value, override_value)
        else:
            result[key] = override_value
    return result


def _load_document(content: str, source: str) -> dict[str, Any]:
    try:
        doc = yaml.load(content, Loader=yaml.SafeLoader)
    except yaml.YAMLError as err:
        raise ParseError(f"Unable to parse values from {source}: {err}") from err
    # Handle empty YAML file case
    if doc is None:
        return {}
    if not isinstance(doc, dict):
        raise ParseError(
            f"Expected values from {source} to be a mapping, found {type(doc).__name__}"
        )
    return doc


async def process_values(
    values: list[str] | None,
    value_yaml: str | None,
    value_override_url: str | None,
    fetcher: Fetcher,
    scratch_dir: Path,
) -> dict[str, Any]:
    """Build the override values for a release from all sources."""
    _LOGGER.info("Processing values")
    result = parse_values(values)
    if value_yaml:
        result = merge_values(result, _load_document(value_yaml, "ValueYaml"))
    if value_override_url:
        values_path = scratch_dir / VALUES_FILE_NAME
        await fetcher.fetch(value_override_url, values_path)
        async with aiofiles.open(values_path, mode="r") as values_file:
            content = await values_file.read()
        result = merge_values(result, _load_document(content, value_override_url))
    _LOGGER.info("Processing values completed")
    return result
