"""Topic identifier grammar and topic-path helpers.

Every device, node and property id becomes one level of an MQTT topic,
so ids are restricted to a small, unambiguous alphabet::

    id      := word ("-" word)*
    word    := [a-z0-9]+

Uppercase letters, underscores and the reserved ``$`` (attribute
prefix) and ``&`` characters are rejected.  Ids are validated at the
point of creation and never coerced.

See Also:
    Homie convention 3.0 — "Topic IDs".
"""

from __future__ import annotations

import re

from homiekit._errors import InvalidIdentifier

_TOPIC_ID = re.compile(r"[a-z0-9]+(?:-[a-z0-9]+)*")


def is_valid_topic_id(value: object) -> bool:
    """Return True if *value* satisfies the topic ID grammar.

    Pure predicate, safe to call from any thread.
    """
    return isinstance(value, str) and _TOPIC_ID.fullmatch(value) is not None


def validate_topic_id(value: object, *, kind: str = "topic") -> str:
    """Return *value* unchanged if it is a valid topic ID.

    Raises:
        InvalidIdentifier: If *value* violates the grammar.
    """
    if not is_valid_topic_id(value):
        msg = (
            f"Invalid {kind} id {value!r}: expected lowercase letters "
            "and digits separated by single hyphens"
        )
        raise InvalidIdentifier(msg)
    return value  # type: ignore[return-value]


def is_valid_topic_root(value: object) -> bool:
    """Return True if *value* is usable as the root prefix of all topics.

    The root may span several levels (``"devices/homie"``) but must not
    contain wildcards, empty levels, or start with ``$``.
    """
    if not isinstance(value, str) or not value or value.startswith("$"):
        return False
    if "+" in value or "#" in value:
        return False
    return all(value.split("/"))


def join_topic(*levels: str) -> str:
    """Join topic levels with ``/``."""
    return "/".join(levels)


def topic_matches(pattern: str, topic: str) -> bool:
    """Return True if *topic* matches the MQTT subscription *pattern*.

    Supports the single-level ``+`` and multi-level ``#`` wildcards.
    """
    pattern_levels = pattern.split("/")
    topic_levels = topic.split("/")
    for index, level in enumerate(pattern_levels):
        if level == "#":
            return True
        if index >= len(topic_levels):
            return False
        if level not in ("+", topic_levels[index]):
            return False
    return len(pattern_levels) == len(topic_levels)
