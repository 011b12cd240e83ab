"""Per-key merge strategies for restoring settings under ``merge``.

Settings values for structured keys are JSON documents stored as strings.
Each structured key maps to one strategy in ``MERGE_RULES``; the table is
built once at import time and every rule is a pure function of
``(local, incoming)`` so it can be tested in isolation.

Strategies:

- ``assistants_v1``: id-keyed shallow merge, incoming fields override
  except ``avatar`` / ``background``, which keep a non-empty local value.
- ``provider_configs_v1``: shallow map merge, incoming wins per key.
- ``pinned_models_v1``: set union (local order first).
- ``providers_order_v1`` / ``search_services_v1``: incoming replaces local.
- ``assistant_tags_v1``: local order kept, unseen incoming ids appended.
- ``assistant_tag_map_v1`` / ``assistant_tag_collapsed_v1``: map union,
  local wins per key.

Any other key is only added when it is absent locally.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Callable

from .models import Category

logger = logging.getLogger(__name__)

# Keys restored under the "providers" category; everything else is "settings".
PROVIDER_KEYS: frozenset[str] = frozenset(
    {
        "provider_configs_v1",
        "providers_order_v1",
        "pinned_models_v1",
        "assistants_v1",
        "assistant_tags_v1",
        "assistant_tag_map_v1",
        "assistant_tag_collapsed_v1",
        "search_services_v1",
        "quick_phrases_v1",
    }
)

_PROTECTED_ASSISTANT_FIELDS = ("avatar", "background")


def category_for_key(key: str) -> Category:
    """Return the restore category a settings key belongs to."""
    return Category.PROVIDERS if key in PROVIDER_KEYS else Category.SETTINGS


# ---------------------------------------------------------------------------
# Decoding helpers
# ---------------------------------------------------------------------------


def _decode(raw: Any) -> Any:
    """Decode a JSON-encoded setting value."""
    if not isinstance(raw, str):
        raise TypeError(
            f"expected JSON string, got {type(raw).__name__}"
        )
    return json.loads(raw)


def _decode_or_empty(raw: Any, empty: Any) -> Any:
    """Decode *raw*, treating ``None`` and ``""`` as *empty*."""
    if raw is None or raw == "":
        return empty
    return _decode(raw)


def _expect(value: Any, kind: type, key: str) -> Any:
    if not isinstance(value, kind):
        raise TypeError(f"{key}: expected {kind.__name__}")
    return value


# ---------------------------------------------------------------------------
# Strategies
# ---------------------------------------------------------------------------


def merge_assistants(local_raw: Any, incoming_raw: Any) -> str:
    local = _expect(_decode(local_raw), list, "assistants")
    incoming = _expect(_decode(incoming_raw), list, "assistants")

    by_id: dict[str, dict] = {}
    for item in local:
        if isinstance(item, dict) and "id" in item:
            by_id[str(item["id"])] = dict(item)

    for item in incoming:
        if not (isinstance(item, dict) and "id" in item):
            continue
        assistant_id = str(item["id"])
        if assistant_id not in by_id:
            by_id[assistant_id] = dict(item)
            continue
        current = by_id[assistant_id]
        merged = {**current, **item}
        for field in _PROTECTED_ASSISTANT_FIELDS:
            local_value = current.get(field)
            if local_value is not None and str(local_value).strip():
                merged[field] = str(local_value)
            elif field in merged:
                merged[field] = item.get(field)
        by_id[assistant_id] = merged

    return json.dumps(list(by_id.values()), ensure_ascii=False)


def merge_provider_configs(local_raw: Any, incoming_raw: Any) -> str:
    local = _expect(_decode(local_raw), dict, "provider_configs")
    incoming = _expect(_decode(incoming_raw), dict, "provider_configs")
    return json.dumps({**local, **incoming}, ensure_ascii=False)


def merge_pinned_models(local_raw: Any, incoming_raw: Any) -> str:
    local = _expect(_decode(local_raw), list, "pinned_models")
    incoming = _expect(_decode(incoming_raw), list, "pinned_models")
    models: dict[str, None] = {}
    for model in [*local, *incoming]:
        if isinstance(model, str):
            models[model] = None
    return json.dumps(list(models), ensure_ascii=False)


def replace_with_incoming(local_raw: Any, incoming_raw: Any) -> Any:
    return incoming_raw


def merge_assistant_tags(local_raw: Any, incoming_raw: Any) -> str:
    local = _expect(_decode_or_empty(local_raw, []), list, "assistant_tags")
    incoming = _expect(
        _decode_or_empty(incoming_raw, []), list, "assistant_tags"
    )
    by_id: dict[str, dict] = {}
    for tag in [*local, *incoming]:
        if not isinstance(tag, dict) or tag.get("id") is None:
            continue
        tag_id = str(tag["id"])
        if tag_id not in by_id:
            by_id[tag_id] = tag
    return json.dumps(list(by_id.values()), ensure_ascii=False)


def merge_map_local_wins(local_raw: Any, incoming_raw: Any) -> str:
    local = _expect(_decode_or_empty(local_raw, {}), dict, "tag map")
    incoming = _expect(_decode_or_empty(incoming_raw, {}), dict, "tag map")
    return json.dumps({**incoming, **local}, ensure_ascii=False)


# ---------------------------------------------------------------------------
# Rule table
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class MergeRule:
    """A merge strategy bound to one settings key.

    Attributes:
        merge: ``(local_raw, incoming_raw) -> value`` to store.
        needs_local: When True and the key is absent locally, the incoming
            value is stored as-is instead of calling ``merge``.
    """

    merge: Callable[[Any, Any], Any]
    needs_local: bool = True


MERGE_RULES: dict[str, MergeRule] = {
    "assistants_v1": MergeRule(merge_assistants),
    "provider_configs_v1": MergeRule(merge_provider_configs),
    "pinned_models_v1": MergeRule(merge_pinned_models),
    "providers_order_v1": MergeRule(replace_with_incoming),
    "search_services_v1": MergeRule(replace_with_incoming),
    "assistant_tags_v1": MergeRule(merge_assistant_tags, needs_local=False),
    "assistant_tag_map_v1": MergeRule(
        merge_map_local_wins, needs_local=False
    ),
    "assistant_tag_collapsed_v1": MergeRule(
        merge_map_local_wins, needs_local=False
    ),
}


def merge_setting(
    existing: dict[str, Any], key: str, incoming: Any
) -> tuple[bool, Any]:
    """Decide what to store for *key* when merging.

    Args:
        existing: Snapshot of the local settings.
        key: Settings key being restored.
        incoming: Value from the backup archive.

    Returns:
        ``(should_write, value)``.  ``should_write`` is False when the local
        value must be left untouched, including when the key's data is
        malformed on either side.
    """
    rule = MERGE_RULES.get(key)
    if rule is None:
        if key in existing:
            return False, None
        return True, incoming

    if rule.needs_local and key not in existing:
        return True, incoming

    try:
        return True, rule.merge(existing.get(key), incoming)
    except (TypeError, ValueError) as exc:
        logger.debug("Skipping malformed setting %s: %s", key, exc)
        return False, None
