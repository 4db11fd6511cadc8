"""
Tracker Merge

Folds partial model responses back into a stored tracker document.

Every operation returns a new document and leaves the caller's document
untouched. Array operations deep-copy the whole document first, then edit
only the target element.
"""
import copy
import logging
from typing import Any, Dict, List

from ztracker.errors import (
    IndexOutOfRangeError,
    MalformedPartResponseError,
    NotArrayError,
    NotObjectError,
)
from ztracker.schemas.tracker_schema import DEFAULT_ID_KEY

logger = logging.getLogger(__name__)


def merge_part(document: Any, field_name: str, partial_response: Any) -> Dict[str, Any]:
    """
    Replace one top-level field with the value from a part response.

    Args:
        document: Current tracker document (anything non-dict counts as empty)
        field_name: Top-level field that was regenerated
        partial_response: Parsed model output, must contain ``field_name``

    Returns:
        A new dict; sibling values are shared with ``document``, not copied.
    """
    if not isinstance(partial_response, dict):
        raise MalformedPartResponseError("Part response must be an object")
    if field_name not in partial_response:
        raise MalformedPartResponseError(f"Part response missing key: {field_name}")

    base = document if isinstance(document, dict) else {}
    return {**base, field_name: partial_response[field_name]}


def replace_array_item(document: Any, field_name: str, index: int, new_item: Any) -> Dict[str, Any]:
    """Replace ``document[field_name][index]`` with ``new_item``."""
    result, items = _clone_with_array(document, field_name, index)
    items[index] = copy.deepcopy(new_item)
    return result


def replace_array_item_field(
    document: Any, field_name: str, index: int, sub_field_name: str, value: Any
) -> Dict[str, Any]:
    """Set one property of the object at ``document[field_name][index]``."""
    result, items = _clone_with_array(document, field_name, index)
    _object_at(items, field_name, index)[sub_field_name] = copy.deepcopy(value)
    return result


def redact_array_item_field_value(
    document: Any, field_name: str, index: int, sub_field_name: str
) -> Dict[str, Any]:
    """
    Remove one property of an array item so a regeneration prompt does not
    anchor the model to the stale value. The key is deleted, not nulled.
    """
    result, items = _clone_with_array(document, field_name, index)
    _object_at(items, field_name, index).pop(sub_field_name, None)
    return result


def _clone_with_array(document: Any, field_name: str, index: int):
    if not isinstance(document, dict):
        raise NotArrayError(f"Tracker field is not an array: {field_name}")

    items = document.get(field_name)
    if not isinstance(items, list):
        raise NotArrayError(f"Tracker field is not an array: {field_name}")
    if isinstance(index, bool) or not isinstance(index, int) or not 0 <= index < len(items):
        raise IndexOutOfRangeError(f"Array index out of range for {field_name}: {index}")

    result = copy.deepcopy(document)
    return result, result[field_name]


def _object_at(items: List[Any], field_name: str, index: int) -> Dict[str, Any]:
    item = items[index]
    if not isinstance(item, dict):
        raise NotObjectError(f"Array item is not an object: {field_name}[{index}]")
    return item


# ---------------------------------------------------------------------------
# Identity lookup
# ---------------------------------------------------------------------------

def find_index_by_name(items: Any, name: str) -> int:
    """Index of the item whose ``name`` matches; see :func:`find_index_by_id`."""
    return find_index_by_id(items, DEFAULT_ID_KEY, name)


def find_index_by_id(items: Any, id_key: str, id_value: Any) -> int:
    """
    Find an array item by its identity field.

    An exact match wins. Otherwise a case-insensitive match is accepted only
    when exactly one item matches; ambiguous or missing matches return -1.
    """
    if not isinstance(items, list):
        return -1
    wanted = _identity_text(id_value)
    if wanted is None:
        return -1

    folded_matches: List[int] = []
    wanted_folded = wanted.lower()

    for i, item in enumerate(items):
        if not isinstance(item, dict):
            continue
        current = _identity_text(item.get(id_key))
        if current is None:
            continue
        if current == wanted:
            return i
        if current.lower() == wanted_folded:
            folded_matches.append(i)

    if len(folded_matches) == 1:
        return folded_matches[0]
    if len(folded_matches) > 1:
        logger.info(
            "identity_lookup_ambiguous | id_key=%s | value=%s | candidates=%s",
            id_key, wanted, folded_matches,
        )
    return -1


def _identity_text(value: Any):
    if isinstance(value, str):
        return value
    # Numeric ids compare by their text form; booleans are not identities.
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    return None
