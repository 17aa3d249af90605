"""Free-text filtering of tool results.

When the agent passes a query-shaped argument (``query``, ``search``...), the
records in the mapped response are narrowed to the ones mentioning every
query word. Matching ignores case and accents, so "medellin" finds
"Medellín". If nothing matches, the agent gets a short list of suggestions
instead of an empty result.
"""

import unicodedata
from typing import Any, Dict, Iterable, Iterator, List, Optional, Tuple, Union

PathKey = Union[str, int]

MAX_SUGGESTIONS = 3


def normalize_text(text: str) -> str:
    decomposed = unicodedata.normalize("NFKD", text)
    stripped = "".join(char for char in decomposed if not unicodedata.combining(char))
    return " ".join(stripped.casefold().split())


def extract_query(parameters: Dict[str, Any], argument_names: Iterable[str]) -> Optional[str]:
    """Return the first non-empty query-shaped argument, if any."""
    lowered = {name.lower(): value for name, value in parameters.items()}
    for name in argument_names:
        value = lowered.get(name.lower())
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None


def _iter_text(value: Any) -> Iterator[str]:
    if isinstance(value, str):
        yield value
    elif isinstance(value, bool) or value is None:
        return
    elif isinstance(value, (int, float)):
        yield str(value)
    elif isinstance(value, dict):
        for item in value.values():
            yield from _iter_text(item)
    elif isinstance(value, list):
        for item in value:
            yield from _iter_text(item)


def record_matches(record: Any, tokens: List[str]) -> bool:
    haystack = normalize_text(" ".join(_iter_text(record)))
    return all(token in haystack for token in tokens)


def _is_record_list(value: Any) -> bool:
    return isinstance(value, list) and bool(value) and all(isinstance(item, dict) for item in value)


def find_record_array(data: Any) -> Optional[Tuple[List[PathKey], List[Dict[str, Any]]]]:
    """
    Breadth-first search for the first non-empty list of objects in ``data``.

    Falls back to the first empty list, so an upstream that found nothing is
    still recognised as a record array.
    """
    empty = None
    queue: List[Tuple[List[PathKey], Any]] = [([], data)]
    while queue:
        path, value = queue.pop(0)
        if _is_record_list(value):
            return path, value
        if isinstance(value, list) and not value and empty is None:
            empty = (path, value)
        if isinstance(value, dict):
            for key, child in value.items():
                queue.append((path + [key], child))
    return empty


def _replace_at(data: Any, path: List[PathKey], replacement: Any) -> Any:
    if not path:
        return replacement
    head, rest = path[0], path[1:]
    copied = dict(data)
    copied[head] = _replace_at(data[head], rest, replacement)
    return copied


def apply_fuzzy_filter(data: Any, query: str) -> Any:
    """
    Narrow the record array inside ``data`` to records matching ``query``.

    Returns ``data`` unchanged when there is no record array. When no record
    matches, returns ``{"message": ..., "suggestions": <up to 3 records>}``.
    """
    tokens = normalize_text(query).split()
    if not tokens:
        return data

    located = find_record_array(data)
    if located is None:
        return data

    path, records = located
    matched = [record for record in records if record_matches(record, tokens)]
    if matched:
        return _replace_at(data, path, matched)

    if not records:
        return {"message": f"No results matched '{query}'.", "suggestions": []}
    return {
        "message": f"No results matched '{query}'. Showing similar options instead.",
        "suggestions": records[:MAX_SUGGESTIONS],
    }
