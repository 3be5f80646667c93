"""Projection of positions, candidates and tallies into the overview view."""
from typing import Dict, Iterable, Mapping


def build_overview(
    positions: Iterable[Mapping],
    candidates: Iterable[Mapping],
    counts: Mapping[int, int]
) -> Dict:
    """
    Group candidates and their counts under their positions.

    Positions keep the order they are given in (insertion id), as do the
    candidates inside each position. A candidate with no tally row counts as
    zero, and positions without candidates are still listed.

    Args:
        positions: Position records with key and title
        candidates: Candidate records with id, position_key, name, class
        counts: Mapping of candidate_id to count

    Returns:
        {"positions": [{"key", "title", "total", "candidates": [...]}, ...]}
    """
    by_position: Dict[str, list] = {}
    for candidate in candidates:
        by_position.setdefault(candidate["position_key"], []).append({
            "id": candidate["id"],
            "name": candidate["name"],
            "class": candidate["class"],
            "count": counts.get(candidate["id"], 0) or 0,
        })

    grouped = []
    for position in positions:
        entries = by_position.get(position["key"], [])
        grouped.append({
            "key": position["key"],
            "title": position["title"],
            "total": sum(entry["count"] for entry in entries),
            "candidates": entries,
        })

    return {"positions": grouped}
