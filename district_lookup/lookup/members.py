"""Static district id to representative directory."""

from __future__ import annotations

from typing import Any, Mapping

from district_lookup.pipeline.registry import as_text


class RepresentativeDirectory:
    """Keyed by resolution layer key, then by district id as text.

    A present key with a null value means the seat is known to be vacant.
    """

    def __init__(self, members_by_layer: Mapping[str, Mapping[Any, Any]] | None = None) -> None:
        self._members: dict[str, dict[str, Any]] = {}
        for layer_key, members in (members_by_layer or {}).items():
            self._members[layer_key] = {as_text(district): as_text(name) for district, name in members.items()}

    def member_for(self, layer_key: str, district: Any) -> str | None:
        district_key = as_text(district)
        if district_key is None:
            return None
        return self._members.get(layer_key, {}).get(district_key)
