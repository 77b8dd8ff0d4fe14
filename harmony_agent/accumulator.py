"""Reassemble tool calls from streamed chat-completion fragments.

The legacy delta protocol may send a call identifier only on the first
fragment, only on a later one, or never, and may key fragments by position
instead. Entries are therefore keyed by identifier when one is known and by
``index_<n>`` otherwise; an entry is re-keyed in place once its identifier
arrives.
"""

from dataclasses import dataclass
from typing import Any

from harmony_agent.llm import ToolCall
from harmony_agent.logging import get_logger

log = get_logger(__name__)


@dataclass(frozen=True)
class ToolCallFragment:
    """One ``delta.tool_calls[]`` entry."""

    index: int | None = None
    id: str | None = None
    name: str = ""
    arguments: str = ""

    @classmethod
    def from_delta(cls, delta: dict[str, Any]) -> "ToolCallFragment":
        function = delta.get("function") or {}
        index = delta.get("index")
        return cls(
            index=index if isinstance(index, int) and not isinstance(index, bool) else None,
            id=delta.get("id") or None,
            name=function.get("name") or "",
            arguments=function.get("arguments") or "",
        )


@dataclass
class PartialToolCall:
    """Accumulated state for one in-flight call."""

    id: str
    index: int | None = None
    name: str = ""
    arguments: str = ""


def _index_key(index: int) -> str:
    return f"index_{index}"


class ToolCallAccumulator:
    """Keyed accumulator for partial tool calls, read out in insertion order."""

    def __init__(self) -> None:
        self._entries: dict[str, PartialToolCall] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def resolve_key(self, fragment: ToolCallFragment) -> str | None:
        """Find the existing entry key for a fragment, or ``None`` if it starts a new call."""
        if fragment.id and fragment.id in self._entries:
            return fragment.id
        if fragment.index is not None and _index_key(fragment.index) in self._entries:
            return _index_key(fragment.index)
        for key, entry in self._entries.items():
            if fragment.id and entry.id == fragment.id:
                return key
            if fragment.index is not None and entry.index == fragment.index:
                return key
        return None

    def _rekey(self, old_key: str, new_key: str) -> None:
        # Rebuild to keep the entry at its original insertion position
        self._entries = {
            (new_key if key == old_key else key): entry
            for key, entry in self._entries.items()
        }

    def add(self, fragment: ToolCallFragment) -> PartialToolCall:
        """Merge one fragment and return the updated entry."""
        key = self.resolve_key(fragment)
        if key is None:
            entry = PartialToolCall(
                id=fragment.id or f"tool_{len(self._entries)}",
                index=fragment.index,
            )
            if fragment.id:
                key = fragment.id
            elif fragment.index is not None:
                key = _index_key(fragment.index)
            else:
                key = entry.id
            self._entries[key] = entry
        entry = self._entries[key]

        if fragment.id:
            entry.id = fragment.id
        if fragment.index is not None:
            entry.index = fragment.index
        if not entry.name and fragment.name:
            entry.name = fragment.name
        entry.arguments += fragment.arguments

        preferred = fragment.id or key
        if preferred != key:
            self._rekey(key, preferred)
        return entry

    def add_delta(self, delta: dict[str, Any]) -> PartialToolCall:
        return self.add(ToolCallFragment.from_delta(delta))

    def complete(self) -> list[ToolCall]:
        """Read out every accumulated call; nameless calls are dropped."""
        calls: list[ToolCall] = []
        for entry in self._entries.values():
            if not entry.name:
                log.warning("Dropping tool call without name", call_id=entry.id)
                continue
            calls.append(
                ToolCall(id=entry.id, call_id=entry.id, name=entry.name, arguments=entry.arguments)
            )
        return calls

    def summary(self) -> list[dict[str, str]]:
        return [
            {"id": entry.id, "name": entry.name, "args_preview": entry.arguments[:120]}
            for entry in self._entries.values()
        ]
