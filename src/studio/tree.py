"""Queries over the conversation/version tree.

Messages form a forest linked by ``parent_id``. Nothing here caches tree
structure across calls: callers pass the freshly read message list, and the
indexes are rebuilt from it every time.
"""

from collections.abc import Iterable
from dataclasses import dataclass, field

from .models import Message


@dataclass
class MessageIndex:
    """Lookup tables over one snapshot of the message list."""

    by_id: dict[str, Message] = field(default_factory=dict)
    children: dict[str, list[Message]] = field(default_factory=dict)

    @classmethod
    def build(cls, messages: Iterable[Message]) -> "MessageIndex":
        index = cls()
        for message in messages:
            index.by_id[message.id] = message
            if message.parent_id is not None:
                index.children.setdefault(message.parent_id, []).append(message)
        return index

    def children_of(self, message_id: str) -> list[Message]:
        return self.children.get(message_id, [])


def _as_index(messages: Iterable[Message] | MessageIndex) -> MessageIndex:
    if isinstance(messages, MessageIndex):
        return messages
    return MessageIndex.build(messages)


def get_ancestors(
    messages: Iterable[Message] | MessageIndex,
    message_id: str,
) -> list[Message]:
    """Return the path from the root down to ``message_id``, root first.

    The walk stops at a root, at a parent reference that points nowhere, or
    when a node is revisited (a cycle). Unknown ids give an empty path.
    """
    index = _as_index(messages)
    path: list[Message] = []
    visited: set[str] = set()
    current = index.by_id.get(message_id)

    while current is not None:
        if current.id in visited:
            break
        visited.add(current.id)
        path.insert(0, current)
        if current.parent_id is None:
            break
        current = index.by_id.get(current.parent_id)

    return path


def get_latest_leaf(
    messages: Iterable[Message] | MessageIndex,
    message_id: str,
) -> Message | None:
    """Find the most recently created leaf under ``message_id``.

    Returns the message itself when it has no descendants, and None when the
    id is unknown. Leaves are compared by ``created_at``; on equal timestamps
    the first leaf reached by the depth-first walk wins.
    """
    index = _as_index(messages)
    start = index.by_id.get(message_id)
    if start is None:
        return None

    latest: Message | None = None
    visited: set[str] = set()
    stack = [start]
    while stack:
        node = stack.pop()
        if node.id in visited:
            continue
        visited.add(node.id)
        kids = index.children_of(node.id)
        if not kids:
            if latest is None or node.created_at > latest.created_at:
                latest = node
        else:
            stack.extend(kids)

    # Only reachable when every descendant loops back into the visited set.
    return latest or start


def is_checkpoint(
    messages: Iterable[Message] | MessageIndex,
    message_id: str,
) -> bool:
    """Whether ``message_id`` has a strictly newer descendant leaf."""
    index = _as_index(messages)
    node = index.by_id.get(message_id)
    if node is None or not index.children_of(message_id):
        return False
    leaf = get_latest_leaf(index, message_id)
    return leaf is not None and leaf.id != node.id and leaf.created_at > node.created_at


def get_children(
    messages: Iterable[Message] | MessageIndex,
    message_id: str,
) -> list[Message]:
    """Direct children of ``message_id`` (branches), oldest first."""
    index = _as_index(messages)
    return sorted(index.children_of(message_id), key=lambda m: m.created_at)
