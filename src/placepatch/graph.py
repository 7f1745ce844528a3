"""In-memory scene graph of instances owned by a single place."""

from __future__ import annotations

import itertools
from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Mapping, MutableMapping, Tuple

from .errors import PlacePatchError
from .properties import PropertyValue

ROOT_CLASS = "DataModel"


class InvalidReferenceError(PlacePatchError, LookupError):
    """Raised when a reference does not identify a live instance."""


@dataclass(frozen=True, order=True)
class Ref:
    """Opaque handle to an instance, issued by :class:`SceneGraph`."""

    value: int

    def __repr__(self) -> str:
        return f"Ref({self.value})"


@dataclass
class Instance:
    """A single node of the scene graph.

    ``class_name``, ``name`` and ``properties`` describe the node itself. The
    tree structure (``children`` and the parent link) is owned by the graph
    and is exposed read-only.
    """

    ref: Ref
    class_name: str
    name: str
    properties: MutableMapping[str, PropertyValue] = field(default_factory=dict)
    _children: List[Ref] = field(default_factory=list, repr=False)
    _parent: Ref | None = field(default=None, repr=False)

    @property
    def children(self) -> Tuple[Ref, ...]:
        return tuple(self._children)

    @property
    def parent(self) -> Ref | None:
        return self._parent


class SceneGraph:
    """Rooted tree of :class:`Instance` objects addressed by :class:`Ref`.

    The graph is the only place where parent and child links change, which
    keeps both directions of every link in agreement. References are drawn
    from a per-graph counter and are never reused after destruction.
    """

    def __init__(self, *, root_class: str = ROOT_CLASS, root_name: str | None = None) -> None:
        self._ids = itertools.count(1)
        self._instances: Dict[Ref, Instance] = {}
        root_ref = self._next_ref()
        self._instances[root_ref] = Instance(
            ref=root_ref,
            class_name=_validate_label(root_class, "root class"),
            name=root_name if root_name is not None else root_class,
        )
        self._root_ref = root_ref

    @property
    def root_ref(self) -> Ref:
        return self._root_ref

    @property
    def root(self) -> Instance:
        return self._instances[self._root_ref]

    def __len__(self) -> int:
        return len(self._instances)

    def __contains__(self, ref: object) -> bool:
        return ref in self._instances

    def get(self, ref: Ref) -> Instance:
        """Return the instance identified by ``ref``.

        Raises:
            InvalidReferenceError: If ``ref`` is unknown or was destroyed.
        """

        try:
            return self._instances[ref]
        except KeyError as exc:
            raise InvalidReferenceError(f"Invalid instance reference: {ref!r}") from exc

    def children(self, ref: Ref) -> Tuple[Ref, ...]:
        return self.get(ref).children

    def parent_of(self, ref: Ref) -> Ref | None:
        """Return the parent of ``ref`` or ``None`` for the root."""

        return self.get(ref).parent

    def insert(
        self,
        parent: Ref,
        *,
        class_name: str,
        name: str | None = None,
        properties: Mapping[str, PropertyValue] | None = None,
    ) -> Ref:
        """Create a new instance as the last child of ``parent``.

        ``name`` defaults to ``class_name``.
        """

        parent_instance = self.get(parent)
        validated_class = _validate_label(class_name, "class name")
        if name is None:
            name = validated_class
        if not isinstance(name, str):
            raise TypeError(f"name must be a string, got {type(name)!r}")

        ref = self._next_ref()
        self._instances[ref] = Instance(
            ref=ref,
            class_name=validated_class,
            name=name,
            properties=dict(properties or {}),
            _parent=parent,
        )
        parent_instance._children.append(ref)
        return ref

    def destroy(self, ref: Ref) -> int:
        """Remove ``ref`` and its whole subtree, returning how many were removed.

        Raises:
            InvalidReferenceError: If ``ref`` is unknown.
            ValueError: If ``ref`` is the root.
        """

        instance = self.get(ref)
        if ref == self._root_ref:
            raise ValueError("The root instance cannot be destroyed")

        doomed = list(self.iter_subtree(ref))
        parent = self._instances[instance._parent]  # type: ignore[index]
        parent._children.remove(ref)
        for doomed_ref in doomed:
            del self._instances[doomed_ref]
        return len(doomed)

    def iter_subtree(self, ref: Ref) -> Iterator[Ref]:
        """Yield ``ref`` and its descendants depth-first in child order."""

        stack = [ref]
        while stack:
            current = stack.pop()
            yield current
            stack.extend(reversed(self.get(current)._children))

    def descendants(self, ref: Ref) -> Iterator[Ref]:
        subtree = self.iter_subtree(ref)
        next(subtree)
        return subtree

    def ancestors(self, ref: Ref) -> Iterator[Ref]:
        """Yield the parent chain of ``ref`` up to and including the root."""

        current = self.parent_of(ref)
        while current is not None:
            yield current
            current = self._instances[current]._parent

    def _next_ref(self) -> Ref:
        return Ref(next(self._ids))


def _validate_label(value: str, field_name: str) -> str:
    # Labels are stored exactly as given, blank ones included.
    if not isinstance(value, str):
        raise TypeError(f"{field_name} must be a string, got {type(value)!r}")
    return value


__all__ = ["Instance", "InvalidReferenceError", "ROOT_CLASS", "Ref", "SceneGraph"]
