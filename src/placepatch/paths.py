"""Slash-delimited path lookup within a :class:`~placepatch.graph.SceneGraph`."""

from __future__ import annotations

from .graph import Ref, SceneGraph

PATH_SEPARATOR = "/"
ROOT_SENTINEL = "DataModel"


def find_child(graph: SceneGraph, parent: Ref, name: str) -> Ref | None:
    """Return the first direct child of ``parent`` named exactly ``name``."""

    for child in graph.children(parent):
        if graph.get(child).name == name:
            return child
    return None


def resolve_path(graph: SceneGraph, start: Ref, path: str) -> Ref | None:
    """Resolve ``path`` relative to ``start``.

    Segments are matched against child names exactly, first match wins. A
    leading ``DataModel`` segment names ``start`` itself, so absolute paths
    such as ``"DataModel/Workspace/House"`` resolve the same as
    ``"Workspace/House"`` when ``start`` is the root.

    Returns:
        The resolved reference, or ``None`` as soon as a segment has no
        matching child.
    """

    segments = path.split(PATH_SEPARATOR)
    if segments == [""]:
        return start
    if segments[0] == ROOT_SENTINEL:
        segments = segments[1:]

    current = start
    for segment in segments:
        found = find_child(graph, current, segment)
        if found is None:
            return None
        current = found
    return current


def path_of(graph: SceneGraph, ref: Ref) -> str:
    """Render the chain of names from the root down to ``ref``.

    The root itself renders as an empty string. Siblings sharing a name
    render identically, so the result resolves back to the first of them.
    """

    names = [graph.get(ref).name]
    names.extend(graph.get(ancestor).name for ancestor in graph.ancestors(ref))
    # The last entry is the root, which paths never spell out.
    names.pop()
    return PATH_SEPARATOR.join(reversed(names))


__all__ = ["PATH_SEPARATOR", "ROOT_SENTINEL", "find_child", "path_of", "resolve_path"]
