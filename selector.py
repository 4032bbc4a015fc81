"""
Stable, human-readable DOM-path descriptors used to label captured events.
"""
from typing import Optional

from .dom import Element

HEATMAP_DEPTH = 1
RECORDER_DEPTH = 3
RECORDER_MAX_CLASSES = 3


def resolve_selector(element: Optional[Element], depth: int = HEATMAP_DEPTH,
                     max_classes: Optional[int] = None, qualify_tag: bool = False) -> str:
    """
    Build a short CSS-like path for ``element``.

    ``#id`` wins outright. Otherwise the element is named by its classes
    (``tag.a.b`` when ``qualify_tag``) or its tag, then prefixed with up to
    ``depth`` ancestor levels of ``parent:nth-child(N) > ``, where N counts
    same-tag siblings only.
    """
    if element is None:
        return "unknown"
    if element.is_document_root:
        return element.tag

    if element.id:
        return "#" + element.id

    classes = element.classes[:max_classes] if max_classes else element.classes
    if qualify_tag:
        path = element.tag + ("." + ".".join(classes) if classes else "")
    elif classes:
        path = "." + ".".join(classes)
    else:
        path = element.tag

    current = element
    for _ in range(depth):
        parent = current.parent
        if parent is None:
            break
        path = f"{parent.tag}:nth-child({current.same_tag_index}) > {path}"
        current = parent
    return path


def heatmap_selector(element: Optional[Element]) -> str:
    """One ancestor level, full class list."""
    return resolve_selector(element, depth=HEATMAP_DEPTH)


def recorder_selector(element: Optional[Element]) -> str:
    """Up to three ancestor levels, tag-qualified, first three classes."""
    return resolve_selector(element, depth=RECORDER_DEPTH,
                            max_classes=RECORDER_MAX_CLASSES, qualify_tag=True)
