"""
Lightweight element model. The capture script serializes event targets as
nested descriptors; this module rebuilds them so selectors are resolved in Python.
"""
from typing import Any, Dict, List, Optional


class Element:
    """A DOM element as seen by the collectors: tag, id, classes and its ancestry."""

    def __init__(self, tag: str, id: Optional[str] = None, classes=None,
                 parent: Optional['Element'] = None, index: Optional[int] = None,
                 root: bool = False, text: str = ""):
        self.tag = (tag or "").lower()
        self.id = id or None
        if isinstance(classes, str):
            classes = classes.split()
        self.classes: List[str] = [c for c in (classes or []) if c]
        self.parent = parent
        self.children: List['Element'] = []
        self.root = root
        self.text = text or ""
        self._index = index
        if parent is not None:
            parent.children.append(self)

    def append(self, tag: str, **kwargs) -> 'Element':
        """Create a child element and return it."""
        return Element(tag, parent=self, **kwargs)

    @property
    def is_document_root(self) -> bool:
        """True for the <html> and <body> elements, which carry no useful ancestry."""
        if self.root:
            return True
        if self.tag == "html" and self.parent is None:
            return True
        return self.tag == "body" and self.parent is not None and self.parent.tag == "html"

    @property
    def same_tag_index(self) -> int:
        """1-based position among element siblings sharing this tag."""
        if self._index is not None:
            return self._index
        if self.parent is None:
            return 1
        index = 1
        for sibling in self.parent.children:
            if sibling is self:
                break
            if sibling.tag == self.tag:
                index += 1
        return index

    def __repr__(self):
        return f"<Element {self.tag} id={self.id!r} classes={self.classes!r}>"

    @classmethod
    def from_descriptor(cls, data: Optional[Dict[str, Any]]) -> Optional['Element']:
        """
        Rebuild an element chain from the script's descriptor:
        {tag, id, classes, index, root, text, parent: {...}}.
        """
        if not data or not data.get("tag"):
            return None
        parent = cls.from_descriptor(data.get("parent"))
        return cls(
            data["tag"],
            id=data.get("id"),
            classes=data.get("classes"),
            parent=parent,
            index=data.get("index"),
            root=bool(data.get("root")),
            text=data.get("text") or "",
        )


def make_document() -> Element:
    """Return the <body> of a fresh <html><body> pair, for building test trees."""
    html = Element("html", root=True)
    return html.append("body", root=True)
