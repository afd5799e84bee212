"""
Symbolic jump targets and the per-method registry that hands them out.
"""

from dataclasses import dataclass
from typing import Iterator

from .errors import DanglingLabel, DuplicateLabel


@dataclass(frozen=True)
class Label:
    """A jump target, unique by name within one method."""
    name: str

    def __str__(self) -> str:
        return self.name


class LabelRegistry:
    """Issues, interns and checks the labels of a single method.

    Labels come either from raw bytecode offsets (reading a class file) or
    from symbolic names (parsing a tree). Every reference must meet exactly
    one definition before ``close()`` succeeds.
    """

    def __init__(self, where: str = ""):
        self.where = where
        self._counter = 0
        self._names: dict[str, Label] = {}
        self._by_offset: dict[int, Label] = {}
        self._defined: set[Label] = set()
        self._referenced: dict[Label, str] = {}

    def issue(self) -> Label:
        """Create a fresh label whose name was never handed out before."""
        while True:
            name = f"L{self._counter}"
            self._counter += 1
            if name not in self._names:
                label = Label(name)
                self._names[name] = label
                return label

    def resolve(self, name: str) -> Label:
        """Intern a symbolic name; the same name always yields the same label."""
        label = self._names.get(name)
        if label is None:
            label = Label(name)
            self._names[name] = label
        return label

    def name(self, label: Label) -> str:
        return label.name

    def at(self, offset: int) -> Label:
        """Label for a bytecode offset, issued the first time the offset is seen."""
        label = self._by_offset.get(offset)
        if label is None:
            label = self.issue()
            self._by_offset[offset] = label
        return label

    def offsets(self) -> Iterator[tuple[int, Label]]:
        """(offset, label) pairs in issue order."""
        return iter(self._by_offset.items())

    def define(self, label: Label):
        if label in self._defined:
            raise DuplicateLabel(label.name, self.where)
        self._defined.add(label)

    def reference(self, label: Label, where: str = ""):
        self._referenced.setdefault(label, where)

    def close(self):
        """Fail with DanglingLabel if any reference lacks a definition."""
        for label, where in self._referenced.items():
            if label not in self._defined:
                raise DanglingLabel(label.name, where or self.where)
