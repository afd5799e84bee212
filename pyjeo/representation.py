"""
Representations of one class, either as class file bytes or as a canonical
tree, each able to produce the other form on demand.
"""

import logging
from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Iterable, Optional, Union

from .classreader import read_class
from .classwriter import write_class
from .model import ClassModel
from .tree import TreeNode, dumps, loads
from .treebuilder import build_tree
from .treeparser import parse_tree

log = logging.getLogger(__name__)


class Representation(ABC):
    """A class in one of its forms."""

    @abstractmethod
    def name(self) -> str:
        """Internal name of the class, e.g. ``com/example/Foo``."""

    @abstractmethod
    def model(self) -> ClassModel:
        pass

    @abstractmethod
    def to_tree(self) -> TreeNode:
        pass

    @abstractmethod
    def to_binary(self) -> bytes:
        pass

    def to_text(self) -> str:
        return dumps(self.to_tree())


class BytecodeRepresentation(Representation):
    """A class given as class file bytes; the model and tree are built lazily."""

    def __init__(self, data: bytes, verify: bool = False):
        self.data = bytes(data)
        self.verify = verify
        self._model: Optional[ClassModel] = None
        self._tree: Optional[TreeNode] = None

    @classmethod
    def from_path(cls, path: Union[str, Path], verify: bool = False) -> "BytecodeRepresentation":
        return cls(Path(path).read_bytes(), verify)

    def name(self) -> str:
        return self.model().name

    def model(self) -> ClassModel:
        if self._model is None:
            self._model = read_class(self.data)
        return self._model

    def to_tree(self) -> TreeNode:
        if self._tree is None:
            self._tree = build_tree(self.model())
        return self._tree

    def to_binary(self) -> bytes:
        return self.data

    def reencode(self) -> bytes:
        """Write the parsed model back to class file bytes."""
        return write_class(self.model(), self.verify)


class TreeRepresentation(Representation):
    """A class given as a canonical tree or its text; the bytes are written lazily."""

    def __init__(self, tree: Union[TreeNode, str], verify: bool = False):
        self.tree = loads(tree) if isinstance(tree, str) else tree
        self.verify = verify
        self._model: Optional[ClassModel] = None
        self._data: Optional[bytes] = None

    @classmethod
    def from_path(cls, path: Union[str, Path], verify: bool = False) -> "TreeRepresentation":
        return cls(Path(path).read_text(encoding="utf-8"), verify)

    def name(self) -> str:
        return self.model().name

    def model(self) -> ClassModel:
        if self._model is None:
            self._model = parse_tree(self.tree)
        return self._model

    def to_tree(self) -> TreeNode:
        return self.tree

    def to_binary(self) -> bytes:
        if self._data is None:
            self._data = write_class(self.model(), self.verify)
        return self._data


@dataclass(frozen=True)
class Outcome:
    """Result of one batch item: a value or the error that stopped it."""
    source: Any
    value: Any = None
    error: Optional[BaseException] = None

    @property
    def ok(self) -> bool:
        return self.error is None


def transcode(items: Iterable, func: Callable[[Any], Any], workers: Optional[int] = None) -> list[Outcome]:
    """Apply ``func`` to every item in a thread pool.

    Each item succeeds or fails on its own; outcomes come back in input order.
    """
    items = list(items)
    outcomes: list[Optional[Outcome]] = [None] * len(items)
    with ThreadPoolExecutor(max_workers=workers) as executor:
        futures = {executor.submit(func, item): i for i, item in enumerate(items)}
        for future in as_completed(futures):
            i = futures[future]
            try:
                outcomes[i] = Outcome(items[i], future.result())
            except Exception as e:
                log.debug("Failed on %s: %s", items[i], e)
                outcomes[i] = Outcome(items[i], error=e)
    return outcomes
