"""
Canonical tree documents.

A tree is made of ``TreeNode`` values. Structural nodes carry a ``base``
naming the entity kind and ordered children; leaves carry a literal kind as
their ``base``, ``data="bytes"`` and the hex text of their value. The text
form is one parenthesized ``o`` form per node:

    (o base="class" name="Foo" line="1"
      (o base="int" name="access" data="bytes" "00 00 00 21"))
"""

import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterator, Optional

from lark import Lark, Transformer
from lark.exceptions import UnexpectedInput, VisitError

from . import literals
from .errors import FormatError


GRAMMAR_FILE = Path(__file__).parent / "tree.lark"

BYTES = "bytes"


@dataclass(frozen=True)
class TreeNode:
    """One node of a canonical tree; ``line`` is synthetic and ignored by equality."""
    base: Optional[str] = None
    name: Optional[str] = None
    line: Optional[int] = field(default=None, compare=False)
    data: Optional[str] = None
    text: Optional[str] = None
    children: tuple["TreeNode", ...] = ()

    @property
    def is_leaf(self) -> bool:
        return self.data == BYTES

    def value(self):
        """Decode this leaf through the literal codec."""
        if not self.is_leaf:
            raise FormatError(f"Node '{self.base}' is not a leaf")
        return literals.decode(self.base, self.text)

    def child(self, name: str) -> Optional["TreeNode"]:
        """First child with the given name, or None."""
        for node in self.children:
            if node.name == name:
                return node
        return None

    def children_of(self, base: str) -> list["TreeNode"]:
        return [node for node in self.children if node.base == base]

    def walk(self) -> Iterator["TreeNode"]:
        yield self
        for node in self.children:
            yield from node.walk()


def leaf(value, kind: Optional[str] = None, name: Optional[str] = None) -> TreeNode:
    """Leaf node holding a value encoded by the literal codec."""
    kind, text = literals.encode(value, kind)
    return TreeNode(base=kind, name=name, data=BYTES, text=text)


def node(base: str, name: Optional[str] = None, children=(), line: Optional[int] = None) -> TreeNode:
    return TreeNode(base=base, name=name, line=line, children=tuple(children))


# ==================== TEXT FORM ====================

def _quote(value: str) -> str:
    return '"' + value.replace("\\", "\\\\").replace('"', '\\"') + '"'


_ESCAPE = re.compile(r"\\(.)", re.DOTALL)


def _unquote(token: str) -> str:
    return _ESCAPE.sub(lambda m: m.group(1), token[1:-1])


def _render(tree: TreeNode, indent: int, out: list[str]):
    parts = ["(o"]
    for attr in ("base", "name", "line", "data"):
        value = getattr(tree, attr)
        if value is not None:
            parts.append(f"{attr}={_quote(str(value))}")
    if tree.text is not None:
        parts.append(_quote(tree.text))
    head = "  " * indent + " ".join(parts)
    if not tree.children:
        out.append(head + ")")
        return
    out.append(head)
    for child in tree.children:
        _render(child, indent + 1, out)
    out[-1] += ")"


def dumps(tree: TreeNode) -> str:
    """Render a tree as indented text, one node per line."""
    out: list[str] = []
    _render(tree, 0, out)
    return "\n".join(out) + "\n"


class _Text(str):
    pass


class TreeTransformer(Transformer):
    """Transforms the Lark parse tree into TreeNode values."""

    def start(self, items):
        return items[0]

    def attribute(self, items):
        name, value = items
        return str(name), _unquote(str(value))

    def text(self, items):
        return _Text(_unquote(str(items[0])))

    def node(self, items):
        attrs = {}
        text = None
        children = []
        for item in items:
            if isinstance(item, TreeNode):
                children.append(item)
            elif isinstance(item, _Text):
                text = str(item)
            else:
                key, value = item
                if key not in ("base", "name", "line", "data"):
                    raise FormatError(f"Unknown node attribute '{key}'")
                if key in attrs:
                    raise FormatError(f"Attribute '{key}' given twice")
                attrs[key] = value
        line = attrs.pop("line", None)
        if line is not None:
            if not line.isdigit():
                raise FormatError(f"Line marker must be a number, got '{line}'")
            line = int(line)
        return TreeNode(line=line, text=text, children=tuple(children), **attrs)


class TreeTextParser:
    """Parses the text form of canonical trees."""

    def __init__(self):
        with open(GRAMMAR_FILE, "r") as f:
            grammar = f.read()

        self._parser = Lark(
            grammar,
            parser="lalr",
            propagate_positions=False,
            maybe_placeholders=False,
        )
        self._transformer = TreeTransformer()

    def parse(self, source: str) -> TreeNode:
        """Parse tree text and return its root node."""
        try:
            parsed = self._parser.parse(source)
        except UnexpectedInput as e:
            raise FormatError(f"Syntax error at line {e.line}, column {e.column}") from e
        try:
            return self._transformer.transform(parsed)
        except VisitError as e:
            raise e.orig_exc from e

    def parse_file(self, path: str | Path) -> TreeNode:
        """Parse a tree document file."""
        with open(path, "r", encoding="utf-8") as f:
            source = f.read()
        return self.parse(source)


_default_parser: Optional[TreeTextParser] = None


def loads(source: str) -> TreeNode:
    """Parse tree text."""
    global _default_parser
    if _default_parser is None:
        _default_parser = TreeTextParser()
    return _default_parser.parse(source)
