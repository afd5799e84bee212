"""pyjeo - JVM class files to canonical trees and back."""

from .errors import (
    TranscodeError, MalformedClassError, VerificationError,
    DanglingLabel, DuplicateLabel, MissingElementError, FormatError,
)
from .model import ClassModel, FieldModel, MethodModel
from .classreader import read_class, read_class_file
from .classwriter import ClassWriter, write_class
from .tree import TreeNode, dumps, loads
from .treebuilder import build_tree
from .treeparser import parse_tree
from .representation import (
    Representation, BytecodeRepresentation, TreeRepresentation, Outcome, transcode,
)
from .improvement import Improvement, IdentityImprovement, improve

__version__ = "0.1.0"
__all__ = [
    "TranscodeError", "MalformedClassError", "VerificationError",
    "DanglingLabel", "DuplicateLabel", "MissingElementError", "FormatError",
    "ClassModel", "FieldModel", "MethodModel",
    "read_class", "read_class_file", "ClassWriter", "write_class",
    "TreeNode", "dumps", "loads", "build_tree", "parse_tree",
    "Representation", "BytecodeRepresentation", "TreeRepresentation", "Outcome", "transcode",
    "Improvement", "IdentityImprovement", "improve",
]
