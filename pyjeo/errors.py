"""
Errors raised while transcoding class files and trees.
"""

from typing import Optional


class TranscodeError(Exception):
    """Base class for every failure of the transcoder."""
    pass


class MalformedClassError(TranscodeError):
    """Binary input violates the class-file format."""

    def __init__(self, message: str, offset: Optional[int] = None):
        self.offset = offset
        if offset is not None:
            message = f"{message} (at byte offset {offset})"
        super().__init__(message)


class VerificationError(TranscodeError):
    """A method failed structural verification while being written."""

    def __init__(self, message: str, method: Optional[str] = None, index: Optional[int] = None):
        self.method = method
        self.index = index
        where = []
        if method is not None:
            where.append(f"method {method}")
        if index is not None:
            where.append(f"instruction #{index}")
        if where:
            message = f"{message} ({', '.join(where)})"
        super().__init__(message)


class DanglingLabel(TranscodeError):
    """A label is referenced but never defined."""

    problem = "is referenced but not defined"

    def __init__(self, label: str, where: Optional[str] = None):
        self.label = label
        self.where = where
        message = f"Label '{label}' {self.problem}"
        if where:
            message += f" in {where}"
        super().__init__(message)


class DuplicateLabel(DanglingLabel):
    """A label is defined more than once in one method."""

    problem = "is defined more than once"


class MissingElementError(TranscodeError):
    """A tree lacks structure required to rebuild an entity."""

    def __init__(self, element: str, entity: str):
        self.element = element
        self.entity = entity
        super().__init__(f"Missing element '{element}' in {entity}")


class FormatError(TranscodeError):
    """A literal or tree document is malformed."""

    def __init__(self, message: str, path: Optional[str] = None):
        self.path = path
        if path:
            message = f"{message} at {path}"
        super().__init__(message)
