"""
Passes that rewrite a batch of classes.
"""

import logging
from abc import ABC, abstractmethod
from typing import Iterable, Sequence

from .representation import Representation

log = logging.getLogger(__name__)


class Improvement(ABC):
    """Turns a collection of representations into another one."""

    @abstractmethod
    def apply(self, representations: Sequence[Representation]) -> list[Representation]:
        pass


class IdentityImprovement(Improvement):
    """Leaves every class as it is."""

    def apply(self, representations: Sequence[Representation]) -> list[Representation]:
        return list(representations)


def improve(representations: Iterable[Representation],
            improvements: Iterable[Improvement]) -> list[Representation]:
    """Run the improvements in order, each on the output of the previous one."""
    result = list(representations)
    for improvement in improvements:
        before = len(result)
        result = improvement.apply(result)
        log.info("%s: %d class(es) in, %d out", type(improvement).__name__, before, len(result))
    return result
