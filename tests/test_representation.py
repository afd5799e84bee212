"""Tests for the representation facade, batch transcoding and improvements."""

import logging

import pytest

from pyjeo.classreader import read_class
from pyjeo.errors import MalformedClassError
from pyjeo.improvement import IdentityImprovement, Improvement, improve
from pyjeo.representation import BytecodeRepresentation, Outcome, TreeRepresentation, transcode
from pyjeo.treebuilder import build_tree


class TestBytecodeRepresentation:
    def test_name(self, foo_bytes):
        assert BytecodeRepresentation(foo_bytes).name() == "Foo"

    def test_binary_is_the_input(self, foo_bytes):
        rep = BytecodeRepresentation(foo_bytes)
        assert rep.to_binary() == foo_bytes
        assert rep.reencode() == foo_bytes

    def test_model_is_cached(self, sample_bytes):
        rep = BytecodeRepresentation(sample_bytes)
        assert rep.model() is rep.model()
        assert rep.to_tree() == build_tree(rep.model())

    def test_from_path(self, foo_bytes, tmp_path):
        path = tmp_path / "Foo.class"
        path.write_bytes(foo_bytes)
        assert BytecodeRepresentation.from_path(path).model() == read_class(foo_bytes)

    def test_malformed_input_fails_lazily(self):
        rep = BytecodeRepresentation(b"junk")
        with pytest.raises(MalformedClassError):
            rep.name()


class TestTreeRepresentation:
    def test_from_text(self, sample_bytes):
        original = BytecodeRepresentation(sample_bytes)
        rep = TreeRepresentation(original.to_text())
        assert rep.name() == "com/example/Sample"
        assert read_class(rep.to_binary()) == original.model()

    def test_from_tree(self, foo_bytes):
        tree = BytecodeRepresentation(foo_bytes).to_tree()
        rep = TreeRepresentation(tree)
        assert rep.to_tree() is tree
        assert rep.to_binary() is rep.to_binary()

    def test_from_path(self, foo_bytes, tmp_path):
        path = tmp_path / "Foo.jeo"
        path.write_text(BytecodeRepresentation(foo_bytes).to_text(), encoding="utf-8")
        assert TreeRepresentation.from_path(path).name() == "Foo"


class TestTranscode:
    def test_failures_are_isolated(self, foo_bytes, sample_bytes):
        outcomes = transcode([foo_bytes, b"junk", sample_bytes], read_class, workers=3)
        assert [o.ok for o in outcomes] == [True, False, True]
        assert isinstance(outcomes[1].error, MalformedClassError)
        assert outcomes[1].source == b"junk"
        assert outcomes[0].value.name == "Foo"
        assert outcomes[2].value.name == "com/example/Sample"

    def test_input_order(self):
        outcomes = transcode(range(20), lambda n: n * n, workers=4)
        assert [o.value for o in outcomes] == [n * n for n in range(20)]

    def test_empty(self):
        assert transcode([], len) == []

    def test_outcome(self):
        assert Outcome("a", 1).ok
        assert not Outcome("a", error=ValueError("boom")).ok


class DropAll(Improvement):
    def apply(self, representations):
        return []


class TestImprove:
    def test_identity(self, foo_bytes, sample_bytes, caplog):
        reps = [BytecodeRepresentation(foo_bytes), BytecodeRepresentation(sample_bytes)]
        with caplog.at_level(logging.INFO, logger="pyjeo.improvement"):
            result = improve(reps, [IdentityImprovement()])
        assert result == reps
        assert "IdentityImprovement: 2 class(es) in, 2 out" in caplog.text

    def test_chained(self, foo_bytes):
        reps = [BytecodeRepresentation(foo_bytes)]
        assert improve(reps, [IdentityImprovement(), DropAll()]) == []
        assert improve(reps, []) == reps
