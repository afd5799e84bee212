#!/usr/bin/env python3
"""
Command-line interface for pyjeo - JVM class files to canonical trees and back.
"""

import argparse
import logging
import sys
from pathlib import Path

from .representation import BytecodeRepresentation, TreeRepresentation, transcode
from .treebuilder import build_tree

log = logging.getLogger(__name__)

TREE_SUFFIX = ".jeo"


def _write(path: Path, data: bytes):
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "wb") as f:
        f.write(data)


def _report(outcomes, action: str) -> int:
    failures = 0
    for outcome in outcomes:
        if not outcome.ok:
            print(f"Error {action} {outcome.source}: {outcome.error}", file=sys.stderr)
            failures += 1
    return failures


def disassemble_command(args) -> int:
    """Turn .class files into tree documents."""
    output_dir = Path(args.output) if args.output else Path(".")
    output_dir.mkdir(parents=True, exist_ok=True)

    def disassemble(source: str) -> Path:
        rep = BytecodeRepresentation.from_path(source)
        target = output_dir / f"{rep.name()}{TREE_SUFFIX}"
        _write(target, rep.to_text().encode("utf-8"))
        log.info("Wrote %s", target)
        return target

    outcomes = transcode(args.files, disassemble, args.jobs)
    failures = _report(outcomes, "disassembling")
    if not args.quiet:
        print(f"Disassembled {len(outcomes) - failures} of {len(outcomes)} file(s)")
    return failures


def assemble_command(args) -> int:
    """Turn tree documents into .class files."""
    output_dir = Path(args.output) if args.output else Path(".")
    output_dir.mkdir(parents=True, exist_ok=True)

    def assemble(source: str) -> Path:
        rep = TreeRepresentation.from_path(source, verify=args.verify)
        target = output_dir / f"{rep.name()}.class"
        _write(target, rep.to_binary())
        log.info("Wrote %s", target)
        return target

    outcomes = transcode(args.files, assemble, args.jobs)
    failures = _report(outcomes, "assembling")
    if not args.quiet:
        print(f"Assembled {len(outcomes) - failures} of {len(outcomes)} file(s)")
    return failures


def check_class(source) -> bool:
    """True if the class survives both the model and the tree text round trip unchanged."""
    rep = BytecodeRepresentation.from_path(source)
    if rep.reencode() != rep.data:
        log.info("%s: model round trip differs", source)
        return False
    tree = rep.to_tree()
    back = TreeRepresentation(rep.to_text())
    if build_tree(back.model()) != tree:
        log.info("%s: tree round trip differs", source)
        return False
    return True


def check_command(args) -> int:
    """Check that .class files round-trip byte for byte."""
    outcomes = transcode(args.files, check_class, args.jobs)
    failures = _report(outcomes, "checking")
    for outcome in outcomes:
        if outcome.ok and not outcome.value:
            print(f"{outcome.source}: round trip differs", file=sys.stderr)
            failures += 1
        elif outcome.ok and args.verbose:
            print(f"{outcome.source}: ok")
    if not args.quiet:
        print(f"Checked {len(outcomes)} file(s), {failures} failed")
    return failures


def main(argv=None):
    """Main entry point for pyjeo CLI."""
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "-j", "--jobs",
        type=int,
        default=None,
        help="Number of worker threads (default: chosen by the executor)",
    )
    common.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Log each processed file",
    )
    common.add_argument(
        "-q", "--quiet",
        action="store_true",
        help="Suppress summary output",
    )

    parser = argparse.ArgumentParser(
        prog="pyjeo",
        description="Transcode JVM class files to canonical trees and back",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # Disassemble command
    disassemble_parser = subparsers.add_parser(
        "disassemble",
        parents=[common],
        help="Convert .class files to tree documents",
    )
    disassemble_parser.add_argument(
        "files",
        nargs="+",
        help="Class files to convert",
    )
    disassemble_parser.add_argument(
        "-o", "--output",
        help=f"Output directory for {TREE_SUFFIX} files (default: current directory)",
    )
    disassemble_parser.set_defaults(func=disassemble_command)

    # Assemble command
    assemble_parser = subparsers.add_parser(
        "assemble",
        parents=[common],
        help="Convert tree documents to .class files",
    )
    assemble_parser.add_argument(
        "files",
        nargs="+",
        help="Tree documents to convert",
    )
    assemble_parser.add_argument(
        "-o", "--output",
        help="Output directory for .class files (default: current directory)",
    )
    assemble_parser.add_argument(
        "--verify",
        action="store_true",
        help="Recompute max stack, max locals and stack map frames",
    )
    assemble_parser.set_defaults(func=assemble_command)

    # Check command
    check_parser = subparsers.add_parser(
        "check",
        parents=[common],
        help="Verify that .class files round-trip unchanged",
    )
    check_parser.add_argument(
        "files",
        nargs="+",
        help="Class files to check",
    )
    check_parser.set_defaults(func=check_command)

    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        sys.exit(1)

    logging.basicConfig(
        level=logging.INFO if args.verbose else logging.WARNING,
        format="%(message)s",
    )

    if args.func(args):
        sys.exit(1)


if __name__ == "__main__":
    main()
