#!/usr/bin/env python3
"""
Bitcode Disassembler

Usage:
    python bcdis.py <bitcode_file> [--triple] [--lazy] [--stream] [--emit-ir] [--summary] [-v]

Examples:
    python bcdis.py hello.bc                  # Print a module summary
    python bcdis.py hello.bc --triple         # Print the target triple only
    python bcdis.py hello.bc --lazy           # Summary without reading function bodies
    python bcdis.py hello.bc --stream         # Read the file through the streaming reader
    python bcdis.py hello.bc --emit-ir        # Print textual LLVM IR
"""

import sys
import argparse
import logging

from bcreader import (
    BitcodeError, LoweringError, ReaderOptions, emit_ir, get_bitcode_target_triple, load_module,
)
from bcreader.core import global_object_in_expr
from ir_nodes import (
    ArrayType, FunctionType, LiteralStructType, Module, PointerType, StructType, VectorType,
)


def collect_struct_types(module: Module):
    """Identified struct types reachable from the module's globals and bodies."""
    found = []
    seen = set()
    pending = []
    for gv in module.global_variables:
        pending.append(gv.value_type)
    for fn in module.functions:
        pending.append(fn.function_type)
        for inst in fn.instructions():
            pending.append(inst.type)
            pending.extend(op.type for op in inst.operands if op is not None and op.type is not None)
    for alias in module.aliases:
        pending.append(alias.type)

    while pending:
        type = pending.pop()
        key = id(type) if isinstance(type, StructType) else type
        if key in seen:
            continue
        seen.add(key)
        if isinstance(type, StructType):
            found.append(type)
            pending.extend(type.elements or ())
        elif isinstance(type, LiteralStructType):
            pending.extend(type.elements)
        elif isinstance(type, PointerType):
            pending.append(type.pointee)
        elif isinstance(type, (ArrayType, VectorType)):
            pending.append(type.element)
        elif isinstance(type, FunctionType):
            pending.append(type.return_type)
            pending.extend(type.params)
    return sorted(found, key=lambda t: t.name)


def print_summary(module: Module):
    """Print what the module declares and which bodies are loaded."""
    print(f"module: {module.name}")
    print(f"  triple: {module.triple or '(none)'}")
    print(f"  datalayout: {module.data_layout or '(none)'}")

    structs = collect_struct_types(module)
    if structs:
        print("types:")
        for struct in structs:
            body = "opaque" if struct.is_opaque else ", ".join(repr(e) for e in struct.elements)
            packed = " packed" if struct.packed else ""
            print(f"  {struct!r}{packed} = {{ {body} }}")

    if module.global_variables:
        print("globals:")
        for gv in module.global_variables:
            kind = "constant" if gv.is_constant else "global"
            init = "" if gv.initializer is not None else " (declaration)"
            print(f"  @{gv.name} {gv.linkage} {kind} {gv.value_type!r}{init}")

    if module.functions:
        print("functions:")
        for fn in module.functions:
            blocks = f", {len(fn.blocks)} blocks" if fn.blocks else ""
            print(f"  @{fn.name} {fn.function_type!r} [{fn.state.value}{blocks}]")

    if module.aliases:
        print("aliases:")
        for alias in module.aliases:
            target = global_object_in_expr(alias.aliasee)
            print(f"  @{alias.name} -> @{target.name}")

    if module.named_metadata:
        print("named metadata:")
        for name, node in module.named_metadata.items():
            print(f"  !{name} ({len(node.operands)} operands)")


def disassemble(path: str, triple_only: bool = False, lazy: bool = False,
                stream: bool = False, emit: bool = False, summary: bool = False):
    """
    Read a bitcode file and print what was asked for.

    Args:
        path: Path to the .bc file (raw or wrapped)
        triple_only: Print only the target triple
        lazy: Leave function bodies unread
        stream: Read through the streaming reader
        emit: Print textual LLVM IR
        summary: Print the module summary (default when nothing else is asked)
    """
    with open(path, "rb") as f:
        data = f.read()

    if triple_only:
        print(get_bitcode_target_triple(data))
        return

    options = ReaderOptions(lazy=lazy or stream, streaming=stream)
    module = load_module(data, path, options)

    if summary or not emit:
        print_summary(module)
    if emit:
        module.materialize_all_permanently()
        print(emit_ir(module), end="")


def main():
    parser = argparse.ArgumentParser(
        description="LLVM 3.0 Bitcode Disassembler",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s hello.bc                  Print a module summary
  %(prog)s hello.bc --triple         Print the target triple only
  %(prog)s hello.bc --lazy           Summary without reading function bodies
  %(prog)s hello.bc --stream         Read through the streaming reader
  %(prog)s hello.bc --emit-ir        Print textual LLVM IR
        """
    )

    parser.add_argument("file", help="Bitcode file (.bc)")
    parser.add_argument("--triple", action="store_true",
                        help="Print the target triple and stop")
    parser.add_argument("--lazy", action="store_true",
                        help="Do not read function bodies up front")
    parser.add_argument("--stream", action="store_true",
                        help="Read the file through the streaming reader")
    parser.add_argument("--emit-ir", action="store_true",
                        help="Print textual LLVM IR to stdout")
    parser.add_argument("--summary", action="store_true",
                        help="Print the module summary (also with --emit-ir)")
    parser.add_argument("-v", "--verbose", action="store_true",
                        help="Log reader progress to stderr")

    args = parser.parse_args()

    if args.verbose:
        logging.basicConfig(level=logging.DEBUG, format="%(name)s: %(message)s")

    try:
        disassemble(
            args.file,
            triple_only=args.triple,
            lazy=args.lazy,
            stream=args.stream,
            emit=args.emit_ir,
            summary=args.summary,
        )
    except OSError as e:
        print(f"Cannot read {args.file}: {e}", file=sys.stderr)
        sys.exit(1)
    except BitcodeError as e:
        print(f"Invalid bitcode: {e}", file=sys.stderr)
        sys.exit(1)
    except LoweringError as e:
        print(f"Cannot emit IR: {e}", file=sys.stderr)
        sys.exit(1)
    except Exception as e:
        print(f"Internal error: {e}", file=sys.stderr)
        import traceback
        traceback.print_exc()
        sys.exit(2)


if __name__ == "__main__":
    main()
