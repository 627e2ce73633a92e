"""
LLVM 3.0 Bitcode Reader Package

Decodes bitcode containers into the in-memory IR of ir_nodes.

Package structure:
    bcreader/
    ├── __init__.py      # Public entry points (this file)
    ├── core.py          # BitcodeReader, module pass, materialization
    ├── errors.py        # ErrorKind and the BitcodeError hierarchy
    ├── codes.py         # Block ids, record codes, wire encodings
    ├── attributes.py    # Parameter attribute table
    ├── types.py         # Type table (current and legacy formats)
    ├── values.py        # Value and metadata tables, forward references
    ├── constants.py     # Constants blocks
    ├── metadata.py      # Metadata blocks and kinds
    ├── functions.py     # Function body decoder
    ├── upgrade.py       # Outdated intrinsic upgrades
    ├── writer.py        # Module writer (decoded module back to bitcode)
    └── lowering.py      # llvmlite lowering for textual IR
"""

from bcreader.core import (
    BitcodeReader, ReaderOptions, get_bitcode_target_triple, get_lazy_bitcode_module,
    get_streamed_bitcode_module, load_module, parse_bitcode_file,
)
from bcreader.errors import (
    BitcodeError, DuplicateDefinitionError, ErrorKind, ForwardReferenceError,
    FunctionBodyError, SignatureError, StructuralError, TypeMismatch,
    UnresolvedForwardReference, UnresolvedWorklistError,
)
from bcreader.lowering import LoweringError, emit_ir, lower_module
from bcreader.writer import write_bitcode

__all__ = [
    'BitcodeReader', 'ReaderOptions',
    'get_bitcode_target_triple', 'get_lazy_bitcode_module', 'get_streamed_bitcode_module',
    'load_module', 'parse_bitcode_file',
    'BitcodeError', 'DuplicateDefinitionError', 'ErrorKind', 'ForwardReferenceError',
    'FunctionBodyError', 'SignatureError', 'StructuralError', 'TypeMismatch',
    'UnresolvedForwardReference', 'UnresolvedWorklistError',
    'LoweringError', 'emit_ir', 'lower_module', 'write_bitcode',
]
