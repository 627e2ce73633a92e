"""
Pytest configuration and fixtures for bitcode reader tests.

Provides reusable fixtures for:
- Small hand-built bitcode modules (see builders.py)
- Writing bitcode files and running the bcdis command line tool
"""

import os
import sys
import subprocess
from pathlib import Path

import pytest

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from bcreader.codes import BinopCode, BlockId, ConstantsCode, FunctionCode  # noqa: E402
from builders import (  # noqa: E402
    ModuleBuilder, STANDARD_TYPES, T_BINARY_FN_PTR, T_I32, T_I32_FN_PTR, T_I32_PTR, sr,
)


class CommandResult:
    """Result of running bcdis."""

    def __init__(self, returncode: int, stdout: str, stderr: str):
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr


def build_add_module() -> bytes:
    """
    define i32 @add(i32 %a, i32 %b) { entry: %sum = add i32 %a, %b; ret i32 %sum }
    @counter = global i32 42

    Value ids: 0 @add, 1 @counter, 2 i32 42, then in the body 3 %a, 4 %b, 5 %sum.
    """
    b = ModuleBuilder()
    b.triple("x86_64-unknown-linux-gnu")
    b.types(STANDARD_TYPES)
    b.function(T_BINARY_FN_PTR)
    b.global_var(T_I32_PTR, init_id=2)
    with b.block(BlockId.CONSTANTS):
        b.record(ConstantsCode.SETTYPE, [T_I32])
        b.record(ConstantsCode.INTEGER, [sr(42)])
    b.symbols({0: "add", 1: "counter"})
    with b.block(BlockId.FUNCTION):
        b.record(FunctionCode.DECLAREBLOCKS, [1])
        b.record(FunctionCode.INST_BINOP, [3, 4, BinopCode.ADD])
        b.record(FunctionCode.INST_RET, [5])
        b.symbols({3: "a", 4: "b", 5: "sum"}, {0: "entry"})
    return b.finish()


def build_two_function_module() -> bytes:
    """
    define i32 @first() { ret i32 1 }
    define i32 @second() { %r = call i32 @first(); %s = add i32 %r, 2; ret i32 %s }

    The symbol table precedes the bodies, as a streamed module requires.
    """
    b = ModuleBuilder()
    b.types(STANDARD_TYPES)
    b.function(T_I32_FN_PTR)
    b.function(T_I32_FN_PTR)
    with b.block(BlockId.CONSTANTS):
        b.record(ConstantsCode.SETTYPE, [T_I32])
        b.record(ConstantsCode.INTEGER, [sr(1)])
        b.record(ConstantsCode.INTEGER, [sr(2)])
    b.symbols({0: "first", 1: "second"})
    with b.block(BlockId.FUNCTION):
        b.record(FunctionCode.DECLAREBLOCKS, [1])
        b.record(FunctionCode.INST_RET, [2])
    with b.block(BlockId.FUNCTION):
        b.record(FunctionCode.DECLAREBLOCKS, [1])
        b.record(FunctionCode.INST_CALL, [0, 0, 0])
        b.record(FunctionCode.INST_BINOP, [4, 3, BinopCode.ADD])
        b.record(FunctionCode.INST_RET, [5])
    return b.finish()


@pytest.fixture
def repo_root():
    """Path to the repository root directory."""
    return Path(__file__).parent.parent


@pytest.fixture
def add_bitcode():
    return build_add_module()


@pytest.fixture
def two_function_bitcode():
    return build_two_function_module()


@pytest.fixture
def bitcode_file(tmp_path):
    """
    Fixture that writes bitcode bytes to a temporary .bc file.

    Usage:
        path = bitcode_file(data)
    """
    def _write(data: bytes, name: str = "test.bc") -> Path:
        path = tmp_path / name
        path.write_bytes(data)
        return path

    return _write


@pytest.fixture
def run_bcdis(repo_root):
    """
    Fixture that runs bcdis.py on a file with extra arguments.

    Usage:
        result = run_bcdis(path, "--emit-ir")
        assert result.returncode == 0
    """
    def _run(path, *args) -> CommandResult:
        script = os.path.join(repo_root, "bcdis.py")
        result = subprocess.run(
            [sys.executable, script, str(path)] + list(args),
            capture_output=True,
            text=True,
            cwd=repo_root
        )
        return CommandResult(result.returncode, result.stdout, result.stderr)

    return _run
