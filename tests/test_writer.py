"""
Tests for writing decoded modules back to bitcode and reading them again.
"""

import pytest

from bcreader import get_lazy_bitcode_module, parse_bitcode_file, write_bitcode
from bcreader.codes import (
    AttributeCode, BinopCode, BlockId, ConstantsCode, FunctionCode, MetadataCode, TypeCode,
)
from bitstream import is_bitcode_wrapper
from ir_nodes import ConstantAggregate, MDString, Opcode
from builders import (
    ModuleBuilder, STANDARD_TYPES, T_I32, T_I8, T_METADATA, T_UNARY_FN_PTR, chars, sr,
)


def reread(module):
    return parse_bitcode_file(write_bitcode(module))


def build_loop_module() -> bytes:
    """i32 @loop(i32 %n) counting up to 40, with an attribute set and metadata."""
    b = ModuleBuilder()
    with b.block(BlockId.PARAMATTR):
        b.record(AttributeCode.ENTRY_OLD, [0xFFFFFFFF, 1 << 5])
    b.types(STANDARD_TYPES)
    b.function(T_UNARY_FN_PTR, paramattr=1)
    with b.block(BlockId.CONSTANTS):
        b.record(ConstantsCode.SETTYPE, [T_I32])
        b.record(ConstantsCode.INTEGER, [sr(1)])
        b.record(ConstantsCode.INTEGER, [sr(40)])
    with b.block(BlockId.METADATA):
        b.record(MetadataCode.STRING, chars("loop"))
        b.record(MetadataCode.NODE, [T_METADATA, 0, T_I32, 2])
        b.record(MetadataCode.NAME, chars("info"))
        b.record(MetadataCode.NAMED_NODE, [1])
    b.symbols({0: "loop"})
    with b.block(BlockId.FUNCTION):
        b.record(FunctionCode.DECLAREBLOCKS, [3])
        b.record(FunctionCode.INST_BR, [1])
        b.record(FunctionCode.INST_PHI, [T_I32, 3, 0, 5, 1])
        b.record(FunctionCode.INST_BINOP, [4, 1, BinopCode.ADD])
        b.record(FunctionCode.INST_CMP2, [5, 2, 40])
        b.record(FunctionCode.INST_BR, [1, 2, 6])
        b.record(FunctionCode.INST_RET, [5])
        b.symbols({3: "n", 4: "i", 5: "next"}, {0: "entry", 1: "body", 2: "done"})
    return b.finish()


class TestRoundTrip:

    def test_add_module(self, add_bitcode):
        module = reread(parse_bitcode_file(add_bitcode))

        assert module.triple == "x86_64-unknown-linux-gnu"
        assert module.get_global_variable("counter").initializer.value == 42
        fn = module.get_function("add")
        add, ret = fn.blocks[0].instructions
        assert add.opcode == Opcode.ADD
        assert add.name == "sum"
        assert add.operands == fn.args
        assert ret.operands[0] is add
        assert fn.blocks[0].name == "entry"

    def test_calls_between_functions(self, two_function_bitcode):
        module = reread(parse_bitcode_file(two_function_bitcode))
        first = module.get_function("first")
        call = module.get_function("second").blocks[0].instructions[0]
        assert call.opcode == Opcode.CALL
        assert call.operands[0] is first

    def test_loop_attributes_and_metadata(self):
        module = reread(parse_bitcode_file(build_loop_module()))
        fn = module.get_function("loop")

        assert [block.name for block in fn.blocks] == ["entry", "body", "done"]
        phi, add, cmp, br = fn.blocks[1].instructions
        assert phi.operands[2] is add
        assert cmp.attrs["predicate"] == 40
        assert br.operands[0] is cmp
        assert fn.attributes.function_attributes.names == ["nounwind"]

        node = module.named_metadata["info"].operands[0]
        assert isinstance(node.operands[0], MDString)
        assert node.operands[0].string == "loop"
        assert node.operands[1].value == 40

    def test_written_twice_is_stable(self):
        first = write_bitcode(parse_bitcode_file(build_loop_module()))
        second = write_bitcode(parse_bitcode_file(first))
        assert first == second

    def test_wrapper_header(self, add_bitcode):
        data = write_bitcode(parse_bitcode_file(add_bitcode), wrapper=True)
        assert is_bitcode_wrapper(data)
        module = parse_bitcode_file(data)
        assert module.get_function("add") is not None

    def test_string_constant(self):
        b = ModuleBuilder()
        b.types(STANDARD_TYPES + [(TypeCode.ARRAY, [3, T_I8]), (TypeCode.POINTER, [18, 0])])
        b.global_var(19, init_id=1, is_const=True)
        with b.block(BlockId.CONSTANTS):
            b.record(ConstantsCode.SETTYPE, [18])
            b.record(ConstantsCode.CSTRING, chars("hi"))
        b.symbols({0: "greeting"})
        module = reread(parse_bitcode_file(b.finish()))

        greeting = module.get_global_variable("greeting")
        assert greeting.is_constant
        assert isinstance(greeting.initializer, ConstantAggregate)
        assert [e.value for e in greeting.initializer.elements] == [104, 105, 0]

    def test_unmaterialized_module_is_rejected(self, add_bitcode):
        module = get_lazy_bitcode_module(add_bitcode)
        with pytest.raises(ValueError):
            write_bitcode(module)
