"""
Tests for function body decoding: instructions, operand forward references,
basic block bookkeeping and function-local failures.
"""

import pytest

from bcreader import ErrorKind, FunctionBodyError, parse_bitcode_file
from bcreader.codes import (
    BinopCode, BlockId, CastCode, ConstantsCode, FunctionCode, OrderingCode, RMWCode,
    SynchScopeCode,
)
from ir_nodes import Argument, ConstantInt, IntegerType, Opcode
from builders import (
    ModuleBuilder, STANDARD_TYPES, T_I32, T_I32_FN_PTR, T_I32_PTR, T_I8, T_UNARY_FN_PTR,
    T_VOID_FN_PTR, sr,
)


def build_function(fn_ptr_type, body, ints=(), declarations=()):
    """
    A module with the given declarations, then @f, then i32 constants.

    Value ids: declarations from 0, @f next, then the constants, then the
    arguments of @f and its instructions.
    """
    b = ModuleBuilder()
    b.types(STANDARD_TYPES)
    names = {}
    for value_id, (ptr_type, name) in enumerate(declarations):
        b.function(ptr_type, is_proto=True)
        names[value_id] = name
    names[len(declarations)] = "f"
    b.function(fn_ptr_type)
    if ints:
        with b.block(BlockId.CONSTANTS):
            b.record(ConstantsCode.SETTYPE, [T_I32])
            for value in ints:
                b.record(ConstantsCode.INTEGER, [sr(value)])
    b.symbols(names)
    with b.block(BlockId.FUNCTION):
        body(b)
    return b.finish()


def decode_function(*args, **kwargs):
    return parse_bitcode_file(build_function(*args, **kwargs)).get_function("f")


def opcodes(fn):
    return [inst.opcode for inst in fn.instructions()]


class TestStraightLineCode:

    def test_add_function(self, add_bitcode):
        module = parse_bitcode_file(add_bitcode)
        fn = module.get_function("add")

        assert [arg.name for arg in fn.args] == ["a", "b"]
        assert len(fn.blocks) == 1
        assert fn.blocks[0].name == "entry"
        add, ret = fn.blocks[0].instructions
        assert add.opcode == Opcode.ADD
        assert add.name == "sum"
        assert add.operands == fn.args
        assert ret.opcode == Opcode.RET
        assert ret.operands[0] is add

    def test_binop_flags(self):
        def body(b):
            b.record(FunctionCode.DECLAREBLOCKS, [1])
            b.record(FunctionCode.INST_BINOP, [1, 1, BinopCode.ADD, 3])
            b.record(FunctionCode.INST_RET, [2])

        fn = decode_function(T_I32_FN_PTR, body, ints=[5])
        assert fn.blocks[0].instructions[0].attrs["flags"] == ("nuw", "nsw")

    def test_cast(self):
        def body(b):
            b.record(FunctionCode.DECLAREBLOCKS, [1])
            b.record(FunctionCode.INST_CAST, [1, T_I8, CastCode.TRUNC])
            b.record(FunctionCode.INST_RET, [1])

        fn = decode_function(T_I32_FN_PTR, body, ints=[300])
        cast = fn.blocks[0].instructions[0]
        assert cast.opcode == Opcode.TRUNC
        assert cast.type == IntegerType(8)

    def test_call_with_tail_and_calling_convention(self):
        def body(b):
            b.record(FunctionCode.DECLAREBLOCKS, [1])
            b.record(FunctionCode.INST_CALL, [0, (8 << 1) | 1, 0])
            b.record(FunctionCode.INST_RET, [2])

        module = parse_bitcode_file(build_function(
            T_I32_FN_PTR, body, declarations=[(T_I32_FN_PTR, "callee")]))
        call = module.get_function("f").blocks[0].instructions[0]
        assert call.opcode == Opcode.CALL
        assert call.operands[0] is module.get_function("callee")
        assert call.attrs["cc"] == 8
        assert call.attrs["tail"] is True

    def test_call_with_wrong_argument_count(self):
        def body(b):
            b.record(FunctionCode.DECLAREBLOCKS, [1])
            b.record(FunctionCode.INST_CALL, [0, 0, 0, 2])
            b.record(FunctionCode.INST_RET, [2])

        with pytest.raises(FunctionBodyError) as exc:
            decode_function(T_I32_FN_PTR, body, ints=[1],
                            declarations=[(T_I32_FN_PTR, "callee")])
        assert exc.value.kind == ErrorKind.INVALID_RECORD


class TestControlFlow:

    def test_loop_with_phi(self):
        """
        bb0: br bb1
        bb1: %i = phi [%n, bb0], [%next, bb1]; %next = add %i, 1
             %c = icmp slt %next, 40; br %c, bb1, bb2
        bb2: ret %next
        """
        def body(b):
            b.record(FunctionCode.DECLAREBLOCKS, [3])
            b.record(FunctionCode.INST_BR, [1])
            b.record(FunctionCode.INST_PHI, [T_I32, 3, 0, 5, 1])
            b.record(FunctionCode.INST_BINOP, [4, 1, BinopCode.ADD])
            b.record(FunctionCode.INST_CMP2, [5, 2, 40])
            b.record(FunctionCode.INST_BR, [1, 2, 6])
            b.record(FunctionCode.INST_RET, [5])

        fn = decode_function(T_UNARY_FN_PTR, body, ints=[1, 40])
        entry, loop, exit_block = fn.blocks
        phi, add, cmp, br = loop.instructions

        assert phi.opcode == Opcode.PHI
        assert phi.operands[0] is fn.args[0]
        assert phi.operands[1] is entry
        assert phi.operands[2] is add
        assert phi.operands[3] is loop
        assert cmp.opcode == Opcode.ICMP
        assert cmp.attrs["predicate"] == 40
        assert cmp.type == IntegerType(1)
        assert br.operands == [cmp, loop, exit_block]
        assert exit_block.instructions[0].operands[0] is add
        assert not any(isinstance(op, Argument) and op.is_placeholder
                       for inst in fn.instructions() for op in inst.operands)

    def test_switch(self):
        def body(b):
            b.record(FunctionCode.DECLAREBLOCKS, [3])
            b.record(FunctionCode.INST_SWITCH, [T_I32, 3, 2, 1, 1])
            b.record(FunctionCode.INST_RET, [1])
            b.record(FunctionCode.INST_RET, [2])

        fn = decode_function(T_UNARY_FN_PTR, body, ints=[1, 2])
        switch = fn.blocks[0].instructions[0]
        condition, default, case_value, case_dest = switch.operands
        assert condition is fn.args[0]
        assert default is fn.blocks[2]
        assert isinstance(case_value, ConstantInt) and case_value.value == 1
        assert case_dest is fn.blocks[1]

    def test_unwind_becomes_landingpad_and_resume(self):
        def body(b):
            b.record(FunctionCode.DECLAREBLOCKS, [1])
            b.record(FunctionCode.INST_UNWIND, [])

        module = parse_bitcode_file(build_function(T_VOID_FN_PTR, body))
        fn = module.get_function("f")
        assert opcodes(fn) == [Opcode.LANDINGPAD, Opcode.RESUME]
        landing_pad, resume = fn.blocks[0].instructions
        assert landing_pad.attrs["cleanup"] is True
        assert resume.operands[0] is landing_pad
        assert module.get_function("__gcc_personality_v0") is not None


class TestMemory:

    def test_alloca_store_load(self):
        def body(b):
            b.record(FunctionCode.DECLAREBLOCKS, [1])
            b.record(FunctionCode.INST_ALLOCA, [T_I32_PTR, T_I32, 1, 3])
            b.record(FunctionCode.INST_STORE, [2, 1, 3, 0])
            b.record(FunctionCode.INST_LOAD, [2, 3, 1])
            b.record(FunctionCode.INST_RET, [])

        fn = decode_function(T_VOID_FN_PTR, body, ints=[1])
        alloca, store, load, _ = fn.blocks[0].instructions
        assert alloca.attrs["allocated_type"] == IntegerType(32)
        assert alloca.attrs["alignment"] == 4
        assert store.operands[1] is alloca
        assert store.operands[0].value == 1
        assert load.type == IntegerType(32)
        assert load.attrs["volatile"] is True
        assert load.attrs["alignment"] == 4

    def test_fence_and_atomicrmw(self):
        def body(b):
            b.record(FunctionCode.DECLAREBLOCKS, [1])
            b.record(FunctionCode.INST_ALLOCA, [T_I32_PTR, T_I32, 1, 0])
            b.record(FunctionCode.INST_FENCE, [OrderingCode.SEQCST, SynchScopeCode.CROSSTHREAD])
            b.record(FunctionCode.INST_ATOMICRMW,
                     [2, 1, RMWCode.ADD, 0, OrderingCode.MONOTONIC, SynchScopeCode.SINGLETHREAD])
            b.record(FunctionCode.INST_RET, [])

        fn = decode_function(T_VOID_FN_PTR, body, ints=[1])
        _, fence, rmw, _ = fn.blocks[0].instructions
        assert fence.attrs["ordering"] == "seq_cst"
        assert fence.attrs["scope"] == "crossthread"
        assert rmw.attrs["op"] == "add"
        assert rmw.attrs["ordering"] == "monotonic"
        assert rmw.attrs["scope"] == "singlethread"
        assert rmw.type == IntegerType(32)

    def test_fence_with_weak_ordering(self):
        def body(b):
            b.record(FunctionCode.DECLAREBLOCKS, [1])
            b.record(FunctionCode.INST_FENCE, [OrderingCode.MONOTONIC, 1])
            b.record(FunctionCode.INST_RET, [])

        with pytest.raises(FunctionBodyError) as exc:
            decode_function(T_VOID_FN_PTR, body)
        assert exc.value.kind == ErrorKind.INVALID_RECORD


class TestBodyErrors:

    def test_never_resolved_value(self):
        def body(b):
            b.record(FunctionCode.DECLAREBLOCKS, [1])
            b.record(FunctionCode.INST_RET, [9, T_I32])

        with pytest.raises(FunctionBodyError) as exc:
            decode_function(T_I32_FN_PTR, body)
        assert exc.value.kind == ErrorKind.NEVER_RESOLVED_VALUE_FOUND_IN_FUNCTION
        assert exc.value.function_name == "f"
        assert "Never resolved value found in function" in str(exc.value)

    def test_fewer_terminators_than_blocks(self):
        def body(b):
            b.record(FunctionCode.DECLAREBLOCKS, [2])
            b.record(FunctionCode.INST_RET, [1])

        with pytest.raises(FunctionBodyError) as exc:
            decode_function(T_I32_FN_PTR, body, ints=[0])
        assert exc.value.kind == ErrorKind.INVALID_RECORD

    def test_instruction_after_last_block(self):
        def body(b):
            b.record(FunctionCode.DECLAREBLOCKS, [1])
            b.record(FunctionCode.INST_RET, [1])
            b.record(FunctionCode.INST_RET, [1])

        with pytest.raises(FunctionBodyError) as exc:
            decode_function(T_I32_FN_PTR, body, ints=[0])
        assert exc.value.kind == ErrorKind.INVALID_INSTRUCTION_WITH_NO_BB

    def test_body_without_blocks(self):
        def body(b):
            pass

        with pytest.raises(FunctionBodyError) as exc:
            decode_function(T_VOID_FN_PTR, body)
        assert exc.value.kind == ErrorKind.MALFORMED_BLOCK

    def test_zero_declared_blocks(self):
        def body(b):
            b.record(FunctionCode.DECLAREBLOCKS, [0])

        with pytest.raises(FunctionBodyError) as exc:
            decode_function(T_VOID_FN_PTR, body)
        assert exc.value.kind == ErrorKind.INVALID_RECORD

    def test_unknown_instruction(self):
        def body(b):
            b.record(FunctionCode.DECLAREBLOCKS, [1])
            b.record(60, [])

        with pytest.raises(FunctionBodyError) as exc:
            decode_function(T_VOID_FN_PTR, body)
        assert exc.value.kind == ErrorKind.INVALID_VALUE

    def test_operand_type_mismatch(self):
        def body(b):
            b.record(FunctionCode.DECLAREBLOCKS, [1])
            b.record(FunctionCode.INST_BINOP, [1, 2, BinopCode.ADD])
            b.record(FunctionCode.INST_RET, [3])

        b = ModuleBuilder()
        b.types(STANDARD_TYPES)
        b.function(T_I32_FN_PTR)
        with b.block(BlockId.CONSTANTS):
            b.record(ConstantsCode.SETTYPE, [T_I32])
            b.record(ConstantsCode.INTEGER, [sr(1)])
            b.record(ConstantsCode.SETTYPE, [T_I8])
            b.record(ConstantsCode.INTEGER, [sr(1)])
        with b.block(BlockId.FUNCTION):
            body(b)
        with pytest.raises(FunctionBodyError) as exc:
            parse_bitcode_file(b.finish())
        assert exc.value.kind == ErrorKind.INVALID_TYPE_FOR_VALUE
