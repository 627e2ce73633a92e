"""
Tests for CONSTANTS blocks: scalar and aggregate constants, constant
expressions, forward references resolved at block end, and block addresses.
"""

import pytest

from bcreader import (
    ErrorKind, FunctionBodyError, StructuralError, UnresolvedForwardReference,
    get_lazy_bitcode_module, parse_bitcode_file,
)
from bcreader.codes import BlockId, CastCode, ConstantsCode, FunctionCode, TypeCode
from ir_nodes import (
    BlockAddress, ConstantAggregate, ConstantExpr, ConstantInt, ConstantNull, ConstantPlaceholder,
    Opcode, UndefValue,
)
from builders import (
    ModuleBuilder, STANDARD_TYPES, T_DOUBLE, T_I1, T_I32, T_I32_PTR, T_I8, T_I8_PTR,
    T_I8_PTR_PTR, T_VOID_FN_PTR, chars, sr,
)


T_TABLE = 18          # [1000 x i32]
T_TABLE_PTR = 19
T_I128 = 20
T_I128_PTR = 21
T_STR = 22            # [6 x i8]
T_STR_PTR = 23
T_DOUBLE_PTR = 24
T_PAIR = 25           # [2 x i32]
T_PAIR_PTR = 26
T_PAIR_PAIR = 27      # [2 x [2 x i32]]
T_PAIR_PAIR_PTR = 28

CONSTANT_TYPES = STANDARD_TYPES + [
    (TypeCode.ARRAY, [1000, T_I32]),
    (TypeCode.POINTER, [T_TABLE, 0]),
    (TypeCode.INTEGER, [128]),
    (TypeCode.POINTER, [T_I128, 0]),
    (TypeCode.ARRAY, [6, T_I8]),
    (TypeCode.POINTER, [T_STR, 0]),
    (TypeCode.POINTER, [T_DOUBLE, 0]),
    (TypeCode.ARRAY, [2, T_I32]),
    (TypeCode.POINTER, [T_PAIR, 0]),
    (TypeCode.ARRAY, [2, T_PAIR]),
    (TypeCode.POINTER, [T_PAIR_PAIR, 0]),
]


def global_with_constant(ptr_type, set_type, code, fields):
    """One global (value 0) initialized by one constant (value 1)."""
    b = ModuleBuilder()
    b.types(CONSTANT_TYPES)
    b.global_var(ptr_type, init_id=1)
    with b.block(BlockId.CONSTANTS):
        b.record(ConstantsCode.SETTYPE, [set_type])
        b.record(code, fields)
    return parse_bitcode_file(b.finish()).global_variables[0].initializer


class TestScalarConstants:

    def test_negative_integer(self):
        value = global_with_constant(T_I32_PTR, T_I32, ConstantsCode.INTEGER, [sr(-5)])
        assert isinstance(value, ConstantInt)
        assert value.value == -5
        assert value.unsigned_value == 0xFFFFFFFB

    def test_wide_integer(self):
        value = global_with_constant(T_I128_PTR, T_I128, ConstantsCode.WIDE_INTEGER,
                                     [sr(1), sr(1)])
        assert value.unsigned_value == (1 << 64) | 1

    def test_double(self):
        value = global_with_constant(T_DOUBLE_PTR, T_DOUBLE, ConstantsCode.FLOAT,
                                     [0x3FF8000000000000])
        assert value.value == 1.5

    def test_null(self):
        value = global_with_constant(T_I32_PTR, T_I32, ConstantsCode.NULL, [])
        assert isinstance(value, ConstantNull)
        assert value.type.width == 32

    def test_integer_record_for_non_integer_type(self):
        with pytest.raises(StructuralError) as exc:
            global_with_constant(T_DOUBLE_PTR, T_DOUBLE, ConstantsCode.INTEGER, [sr(1)])
        assert exc.value.kind == ErrorKind.INVALID_RECORD

    def test_equal_constants_are_shared(self):
        b = ModuleBuilder()
        b.types(CONSTANT_TYPES)
        b.global_var(T_I32_PTR, init_id=2)
        b.global_var(T_I32_PTR, init_id=3)
        with b.block(BlockId.CONSTANTS):
            b.record(ConstantsCode.SETTYPE, [T_I32])
            b.record(ConstantsCode.INTEGER, [sr(42)])
            b.record(ConstantsCode.INTEGER, [sr(42)])
        first, second = parse_bitcode_file(b.finish()).global_variables
        assert first.initializer is second.initializer


class TestAggregateConstants:

    def test_cstring(self):
        value = global_with_constant(T_STR_PTR, T_STR, ConstantsCode.CSTRING, chars("hello"))
        assert isinstance(value, ConstantAggregate)
        assert [e.value for e in value.elements] == list(b"hello") + [0]

    def test_string_type_must_be_byte_array(self):
        with pytest.raises(StructuralError):
            global_with_constant(T_I32_PTR, T_I32, ConstantsCode.STRING, chars("hi"))

    def test_aggregate_with_forward_references(self):
        b = ModuleBuilder()
        b.types(CONSTANT_TYPES)
        b.global_var(T_PAIR_PTR, init_id=1)
        with b.block(BlockId.CONSTANTS):
            b.record(ConstantsCode.SETTYPE, [T_PAIR])
            b.record(ConstantsCode.AGGREGATE, [3, 2])
            b.record(ConstantsCode.SETTYPE, [T_I32])
            b.record(ConstantsCode.INTEGER, [sr(10)])
            b.record(ConstantsCode.INTEGER, [sr(20)])
        pair = parse_bitcode_file(b.finish()).global_variables[0].initializer
        assert [e.value for e in pair.elements] == [20, 10]

    def test_composite_rebuilt_once(self):
        """A composite with many forward references is rebuilt a single time."""
        b = ModuleBuilder()
        b.types(CONSTANT_TYPES)
        b.global_var(T_TABLE_PTR, init_id=1)
        with b.block(BlockId.CONSTANTS):
            b.record(ConstantsCode.SETTYPE, [T_TABLE])
            b.record(ConstantsCode.AGGREGATE, list(range(2, 1002)))
            b.record(ConstantsCode.SETTYPE, [T_I32])
            for i in range(1000):
                b.record(ConstantsCode.INTEGER, [sr(i)])
        module = get_lazy_bitcode_module(b.finish())

        table = module.global_variables[0].initializer
        assert len(table.elements) == 1000
        assert table.elements[0].value == 0
        assert table.elements[999].value == 999
        assert module.materializer.value_list.rebuilt_constants == 1

    def test_composite_shared_by_two_slots(self):
        b = ModuleBuilder()
        b.types(CONSTANT_TYPES)
        b.global_var(T_PAIR_PTR, init_id=2)
        b.global_var(T_PAIR_PTR, init_id=3)
        with b.block(BlockId.CONSTANTS):
            b.record(ConstantsCode.SETTYPE, [T_PAIR])
            b.record(ConstantsCode.AGGREGATE, [4, 4])
            b.record(ConstantsCode.AGGREGATE, [4, 4])
            b.record(ConstantsCode.SETTYPE, [T_I32])
            b.record(ConstantsCode.INTEGER, [sr(7)])
        first, second = parse_bitcode_file(b.finish()).global_variables

        assert [e.value for e in first.initializer.elements] == [7, 7]
        assert [e.value for e in second.initializer.elements] == [7, 7]
        assert first.initializer is second.initializer

    def test_resolution_is_order_independent(self):
        """
        Composites that share placeholders, nest inside each other and feed a
        constant expression all resolve to the final definitions.
        """
        b = ModuleBuilder()
        b.types(CONSTANT_TYPES)
        b.global_var(T_PAIR_PTR, init_id=4)          # 0 @first
        b.global_var(T_PAIR_PTR, init_id=5)          # 1 @second
        b.global_var(T_PAIR_PAIR_PTR, init_id=6)     # 2 @nested
        b.global_var(T_PAIR_PTR, init_id=7)          # 3 @chosen
        with b.block(BlockId.CONSTANTS):
            b.record(ConstantsCode.SETTYPE, [T_PAIR])
            b.record(ConstantsCode.AGGREGATE, [9, 10])       # 4 {3, 4}
            b.record(ConstantsCode.AGGREGATE, [9, 10])       # 5 same as 4
            b.record(ConstantsCode.SETTYPE, [T_PAIR_PAIR])
            b.record(ConstantsCode.AGGREGATE, [4, 8])        # 6 [{3, 4}, {4, 3}]
            b.record(ConstantsCode.SETTYPE, [T_PAIR])
            b.record(ConstantsCode.CE_SELECT, [11, 8, 4])    # 7 select i1 0, {4, 3}, {3, 4}
            b.record(ConstantsCode.AGGREGATE, [10, 9])       # 8 {4, 3}
            b.record(ConstantsCode.SETTYPE, [T_I32])
            b.record(ConstantsCode.INTEGER, [sr(3)])         # 9
            b.record(ConstantsCode.INTEGER, [sr(4)])         # 10
            b.record(ConstantsCode.SETTYPE, [T_I1])
            b.record(ConstantsCode.INTEGER, [sr(0)])         # 11
        module = get_lazy_bitcode_module(b.finish())
        value_list = module.materializer.value_list
        first, second, nested, chosen = (gv.initializer for gv in module.global_variables)

        assert [e.value for e in first.elements] == [3, 4]
        assert second is first
        assert nested.elements[0] is first
        assert [e.value for e in nested.elements[1].elements] == [4, 3]

        assert isinstance(chosen, ConstantExpr)
        assert chosen.opcode == Opcode.SELECT
        condition, if_true, if_false = chosen.operands
        assert condition.value == 0
        assert if_true is nested.elements[1]
        assert if_false is first

        assert [value_list[i] for i in range(4, 9)] == [first, first, nested, chosen, if_true]
        assert not any(isinstance(value, ConstantPlaceholder) for value in value_list)

    def test_reference_past_end_of_block(self):
        b = ModuleBuilder()
        b.types(CONSTANT_TYPES)
        with b.block(BlockId.CONSTANTS):
            b.record(ConstantsCode.SETTYPE, [T_PAIR])
            b.record(ConstantsCode.AGGREGATE, [5, 6])
        with pytest.raises(UnresolvedForwardReference) as exc:
            parse_bitcode_file(b.finish())
        assert exc.value.kind == ErrorKind.INVALID_CONSTANT_REFERENCE


class TestConstantExpressions:

    def test_bitcast_of_global(self):
        b = ModuleBuilder()
        b.types(CONSTANT_TYPES)
        b.global_var(T_I32_PTR, init_id=2)      # 0 @target
        b.global_var(T_I8_PTR_PTR, init_id=3)   # 1 @alias_ptr
        with b.block(BlockId.CONSTANTS):
            b.record(ConstantsCode.SETTYPE, [T_I32])
            b.record(ConstantsCode.INTEGER, [sr(7)])
            b.record(ConstantsCode.SETTYPE, [T_I8_PTR])
            b.record(ConstantsCode.CE_CAST, [CastCode.BITCAST, T_I32_PTR, 0])
        target, pointer = parse_bitcode_file(b.finish()).global_variables
        expr = pointer.initializer
        assert isinstance(expr, ConstantExpr)
        assert expr.opcode == Opcode.BITCAST
        assert expr.operands[0] is target

    def test_unknown_cast_opcode_reads_as_undef(self):
        b = ModuleBuilder()
        b.types(CONSTANT_TYPES)
        b.global_var(T_I32_PTR)
        b.global_var(T_I8_PTR_PTR, init_id=2)
        with b.block(BlockId.CONSTANTS):
            b.record(ConstantsCode.SETTYPE, [T_I8_PTR])
            b.record(ConstantsCode.CE_CAST, [40, T_I32_PTR, 0])
        module = parse_bitcode_file(b.finish())
        assert isinstance(module.global_variables[1].initializer, UndefValue)


class TestBlockAddress:

    def build(self):
        b = ModuleBuilder()
        b.types(CONSTANT_TYPES)
        b.function(T_VOID_FN_PTR)                 # 0 @f
        b.global_var(T_I8_PTR_PTR, init_id=2)     # 1 @target
        with b.block(BlockId.CONSTANTS):
            b.record(ConstantsCode.SETTYPE, [T_I8_PTR])
            b.record(ConstantsCode.BLOCKADDRESS, [T_VOID_FN_PTR, 0, 1])
        b.symbols({0: "f", 1: "target"})
        with b.block(BlockId.FUNCTION):
            b.record(FunctionCode.DECLAREBLOCKS, [2])
            b.record(FunctionCode.INST_BR, [1])
            b.record(FunctionCode.INST_RET, [])
        return b.finish()

    def test_placeholder_until_body_is_read(self):
        module = get_lazy_bitcode_module(self.build())
        assert len(module.global_variables) == 2
        fn = module.get_function("f")
        module.materialize(fn)

        assert len(module.global_variables) == 1
        address = module.get_global_variable("target").initializer
        assert isinstance(address, BlockAddress)
        assert address.function is fn
        assert address.block is fn.blocks[1]

    def test_block_index_out_of_range(self):
        b = ModuleBuilder()
        b.types(CONSTANT_TYPES)
        b.function(T_VOID_FN_PTR)
        b.global_var(T_I8_PTR_PTR, init_id=2)
        with b.block(BlockId.CONSTANTS):
            b.record(ConstantsCode.SETTYPE, [T_I8_PTR])
            b.record(ConstantsCode.BLOCKADDRESS, [T_VOID_FN_PTR, 0, 7])
        with b.block(BlockId.FUNCTION):
            b.record(FunctionCode.DECLAREBLOCKS, [1])
            b.record(FunctionCode.INST_RET, [])
        with pytest.raises(FunctionBodyError) as exc:
            parse_bitcode_file(b.finish())
        assert exc.value.kind == ErrorKind.INVALID_ID
