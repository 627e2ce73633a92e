"""
Tests for the type table, in the current format and the legacy format
that allows arbitrary forward references.
"""

import pytest

from bcreader import ErrorKind, StructuralError, DuplicateDefinitionError, parse_bitcode_file
from bcreader.codes import BlockId, TypeCode, TYPE_CODE_STRUCT_OLD, TST_CODE_ENTRY
from ir_nodes import (
    ArrayType, FunctionType, IntegerType, LiteralStructType, PointerType, StructType,
    VectorType, DOUBLE, FLOAT, HALF, VOID,
)
from builders import ModuleBuilder, chars


def module_with_types(records, global_types=()):
    """A module whose globals have the given pointer type ids."""
    b = ModuleBuilder()
    b.types(records)
    for type_id in global_types:
        b.global_var(type_id)
    return parse_bitcode_file(b.finish())


def module_with_raw_type_block(block_id, records, global_types=()):
    b = ModuleBuilder()
    with b.block(block_id):
        for code, fields in records:
            b.record(code, fields)
    for type_id in global_types:
        b.global_var(type_id)
    return b


class TestTypeTable:
    """TYPE_BLOCK_ID_NEW"""

    def test_primitive_and_derived_types(self):
        module = module_with_types([
            (TypeCode.INTEGER, [64]),          # 0
            (TypeCode.HALF, []),               # 1
            (TypeCode.FLOAT, []),              # 2
            (TypeCode.DOUBLE, []),             # 3
            (TypeCode.ARRAY, [4, 0]),          # 4 [4 x i64]
            (TypeCode.VECTOR, [2, 2]),         # 5 <2 x float>
            (TypeCode.STRUCT_ANON, [1, 0, 3]), # 6 <{ i64, double }>
            (TypeCode.VOID, []),               # 7
            (TypeCode.FUNCTION, [1, 7, 0]),    # 8 void (i64, ...)
            (TypeCode.POINTER, [4, 0]),        # 9
            (TypeCode.POINTER, [5, 0]),        # 10
            (TypeCode.POINTER, [6, 0]),        # 11
            (TypeCode.POINTER, [1, 0]),        # 12
            (TypeCode.POINTER, [3, 3]),        # 13 double addrspace(3)*
        ], global_types=[9, 10, 11, 12, 13])
        types = [gv.value_type for gv in module.global_variables]
        assert types[0] == ArrayType(IntegerType(64), 4)
        assert types[1] == VectorType(FLOAT, 2)
        assert types[2] == LiteralStructType((IntegerType(64), DOUBLE), packed=True)
        assert types[3] == HALF
        assert types[4] == DOUBLE
        assert module.global_variables[4].address_space == 3

    def test_function_type(self):
        b = ModuleBuilder()
        b.types([
            (TypeCode.INTEGER, [64]),
            (TypeCode.VOID, []),
            (TypeCode.FUNCTION, [1, 1, 0]),
            (TypeCode.POINTER, [2, 0]),
        ])
        b.function(3, is_proto=True)
        fn = parse_bitcode_file(b.finish()).functions[0]
        assert fn.function_type == FunctionType(VOID, (IntegerType(64),), var_arg=True)

    def test_named_struct_forward_reference(self):
        module = module_with_types([
            (TypeCode.INTEGER, [32]),          # 0
            (TypeCode.POINTER, [2, 0]),        # 1 %node*
            (TypeCode.STRUCT_NAME, chars("node")),
            (TypeCode.STRUCT_NAMED, [0, 0, 1]),  # 2 %node = { i32, %node* }
            (TypeCode.POINTER, [2, 0]),        # 3
        ], global_types=[3])
        node = module.global_variables[0].value_type
        assert isinstance(node, StructType)
        assert node.name == "node"
        assert not node.packed
        assert node.elements[0] == IntegerType(32)
        assert isinstance(node.elements[1], PointerType)
        assert node.elements[1].pointee is node

    def test_opaque_struct(self):
        module = module_with_types([
            (TypeCode.STRUCT_NAME, chars("handle")),
            (TypeCode.OPAQUE, [0]),
            (TypeCode.POINTER, [0, 0]),
        ], global_types=[1])
        handle = module.global_variables[0].value_type
        assert handle.name == "handle"
        assert handle.is_opaque

    def test_forward_reference_to_non_struct(self):
        b = ModuleBuilder()
        b.types([
            (TypeCode.POINTER, [1, 0]),
            (TypeCode.INTEGER, [32]),
        ])
        with pytest.raises(StructuralError) as exc:
            parse_bitcode_file(b.finish())
        assert exc.value.kind == ErrorKind.INVALID_TYPE_TABLE

    def test_reference_past_numentry(self):
        b = ModuleBuilder()
        b.types([(TypeCode.POINTER, [5, 0])])
        with pytest.raises(StructuralError) as exc:
            parse_bitcode_file(b.finish())
        assert exc.value.kind == ErrorKind.INVALID_TYPE

    def test_numentry_mismatch(self):
        b = module_with_raw_type_block(BlockId.TYPE_NEW, [
            (TypeCode.NUMENTRY, [3]),
            (TypeCode.INTEGER, [32]),
            (TypeCode.INTEGER, [8]),
        ])
        with pytest.raises(StructuralError) as exc:
            parse_bitcode_file(b.finish())
        assert exc.value.kind == ErrorKind.INVALID_TYPE_TABLE

    def test_more_types_than_numentry(self):
        b = module_with_raw_type_block(BlockId.TYPE_NEW, [
            (TypeCode.NUMENTRY, [1]),
            (TypeCode.INTEGER, [32]),
            (TypeCode.INTEGER, [8]),
        ])
        with pytest.raises(StructuralError):
            parse_bitcode_file(b.finish())

    def test_second_numentry(self):
        b = module_with_raw_type_block(BlockId.TYPE_NEW, [
            (TypeCode.NUMENTRY, [1]),
            (TypeCode.NUMENTRY, [1]),
            (TypeCode.INTEGER, [32]),
        ])
        with pytest.raises(DuplicateDefinitionError):
            parse_bitcode_file(b.finish())

    def test_unknown_type_code(self):
        b = module_with_raw_type_block(BlockId.TYPE_NEW, [
            (TypeCode.NUMENTRY, [1]),
            (99, []),
        ])
        with pytest.raises(StructuralError) as exc:
            parse_bitcode_file(b.finish())
        assert exc.value.kind == ErrorKind.INVALID_VALUE

    def test_second_type_table(self):
        b = ModuleBuilder()
        b.types([(TypeCode.INTEGER, [32])])
        b.types([(TypeCode.INTEGER, [32])])
        with pytest.raises(DuplicateDefinitionError) as exc:
            parse_bitcode_file(b.finish())
        assert exc.value.kind == ErrorKind.INVALID_MULTIPLE_BLOCKS


class TestLegacyTypeTable:
    """TYPE_BLOCK_ID_OLD, decoded over repeated passes"""

    def test_self_referencing_struct(self):
        b = module_with_raw_type_block(BlockId.TYPE_OLD, [
            (TypeCode.NUMENTRY, [3]),
            (TypeCode.POINTER, [1]),                 # 0 %list*
            (TYPE_CODE_STRUCT_OLD, [0, 2, 0]),       # 1 %list = { i32, %list* }
            (TypeCode.INTEGER, [32]),                # 2
        ])
        with b.block(BlockId.TYPE_SYMTAB_OLD):
            b.record(TST_CODE_ENTRY, [1] + chars("list"))
        b.global_var(0)
        module = parse_bitcode_file(b.finish())
        struct = module.global_variables[0].value_type
        assert isinstance(struct, StructType)
        assert struct.name == "list"
        assert struct.elements[0] == IntegerType(32)
        assert struct.elements[1].pointee is struct

    def test_old_function_type(self):
        b = module_with_raw_type_block(BlockId.TYPE_OLD, [
            (TypeCode.NUMENTRY, [4]),
            (TypeCode.POINTER, [1]),                 # 0
            (TypeCode.FUNCTION_OLD, [0, 0, 2, 3]),   # 1 i32 (float)
            (TypeCode.INTEGER, [32]),                # 2
            (TypeCode.FLOAT, []),                    # 3
        ])
        b.function(0, is_proto=True)
        module = parse_bitcode_file(b.finish())
        assert module.functions[0].function_type == FunctionType(IntegerType(32), (FLOAT,))

    def test_current_function_type_in_old_table(self):
        b = module_with_raw_type_block(BlockId.TYPE_OLD, [
            (TypeCode.NUMENTRY, [4]),
            (TypeCode.POINTER, [1]),                 # 0
            (TypeCode.FUNCTION, [1, 2, 3, 2]),       # 1 i32 (double, i32, ...)
            (TypeCode.INTEGER, [32]),                # 2
            (TypeCode.DOUBLE, []),                   # 3
        ])
        b.function(0, is_proto=True)
        module = parse_bitcode_file(b.finish())
        assert module.functions[0].function_type == FunctionType(
            IntegerType(32), (DOUBLE, IntegerType(32)), True)

    def test_function_type_without_params(self):
        b = module_with_raw_type_block(BlockId.TYPE_OLD, [
            (TypeCode.NUMENTRY, [3]),
            (TypeCode.INTEGER, [32]),                # 0
            (TypeCode.FUNCTION, [0, 0]),             # 1 i32 ()
            (TypeCode.POINTER, [1]),                 # 2
        ])
        b.function(2, is_proto=True)
        module = parse_bitcode_file(b.finish())
        assert module.functions[0].function_type == FunctionType(IntegerType(32), ())

    def test_short_function_record(self):
        b = module_with_raw_type_block(BlockId.TYPE_OLD, [
            (TypeCode.NUMENTRY, [1]),
            (TypeCode.FUNCTION, [0]),
        ])
        with pytest.raises(StructuralError) as exc:
            parse_bitcode_file(b.finish())
        assert exc.value.kind == ErrorKind.INVALID_TYPE_TABLE

    def test_opaque_entry(self):
        b = module_with_raw_type_block(BlockId.TYPE_OLD, [
            (TypeCode.NUMENTRY, [2]),
            (TypeCode.OPAQUE, []),
            (TypeCode.POINTER, [0]),
        ])
        b.global_var(1)
        module = parse_bitcode_file(b.finish())
        assert module.global_variables[0].value_type.is_opaque

    def test_cycle_without_progress(self):
        b = module_with_raw_type_block(BlockId.TYPE_OLD, [
            (TypeCode.NUMENTRY, [2]),
            (TypeCode.POINTER, [1]),
            (TypeCode.POINTER, [0]),
        ])
        with pytest.raises(StructuralError) as exc:
            parse_bitcode_file(b.finish())
        assert exc.value.kind == ErrorKind.INVALID_TYPE_TABLE

    def test_symtab_entry_out_of_range(self):
        b = module_with_raw_type_block(BlockId.TYPE_OLD, [
            (TypeCode.NUMENTRY, [1]),
            (TypeCode.INTEGER, [32]),
        ])
        with b.block(BlockId.TYPE_SYMTAB_OLD):
            b.record(TST_CODE_ENTRY, [4] + chars("x"))
        with pytest.raises(StructuralError):
            parse_bitcode_file(b.finish())
