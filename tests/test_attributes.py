"""
Tests for the parameter attribute table and the attribute word encoding.
"""

import pytest

from bcreader import (
    DuplicateDefinitionError, ErrorKind, ForwardReferenceError, StructuralError,
    parse_bitcode_file,
)
from bcreader.attributes import (
    FUNCTION_INDEX, AttributeSlot, decode_llvm_attributes, encode_llvm_attributes,
)
from bcreader.codes import AttributeCode, BlockId
from builders import ModuleBuilder, STANDARD_TYPES, T_BINARY_FN_PTR


NOUNWIND = 1 << 5
READONLY = 1 << 10
UWTABLE = 1 << 30


def module_with_attributes(entries, paramattrs, code=AttributeCode.ENTRY_OLD):
    b = ModuleBuilder()
    with b.block(BlockId.PARAMATTR):
        for fields in entries:
            b.record(code, fields)
    b.types(STANDARD_TYPES)
    for index in paramattrs:
        b.function(T_BINARY_FN_PTR, is_proto=True, paramattr=index)
    return b


class TestAttributeEncoding:

    def test_decode_flags_and_alignment(self):
        assert decode_llvm_attributes(NOUNWIND | (8 << 16)) == (NOUNWIND, 8, 0)

    def test_decode_high_attribute_bits(self):
        # attribute bits from 21 up are stored 11 bits higher
        flags, alignment, stack_alignment = decode_llvm_attributes(UWTABLE << 11)
        assert flags == UWTABLE
        assert alignment == 0
        assert stack_alignment == 0

    def test_decode_stack_alignment(self):
        flags, _, stack_alignment = decode_llvm_attributes(5 << 37)
        assert flags == 0
        assert stack_alignment == 16

    def test_encode_inverts_decode(self):
        slot = AttributeSlot(FUNCTION_INDEX, NOUNWIND | READONLY | UWTABLE, 4, 16)
        encoded = encode_llvm_attributes(slot)
        assert decode_llvm_attributes(encoded) == (slot.flags, 4, 16)

    def test_slot_names(self):
        slot = AttributeSlot(1, NOUNWIND | READONLY, alignment=8)
        assert slot.names == ["nounwind", "readonly"]
        assert repr(slot) == "nounwind readonly align 8"


class TestAttributeTable:

    def test_function_and_parameter_slots(self):
        b = module_with_attributes([[FUNCTION_INDEX, NOUNWIND, 1, 8 << 16]], [1])
        fn = parse_bitcode_file(b.finish()).functions[0]

        assert fn.attributes.function_attributes.names == ["nounwind"]
        assert fn.attributes.param_attributes(0).alignment == 8
        assert fn.attributes.param_attributes(1) is None
        assert fn.attributes.return_attributes is None

    def test_zero_means_no_attributes(self):
        b = module_with_attributes([[FUNCTION_INDEX, NOUNWIND]], [0])
        assert parse_bitcode_file(b.finish()).functions[0].attributes is None

    def test_identical_sets_are_shared(self):
        b = module_with_attributes([[FUNCTION_INDEX, NOUNWIND], [FUNCTION_INDEX, NOUNWIND]], [1, 2])
        first, second = parse_bitcode_file(b.finish()).functions
        assert first.attributes is second.attributes

    def test_index_out_of_range(self):
        b = module_with_attributes([[FUNCTION_INDEX, NOUNWIND]], [3])
        with pytest.raises(ForwardReferenceError) as exc:
            parse_bitcode_file(b.finish())
        assert exc.value.kind == ErrorKind.INVALID_ID

    def test_odd_entry_record(self):
        b = module_with_attributes([[FUNCTION_INDEX]], [])
        with pytest.raises(StructuralError) as exc:
            parse_bitcode_file(b.finish())
        assert exc.value.kind == ErrorKind.INVALID_RECORD

    def test_attribute_group_entries_are_rejected(self):
        b = module_with_attributes([[1]], [], code=AttributeCode.ENTRY)
        with pytest.raises(StructuralError) as exc:
            parse_bitcode_file(b.finish())
        assert exc.value.kind == ErrorKind.INVALID_RECORD

    def test_second_attribute_block(self):
        b = module_with_attributes([[FUNCTION_INDEX, NOUNWIND]], [])
        with b.block(BlockId.PARAMATTR):
            b.record(AttributeCode.ENTRY_OLD, [FUNCTION_INDEX, NOUNWIND])
        with pytest.raises(DuplicateDefinitionError):
            parse_bitcode_file(b.finish())
