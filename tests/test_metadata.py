"""
Tests for METADATA blocks, metadata kinds, instruction attachments and
debug locations.
"""

import pytest

from bcreader import (
    DuplicateDefinitionError, ErrorKind, FunctionBodyError, StructuralError, parse_bitcode_file,
)
from bcreader.codes import BinopCode, BlockId, ConstantsCode, FunctionCode, MetadataCode
from ir_nodes import ConstantInt, MDNode, MDString
from builders import ModuleBuilder, STANDARD_TYPES, T_I32, T_I32_FN_PTR, T_I32_PTR, T_METADATA, chars, sr


def metadata_module(records):
    """@g = global i32 7 (values 0 and 1), then one METADATA block."""
    b = ModuleBuilder()
    b.types(STANDARD_TYPES)
    b.global_var(T_I32_PTR, init_id=1)
    with b.block(BlockId.CONSTANTS):
        b.record(ConstantsCode.SETTYPE, [T_I32])
        b.record(ConstantsCode.INTEGER, [sr(7)])
    with b.block(BlockId.METADATA):
        for code, fields in records:
            b.record(code, fields)
    return b


def named(name, md_ids):
    return [(MetadataCode.NAME, chars(name)), (MetadataCode.NAMED_NODE, md_ids)]


class TestMetadataBlock:

    def test_strings_and_nodes(self):
        b = metadata_module([
            (MetadataCode.STRING, chars("hello")),                  # !0
            (MetadataCode.NODE, [T_METADATA, 0, T_I32, 1]),         # !1 = !{!"hello", i32 7}
        ] + named("greeting", [1]))
        module = parse_bitcode_file(b.finish())

        node = module.named_metadata["greeting"].operands[0]
        assert isinstance(node, MDNode)
        assert isinstance(node.operands[0], MDString)
        assert node.operands[0].string == "hello"
        assert isinstance(node.operands[1], ConstantInt)
        assert node.operands[1].value == 7

    def test_forward_reference_is_replaced(self):
        b = metadata_module([
            (MetadataCode.NODE, [T_METADATA, 1]),                   # !0 = !{!1}
            (MetadataCode.STRING, chars("later")),                  # !1
        ] + named("fwd", [0]))
        module = parse_bitcode_file(b.finish())

        node = module.named_metadata["fwd"].operands[0]
        assert not node.temporary
        assert isinstance(node.operands[0], MDString)
        assert node.operands[0].string == "later"

    def test_node_cycle(self):
        b = metadata_module([
            (MetadataCode.NODE, [T_METADATA, 1]),                   # !0 = !{!1}
            (MetadataCode.NODE, [T_METADATA, 0]),                   # !1 = !{!0}
        ] + named("cycle", [0]))
        module = parse_bitcode_file(b.finish())

        first = module.named_metadata["cycle"].operands[0]
        second = first.operands[0]
        assert isinstance(second, MDNode)
        assert second.operands[0] is first

    def test_odd_node_record(self):
        b = metadata_module([(MetadataCode.NODE, [T_METADATA])])
        with pytest.raises(StructuralError) as exc:
            parse_bitcode_file(b.finish())
        assert exc.value.kind == ErrorKind.INVALID_RECORD

    def test_name_without_named_node(self):
        b = metadata_module([
            (MetadataCode.NAME, chars("lonely")),
            (MetadataCode.STRING, chars("x")),
        ])
        with pytest.raises(StructuralError):
            parse_bitcode_file(b.finish())

    def test_named_operand_must_be_node(self):
        b = metadata_module([(MetadataCode.STRING, chars("x"))] + named("bad", [0]))
        with pytest.raises(StructuralError):
            parse_bitcode_file(b.finish())


class TestMetadataKinds:

    def test_custom_kind_registered(self):
        b = metadata_module([(MetadataCode.KIND, [20] + chars("custom"))])
        module = parse_bitcode_file(b.finish())
        assert module.md_kinds["custom"] == 5
        assert module.md_kinds["dbg"] == 0

    def test_conflicting_kind_records(self):
        b = metadata_module([
            (MetadataCode.KIND, [20] + chars("custom")),
            (MetadataCode.KIND, [20] + chars("other")),
        ])
        with pytest.raises(DuplicateDefinitionError) as exc:
            parse_bitcode_file(b.finish())
        assert exc.value.kind == ErrorKind.CONFLICTING_METADATA_KIND_RECORDS


def function_with_metadata(body):
    """
    define i32 @f() with metadata !0 = !"note", !1 = !{!0} and kind 3 "note".
    Value ids: 0 @f, 1 i32 1; the first instruction is value 2.
    """
    b = ModuleBuilder()
    b.types(STANDARD_TYPES)
    b.function(T_I32_FN_PTR)
    with b.block(BlockId.CONSTANTS):
        b.record(ConstantsCode.SETTYPE, [T_I32])
        b.record(ConstantsCode.INTEGER, [sr(1)])
    with b.block(BlockId.METADATA):
        b.record(MetadataCode.STRING, chars("note"))
        b.record(MetadataCode.NODE, [T_METADATA, 0])
        b.record(MetadataCode.KIND, [3] + chars("note"))
    b.symbols({0: "f"})
    with b.block(BlockId.FUNCTION):
        body(b)
    return b.finish()


class TestAttachments:

    def test_attachment(self):
        def body(b):
            b.record(FunctionCode.DECLAREBLOCKS, [1])
            b.record(FunctionCode.INST_RET, [1])
            with b.block(BlockId.METADATA_ATTACHMENT):
                b.record(MetadataCode.ATTACHMENT, [0, 3, 1])

        fn = parse_bitcode_file(function_with_metadata(body)).get_function("f")
        ret = fn.blocks[0].instructions[0]
        node = ret.get_metadata("note")
        assert isinstance(node, MDNode)
        assert node.operands[0].string == "note"

    def test_attachment_with_unknown_kind(self):
        def body(b):
            b.record(FunctionCode.DECLAREBLOCKS, [1])
            b.record(FunctionCode.INST_RET, [1])
            with b.block(BlockId.METADATA_ATTACHMENT):
                b.record(MetadataCode.ATTACHMENT, [0, 9, 1])

        with pytest.raises(FunctionBodyError) as exc:
            parse_bitcode_file(function_with_metadata(body))
        assert exc.value.kind == ErrorKind.INVALID_ID

    def test_attachment_to_missing_instruction(self):
        def body(b):
            b.record(FunctionCode.DECLAREBLOCKS, [1])
            b.record(FunctionCode.INST_RET, [1])
            with b.block(BlockId.METADATA_ATTACHMENT):
                b.record(MetadataCode.ATTACHMENT, [4, 3, 1])

        with pytest.raises(FunctionBodyError):
            parse_bitcode_file(function_with_metadata(body))


class TestDebugLocations:

    def test_location_and_repeat(self):
        def body(b):
            b.record(FunctionCode.DECLAREBLOCKS, [1])
            b.record(FunctionCode.INST_BINOP, [1, 1, BinopCode.ADD])
            b.record(FunctionCode.DEBUG_LOC, [10, 3, 2, 0])
            b.record(FunctionCode.INST_RET, [2])
            b.record(FunctionCode.DEBUG_LOC_AGAIN, [])

        fn = parse_bitcode_file(function_with_metadata(body)).get_function("f")
        add, ret = fn.blocks[0].instructions
        assert add.debug_loc.line == 10
        assert add.debug_loc.col == 3
        assert isinstance(add.debug_loc.scope.node, MDNode)
        assert add.debug_loc.inlined_at is None
        assert ret.debug_loc.same_as(add.debug_loc)

    def test_repeat_without_location(self):
        def body(b):
            b.record(FunctionCode.DECLAREBLOCKS, [1])
            b.record(FunctionCode.INST_RET, [1])
            b.record(FunctionCode.DEBUG_LOC_AGAIN, [])

        with pytest.raises(FunctionBodyError) as exc:
            parse_bitcode_file(function_with_metadata(body))
        assert exc.value.kind == ErrorKind.INVALID_RECORD

    def test_scope_never_defined(self):
        def body(b):
            b.record(FunctionCode.DECLAREBLOCKS, [1])
            b.record(FunctionCode.INST_RET, [1])
            b.record(FunctionCode.DEBUG_LOC, [1, 1, 9, 0])

        with pytest.raises(FunctionBodyError) as exc:
            parse_bitcode_file(function_with_metadata(body))
        assert exc.value.kind == ErrorKind.NEVER_RESOLVED_VALUE_FOUND_IN_FUNCTION
