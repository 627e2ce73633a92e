"""
Bitcode Writer

Serializes a fully materialized Module back into 3.0 bitcode. The output is
what the reader consumes:

    - one MODULE block holding BLOCKINFO, PARAMATTR, TYPE_NEW, the module
      records, module constants, metadata, metadata kinds and the module
      value symbol table, followed by one FUNCTION block per defined function
    - operand ids are absolute; an operand whose id is not yet defined at
      the instruction being written is followed by its type id

ValueEnumerator assigns the ids: globals, functions and aliases first, then
module constants (initializers, aliasees, constants named by metadata), then
per function: arguments, function constants and non-void instructions.
Constants are always numbered after their operands. Metadata nodes are
numbered before their operands, so node records may refer forward.
"""

import logging
from typing import Dict, List, Optional, Tuple

from bitstream import Abbrev, AbbrevOp, BitstreamWriter, Encoding, is_char6, wrap_bitcode
from bcreader.attributes import AttributeSet, encode_llvm_attributes
from bcreader.codes import (
    AttributeCode, BinopCode, BlockId, ConstantsCode, FunctionCode, LandingPadClause,
    MetadataCode, ModuleCode, OrderingCode, SynchScopeCode, TypeCode, ValueSymtabCode,
    LINKAGE_CODES, TLS_MODE_CODES, VISIBILITY_CODES, encode_alignment, encode_sign_rotated,
)
from bcreader.constants import encode_binop_flags
from ir_nodes import (
    Argument, ArrayType, BasicBlock, BlockAddress, Constant, ConstantAggregate, ConstantExpr,
    ConstantFP, ConstantInt, ConstantNull, FunctionType, Function, GlobalAlias, GlobalValue,
    GlobalVariable, InlineAsm, Instruction, IntegerType, LiteralStructType, MDNode, MDString,
    Module, Opcode, PointerType, PrimitiveType, StructType, Type, UndefValue, Value, VectorType,
    BINARY_OPS, CAST_OPS, FP_BINARY_OPS, LABEL, METADATA, ORDERINGS, RMW_OPS, VOID,
    DOUBLE, FLOAT, FP128, HALF, PPC_FP128, X86_FP80, X86_MMX,
)

logger = logging.getLogger(__name__)


_PRIMITIVE_CODES = {
    VOID: TypeCode.VOID,
    HALF: TypeCode.HALF,
    FLOAT: TypeCode.FLOAT,
    DOUBLE: TypeCode.DOUBLE,
    X86_FP80: TypeCode.X86_FP80,
    FP128: TypeCode.FP128,
    PPC_FP128: TypeCode.PPC_FP128,
    LABEL: TypeCode.LABEL,
    METADATA: TypeCode.METADATA,
    X86_MMX: TypeCode.X86_MMX,
}

_BINOP_CODES = {opcode: BinopCode(i) for i, opcode in enumerate(BINARY_OPS)}
_BINOP_CODES.update({fp: _BINOP_CODES[int_op] for int_op, fp in FP_BINARY_OPS.items()})

_CAST_CODES = {opcode: i for i, opcode in enumerate(CAST_OPS)}

# Abbreviation ids registered through BLOCKINFO
VST_ENTRY_8_ABBREV = 4
VST_ENTRY_7_ABBREV = 5
VST_ENTRY_6_ABBREV = 6
VST_BBENTRY_6_ABBREV = 7

CONSTANTS_SETTYPE_ABBREV = 4
CONSTANTS_INTEGER_ABBREV = 5
CONSTANTS_CE_CAST_ABBREV = 6
CONSTANTS_NULL_ABBREV = 7

FUNCTION_INST_LOAD_ABBREV = 4
FUNCTION_INST_BINOP_ABBREV = 5
FUNCTION_INST_BINOP_FLAGS_ABBREV = 6
FUNCTION_INST_CAST_ABBREV = 7
FUNCTION_INST_RET_VOID_ABBREV = 8
FUNCTION_INST_RET_VAL_ABBREV = 9
FUNCTION_INST_UNREACHABLE_ABBREV = 10


def _chars(text: str) -> List[int]:
    return list(text.encode("utf-8", errors="surrogateescape"))


def _ordering_code(name: Optional[str]) -> int:
    return ORDERINGS.index(name or "notatomic")


def _scope_code(name: Optional[str]) -> int:
    if name == "singlethread":
        return SynchScopeCode.SINGLETHREAD
    return SynchScopeCode.CROSSTHREAD


def _is_metadata(value: Optional[Value]) -> bool:
    return isinstance(value, (MDNode, MDString))


# ============================================================================
# Value Enumeration
# ============================================================================

class ValueEnumerator:
    """Numbers the types, values, metadata and attribute sets of a module."""

    def __init__(self, module: Module):
        self.module = module
        self.types: List[Type] = []
        self.type_ids: Dict[Type, int] = {}
        self._visiting: set = set()

        self.values: List[Value] = []
        self.value_ids: Dict[Value, int] = {}
        self.mds: List[Value] = []
        self.md_ids: Dict[Value, int] = {}
        self.attribute_sets: List[AttributeSet] = []
        self.attribute_ids: Dict[AttributeSet, int] = {}

        # Per-function state, set by incorporate_function
        self.local_mds: List[MDNode] = []
        self.block_ids: Dict[BasicBlock, int] = {}
        self.first_func_constant = 0
        self.first_inst_id = 0

        for gv in module.global_variables:
            self._add_value(gv)
        for fn in module.functions:
            self._add_value(fn)
            self._enumerate_attributes(fn.attributes)
        for alias in module.aliases:
            self._add_value(alias)

        self.first_constant = len(self.values)
        for gv in module.global_variables:
            if gv.initializer is not None:
                self.enumerate_value(gv.initializer)
        for alias in module.aliases:
            if alias.aliasee is not None:
                self.enumerate_value(alias.aliasee)

        for named in module.named_metadata.values():
            for node in named.operands:
                self.enumerate_metadata(node)

        for fn in module.functions:
            for arg in fn.args:
                self.enumerate_type(arg.type)
            for inst in fn.instructions():
                self._enumerate_instruction(inst)

        self.num_module_values = len(self.values)
        self.num_module_mds = len(self.mds)
        logger.debug("enumerated %d types, %d module values, %d metadata",
                     len(self.types), self.num_module_values, self.num_module_mds)

    # ------------------------------------------------------------------------
    # Types
    # ------------------------------------------------------------------------

    def enumerate_type(self, type: Type) -> None:
        if type in self.type_ids or type in self._visiting:
            return
        # a named struct may be referenced before its record
        if isinstance(type, StructType):
            self._visiting.add(type)
        for subtype in self._subtypes(type):
            self.enumerate_type(subtype)
        self._visiting.discard(type)
        if type not in self.type_ids:
            self.type_ids[type] = len(self.types)
            self.types.append(type)

    @staticmethod
    def _subtypes(type: Type) -> Tuple[Type, ...]:
        if isinstance(type, PointerType):
            return (type.pointee,)
        if isinstance(type, (ArrayType, VectorType)):
            return (type.element,)
        if isinstance(type, FunctionType):
            return (type.return_type,) + tuple(type.params)
        if isinstance(type, (StructType, LiteralStructType)):
            return tuple(type.elements or ())
        return ()

    def type_id(self, type: Type) -> int:
        try:
            return self.type_ids[type]
        except KeyError:
            raise ValueError(f"type {type!r} was not enumerated") from None

    # ------------------------------------------------------------------------
    # Values
    # ------------------------------------------------------------------------

    def _add_value(self, value: Value) -> None:
        self.enumerate_type(value.type)
        self.value_ids[value] = len(self.values)
        self.values.append(value)

    def enumerate_value(self, value: Value) -> None:
        if value in self.value_ids:
            return
        if isinstance(value, Constant) and not isinstance(value, GlobalValue):
            for op in value.operands:
                if op is not None and not isinstance(op, BasicBlock):
                    self.enumerate_value(op)
        self._add_value(value)

    def _enumerate_operand_type(self, value: Value) -> None:
        self.enumerate_type(value.type)
        if (isinstance(value, Constant) and not isinstance(value, GlobalValue)
                and value not in self.value_ids):
            for op in value.operands:
                if op is not None and not isinstance(op, BasicBlock):
                    self._enumerate_operand_type(op)

    def value_id(self, value: Value) -> int:
        try:
            return self.value_ids[value]
        except KeyError:
            raise ValueError(f"{value!r} was not enumerated") from None

    def _enumerate_instruction(self, inst: Instruction) -> None:
        for op in inst.operands:
            if op is None:
                continue
            if isinstance(op, MDNode) and op.function_local:
                self._enumerate_local_md_types(op)
            elif _is_metadata(op):
                self.enumerate_metadata(op)
            else:
                self._enumerate_operand_type(op)
        self.enumerate_type(inst.type)
        self._enumerate_attributes(inst.attrs.get("attributes"))
        for handle in inst.metadata.values():
            self.enumerate_metadata(handle.node)
        loc = inst.debug_loc
        if loc is not None:
            for handle in (loc.scope, loc.inlined_at):
                if handle is not None:
                    self.enumerate_metadata(handle.node)

    # ------------------------------------------------------------------------
    # Metadata
    # ------------------------------------------------------------------------

    def enumerate_metadata(self, root: Optional[Value]) -> None:
        stack = [root]
        while stack:
            md = stack.pop()
            if md is None or md in self.md_ids:
                continue
            self.enumerate_type(METADATA)
            if isinstance(md, MDNode) and md.function_local:
                self._enumerate_local_md_types(md)
                continue
            self.md_ids[md] = len(self.mds)
            self.mds.append(md)
            if not isinstance(md, MDNode):
                continue
            for op in reversed(md.operands):
                if op is None:
                    self.enumerate_type(VOID)
                elif _is_metadata(op):
                    stack.append(op)
                elif isinstance(op, (Instruction, Argument)):
                    raise ValueError("module-level metadata refers to a function-local value")
                else:
                    self.enumerate_value(op)

    def _enumerate_local_md_types(self, node: MDNode) -> None:
        self.enumerate_type(METADATA)
        for op in node.operands:
            if op is None:
                self.enumerate_type(VOID)
            elif isinstance(op, MDNode) and op.function_local:
                if op is not node:
                    self._enumerate_local_md_types(op)
            elif _is_metadata(op):
                self.enumerate_metadata(op)
            else:
                self._enumerate_operand_type(op)

    def md_id(self, md: Value) -> int:
        try:
            return self.md_ids[md]
        except KeyError:
            raise ValueError(f"{md!r} was not enumerated") from None

    # ------------------------------------------------------------------------
    # Attributes
    # ------------------------------------------------------------------------

    def _enumerate_attributes(self, attributes: Optional[AttributeSet]) -> None:
        if attributes is None or attributes in self.attribute_ids:
            return
        self.attribute_sets.append(attributes)
        self.attribute_ids[attributes] = len(self.attribute_sets)

    def attribute_id(self, attributes: Optional[AttributeSet]) -> int:
        """1-based, 0 for none."""
        if attributes is None:
            return 0
        return self.attribute_ids[attributes]

    # ------------------------------------------------------------------------
    # Functions
    # ------------------------------------------------------------------------

    def incorporate_function(self, fn: Function) -> None:
        for arg in fn.args:
            self._add_value(arg)
        self.first_func_constant = len(self.values)

        local_mds: List[MDNode] = []
        for inst in fn.instructions():
            for op in inst.operands:
                if isinstance(op, MDNode) and op.function_local:
                    self._collect_local_md(op, local_mds)

        for inst in fn.instructions():
            for op in inst.operands:
                if isinstance(op, Constant) and not isinstance(op, GlobalValue):
                    self.enumerate_value(op)
        for node in local_mds:
            for op in node.operands:
                if isinstance(op, Constant) and not isinstance(op, GlobalValue):
                    self.enumerate_value(op)

        self.first_inst_id = len(self.values)
        for node in local_mds:
            self.md_ids[node] = len(self.mds)
            self.mds.append(node)
        self.local_mds = local_mds

        for inst in fn.instructions():
            if not inst.type.is_void:
                self._add_value(inst)
        self.block_ids = {block: i for i, block in enumerate(fn.blocks)}

    def _collect_local_md(self, node: MDNode, out: List[MDNode]) -> None:
        if node in out:
            return
        out.append(node)
        for op in node.operands:
            if isinstance(op, MDNode) and op.function_local:
                self._collect_local_md(op, out)

    def purge_function(self) -> None:
        for value in self.values[self.num_module_values:]:
            del self.value_ids[value]
        del self.values[self.num_module_values:]
        for md in self.mds[self.num_module_mds:]:
            del self.md_ids[md]
        del self.mds[self.num_module_mds:]
        self.local_mds = []
        self.block_ids = {}

    def block_id(self, block: BasicBlock) -> int:
        try:
            return self.block_ids[block]
        except KeyError:
            raise ValueError(f"block {block.name!r} is not in the function") from None


# ============================================================================
# Module Writer
# ============================================================================

class ModuleWriter:
    """Writes one module; call write() once."""

    def __init__(self, module: Module):
        for fn in module.functions:
            if module.is_materializable(fn):
                raise ValueError(f"function '{fn.name}' has not been materialized")
        self.module = module
        self.stream = BitstreamWriter()
        self.enumerator = ValueEnumerator(module)
        self.type_bits = max(1, len(self.enumerator.types).bit_length())

    def write(self) -> bytes:
        stream = self.stream
        stream.emit_magic()
        stream.enter_subblock(BlockId.MODULE, 3)
        stream.emit_record(ModuleCode.VERSION, [0])

        self._write_block_info()
        self._write_attribute_table()
        self._write_type_table()
        self._write_module_info()
        self._write_constants(self.enumerator.first_constant, self.enumerator.num_module_values)
        self._write_module_metadata()
        self._write_metadata_kinds()
        self._write_module_symbol_table()

        for fn in self.module.functions:
            if not fn.is_declaration:
                self._write_function(fn)

        stream.exit_block()
        data = stream.get_bytes()
        logger.debug("wrote module '%s': %d bytes", self.module.name, len(data))
        return data

    # ========================================================================
    # Module level
    # ========================================================================

    def _write_block_info(self) -> None:
        stream = self.stream
        fixed, vbr, array = Encoding.FIXED, Encoding.VBR, Encoding.ARRAY
        stream.enter_blockinfo_block()

        def register(block_id: int, ops: List[AbbrevOp], expected: int) -> None:
            if stream.emit_blockinfo_abbrev(block_id, Abbrev(ops)) != expected:
                raise AssertionError("unexpected abbreviation id")

        vst = BlockId.VALUE_SYMTAB
        register(vst, [AbbrevOp(ValueSymtabCode.ENTRY), AbbrevOp(8, vbr), AbbrevOp(0, array),
                       AbbrevOp(8, fixed)], VST_ENTRY_8_ABBREV)
        register(vst, [AbbrevOp(ValueSymtabCode.ENTRY), AbbrevOp(8, vbr), AbbrevOp(0, array),
                       AbbrevOp(7, fixed)], VST_ENTRY_7_ABBREV)
        register(vst, [AbbrevOp(ValueSymtabCode.ENTRY), AbbrevOp(8, vbr), AbbrevOp(0, array),
                       AbbrevOp(0, Encoding.CHAR6)], VST_ENTRY_6_ABBREV)
        register(vst, [AbbrevOp(ValueSymtabCode.BBENTRY), AbbrevOp(8, vbr), AbbrevOp(0, array),
                       AbbrevOp(0, Encoding.CHAR6)], VST_BBENTRY_6_ABBREV)

        constants = BlockId.CONSTANTS
        register(constants, [AbbrevOp(ConstantsCode.SETTYPE), AbbrevOp(self.type_bits, fixed)],
                 CONSTANTS_SETTYPE_ABBREV)
        register(constants, [AbbrevOp(ConstantsCode.INTEGER), AbbrevOp(8, vbr)],
                 CONSTANTS_INTEGER_ABBREV)
        register(constants, [AbbrevOp(ConstantsCode.CE_CAST), AbbrevOp(4, fixed),
                             AbbrevOp(self.type_bits, fixed), AbbrevOp(8, vbr)],
                 CONSTANTS_CE_CAST_ABBREV)
        register(constants, [AbbrevOp(ConstantsCode.NULL)], CONSTANTS_NULL_ABBREV)

        function = BlockId.FUNCTION
        register(function, [AbbrevOp(FunctionCode.INST_LOAD), AbbrevOp(6, vbr),
                            AbbrevOp(4, vbr), AbbrevOp(1, fixed)], FUNCTION_INST_LOAD_ABBREV)
        register(function, [AbbrevOp(FunctionCode.INST_BINOP), AbbrevOp(6, vbr),
                            AbbrevOp(6, vbr), AbbrevOp(4, fixed)], FUNCTION_INST_BINOP_ABBREV)
        register(function, [AbbrevOp(FunctionCode.INST_BINOP), AbbrevOp(6, vbr),
                            AbbrevOp(6, vbr), AbbrevOp(4, fixed), AbbrevOp(7, fixed)],
                 FUNCTION_INST_BINOP_FLAGS_ABBREV)
        register(function, [AbbrevOp(FunctionCode.INST_CAST), AbbrevOp(6, vbr),
                            AbbrevOp(self.type_bits, fixed), AbbrevOp(4, fixed)],
                 FUNCTION_INST_CAST_ABBREV)
        register(function, [AbbrevOp(FunctionCode.INST_RET)], FUNCTION_INST_RET_VOID_ABBREV)
        register(function, [AbbrevOp(FunctionCode.INST_RET), AbbrevOp(6, vbr)],
                 FUNCTION_INST_RET_VAL_ABBREV)
        register(function, [AbbrevOp(FunctionCode.INST_UNREACHABLE)],
                 FUNCTION_INST_UNREACHABLE_ABBREV)

        stream.exit_block()

    def _write_attribute_table(self) -> None:
        sets = self.enumerator.attribute_sets
        if not sets:
            return
        stream = self.stream
        stream.enter_subblock(BlockId.PARAMATTR, 3)
        for attributes in sets:
            record = []
            for slot in attributes.slots:
                record.extend([slot.index, encode_llvm_attributes(slot)])
            stream.emit_record(AttributeCode.ENTRY_OLD, record)
        stream.exit_block()

    def _write_type_table(self) -> None:
        enumerator = self.enumerator
        stream = self.stream
        stream.enter_subblock(BlockId.TYPE_NEW, 4)
        stream.emit_record(TypeCode.NUMENTRY, [len(enumerator.types)])

        pointer_abbrev = stream.emit_abbrev(Abbrev([
            AbbrevOp(TypeCode.POINTER), AbbrevOp(self.type_bits, Encoding.FIXED), AbbrevOp(0)]))
        name_abbrev = stream.emit_abbrev(Abbrev([
            AbbrevOp(TypeCode.STRUCT_NAME), AbbrevOp(0, Encoding.ARRAY),
            AbbrevOp(8, Encoding.FIXED)]))

        for type in enumerator.types:
            if isinstance(type, PrimitiveType):
                stream.emit_record(_PRIMITIVE_CODES[type], [])
            elif isinstance(type, IntegerType):
                stream.emit_record(TypeCode.INTEGER, [type.width])
            elif isinstance(type, PointerType):
                pointee = enumerator.type_id(type.pointee)
                if type.address_space:
                    stream.emit_record(TypeCode.POINTER, [pointee, type.address_space])
                else:
                    stream.emit_record(TypeCode.POINTER, [pointee, 0], pointer_abbrev)
            elif isinstance(type, FunctionType):
                record = [int(type.var_arg), enumerator.type_id(type.return_type)]
                record.extend(enumerator.type_id(p) for p in type.params)
                stream.emit_record(TypeCode.FUNCTION, record)
            elif isinstance(type, LiteralStructType):
                record = [int(type.packed)] + [enumerator.type_id(e) for e in type.elements]
                stream.emit_record(TypeCode.STRUCT_ANON, record)
            elif isinstance(type, StructType):
                if type.name:
                    stream.emit_record(TypeCode.STRUCT_NAME, _chars(type.name), name_abbrev)
                if type.is_opaque:
                    stream.emit_record(TypeCode.OPAQUE, [0])
                else:
                    record = [int(type.packed)] + [enumerator.type_id(e) for e in type.elements]
                    stream.emit_record(TypeCode.STRUCT_NAMED, record)
            elif isinstance(type, ArrayType):
                stream.emit_record(TypeCode.ARRAY, [type.count, enumerator.type_id(type.element)])
            elif isinstance(type, VectorType):
                stream.emit_record(TypeCode.VECTOR, [type.count, enumerator.type_id(type.element)])
            else:
                raise ValueError(f"cannot write type {type!r}")
        stream.exit_block()

    def _write_module_info(self) -> None:
        module = self.module
        enumerator = self.enumerator
        stream = self.stream

        if module.triple:
            stream.emit_record(ModuleCode.TRIPLE, _chars(module.triple))
        if module.data_layout:
            stream.emit_record(ModuleCode.DATALAYOUT, _chars(module.data_layout))
        if module.inline_asm:
            stream.emit_record(ModuleCode.ASM, _chars(module.inline_asm))

        sections: Dict[str, int] = {}
        gc_names: Dict[str, int] = {}
        for gv in list(module.global_variables) + list(module.functions):
            if gv.section and gv.section not in sections:
                sections[gv.section] = len(sections) + 1
                stream.emit_record(ModuleCode.SECTIONNAME, _chars(gv.section))
        for fn in module.functions:
            if fn.gc and fn.gc not in gc_names:
                gc_names[fn.gc] = len(gc_names) + 1
                stream.emit_record(ModuleCode.GCNAME, _chars(fn.gc))

        for gv in module.global_variables:
            # [pointer type, isconst, initid, linkage, alignment, section,
            #  visibility, threadlocal, unnamed_addr]
            init = gv.initializer
            record = [
                enumerator.type_id(gv.type),
                int(gv.is_constant),
                enumerator.value_id(init) + 1 if init is not None else 0,
                LINKAGE_CODES.get(gv.linkage, 0),
                encode_alignment(gv.alignment),
                sections.get(gv.section, 0),
            ]
            if gv.thread_local or gv.visibility != "default" or gv.unnamed_addr:
                record.extend([VISIBILITY_CODES.get(gv.visibility, 0),
                               TLS_MODE_CODES.get(gv.thread_local, 1),
                               int(gv.unnamed_addr)])
            stream.emit_record(ModuleCode.GLOBALVAR, record)

        for fn in module.functions:
            # [type, callingconv, isproto, linkage, paramattr, alignment,
            #  section, visibility, gc, unnamed_addr]
            stream.emit_record(ModuleCode.FUNCTION, [
                enumerator.type_id(fn.type),
                fn.calling_conv,
                int(fn.is_declaration),
                LINKAGE_CODES.get(fn.linkage, 0),
                enumerator.attribute_id(fn.attributes),
                encode_alignment(fn.alignment),
                sections.get(fn.section, 0),
                VISIBILITY_CODES.get(fn.visibility, 0),
                gc_names.get(fn.gc, 0),
                int(fn.unnamed_addr),
            ])

        for alias in module.aliases:
            # [alias type, aliasee val#, linkage, visibility]
            stream.emit_record(ModuleCode.ALIAS, [
                enumerator.type_id(alias.type),
                enumerator.value_id(alias.aliasee),
                LINKAGE_CODES.get(alias.linkage, 0),
                VISIBILITY_CODES.get(alias.visibility, 0),
            ])

    # ========================================================================
    # Constants
    # ========================================================================

    def _write_constants(self, first: int, last: int) -> None:
        if first == last:
            return
        stream = self.stream
        enumerator = self.enumerator
        stream.enter_subblock(BlockId.CONSTANTS, 4)
        last_type: Optional[Type] = None
        for value in enumerator.values[first:last]:
            if value.type != last_type:
                stream.emit_record(ConstantsCode.SETTYPE, [enumerator.type_id(value.type)],
                                   CONSTANTS_SETTYPE_ABBREV)
                last_type = value.type
            code, record, abbrev = self._constant_record(value)
            stream.emit_record(code, record, abbrev)
        stream.exit_block()
        logger.debug("wrote %d constants", last - first)

    def _constant_record(self, value: Value) -> Tuple[int, List[int], Optional[int]]:
        enumerator = self.enumerator
        vid = enumerator.value_id
        tid = enumerator.type_id

        if isinstance(value, UndefValue):
            return ConstantsCode.UNDEF, [], None
        if isinstance(value, ConstantNull):
            return ConstantsCode.NULL, [], CONSTANTS_NULL_ABBREV

        if isinstance(value, ConstantInt):
            width = value.type.width
            if width <= 64:
                return ConstantsCode.INTEGER, [encode_sign_rotated(value.value)], CONSTANTS_INTEGER_ABBREV
            raw = value.unsigned_value
            words = []
            for _ in range((width + 63) // 64):
                word = raw & 0xFFFFFFFFFFFFFFFF
                raw >>= 64
                if word >> 63:
                    word -= 1 << 64
                words.append(encode_sign_rotated(word))
            return ConstantsCode.WIDE_INTEGER, words, None

        if isinstance(value, ConstantFP):
            bits = value.bits
            name = value.type.name
            if name in ("half", "float", "double"):
                return ConstantsCode.FLOAT, [bits], None
            if name == "x86_fp80":
                return ConstantsCode.FLOAT, [bits >> 16, bits & 0xFFFF], None
            return ConstantsCode.FLOAT, [bits & 0xFFFFFFFFFFFFFFFF, bits >> 64], None

        if isinstance(value, ConstantAggregate):
            elements = value.elements
            if not elements:
                return ConstantsCode.NULL, [], CONSTANTS_NULL_ABBREV
            if (isinstance(value.type, ArrayType) and value.type.element == IntegerType(8)
                    and all(isinstance(e, ConstantInt) for e in elements)):
                chars = [e.unsigned_value for e in elements]
                if chars[-1] == 0 and 0 not in chars[:-1]:
                    return ConstantsCode.CSTRING, chars[:-1], None
                return ConstantsCode.STRING, chars, None
            return ConstantsCode.AGGREGATE, [vid(e) for e in elements], None

        if isinstance(value, InlineAsm):
            asm = _chars(value.asm)
            constraints = _chars(value.constraints)
            flags = int(value.side_effects) | int(value.align_stack) << 1
            return ConstantsCode.INLINEASM, [flags, len(asm)] + asm + [len(constraints)] + constraints, None

        if isinstance(value, BlockAddress):
            fn = value.function
            return ConstantsCode.BLOCKADDRESS, [
                tid(fn.type), vid(fn), fn.blocks.index(value.block)], None

        if isinstance(value, ConstantExpr):
            return self._constant_expr_record(value)

        raise ValueError(f"cannot write constant {value!r}")

    def _constant_expr_record(self, expr: ConstantExpr) -> Tuple[int, List[int], Optional[int]]:
        vid = self.enumerator.value_id
        tid = self.enumerator.type_id
        opcode = expr.opcode
        ops = expr.operands

        if opcode in _BINOP_CODES:
            record = [_BINOP_CODES[opcode], vid(ops[0]), vid(ops[1])]
            flags = encode_binop_flags(expr.attrs.get("flags", ()))
            if flags:
                record.append(flags)
            return ConstantsCode.CE_BINOP, record, None
        if opcode in _CAST_CODES:
            return (ConstantsCode.CE_CAST, [_CAST_CODES[opcode], tid(ops[0].type), vid(ops[0])],
                    CONSTANTS_CE_CAST_ABBREV)
        if opcode == Opcode.GETELEMENTPTR:
            record = []
            for op in ops:
                record.extend([tid(op.type), vid(op)])
            code = ConstantsCode.CE_INBOUNDS_GEP if expr.attrs.get("inbounds") else ConstantsCode.CE_GEP
            return code, record, None
        if opcode == Opcode.SELECT:
            return ConstantsCode.CE_SELECT, [vid(op) for op in ops], None
        if opcode == Opcode.EXTRACTELEMENT:
            return ConstantsCode.CE_EXTRACTELT, [tid(ops[0].type), vid(ops[0]), vid(ops[1])], None
        if opcode == Opcode.INSERTELEMENT:
            return ConstantsCode.CE_INSERTELT, [vid(op) for op in ops], None
        if opcode == Opcode.SHUFFLEVECTOR:
            if expr.type == ops[0].type:
                return ConstantsCode.CE_SHUFFLEVEC, [vid(op) for op in ops], None
            return (ConstantsCode.CE_SHUFVEC_EX,
                    [tid(ops[0].type)] + [vid(op) for op in ops], None)
        if opcode in (Opcode.ICMP, Opcode.FCMP):
            return (ConstantsCode.CE_CMP,
                    [tid(ops[0].type), vid(ops[0]), vid(ops[1]), expr.attrs["predicate"]], None)
        raise ValueError(f"cannot write constant expression {opcode.value}")

    # ========================================================================
    # Metadata
    # ========================================================================

    def _node_record(self, node: MDNode) -> List[int]:
        enumerator = self.enumerator
        record = []
        for op in node.operands:
            if op is None:
                record.extend([enumerator.type_id(VOID), 0])
            elif _is_metadata(op):
                record.extend([enumerator.type_id(METADATA), enumerator.md_id(op)])
            else:
                record.extend([enumerator.type_id(op.type), enumerator.value_id(op)])
        return record

    def _write_module_metadata(self) -> None:
        enumerator = self.enumerator
        module = self.module
        if not enumerator.mds and not module.named_metadata:
            return
        stream = self.stream
        stream.enter_subblock(BlockId.METADATA, 3)
        for md in enumerator.mds:
            if isinstance(md, MDString):
                stream.emit_record(MetadataCode.STRING, _chars(md.string))
            else:
                stream.emit_record(MetadataCode.NODE, self._node_record(md))
        for name, named in module.named_metadata.items():
            stream.emit_record(MetadataCode.NAME, _chars(name))
            stream.emit_record(MetadataCode.NAMED_NODE, [enumerator.md_id(n) for n in named.operands])
        stream.exit_block()

    def _write_metadata_kinds(self) -> None:
        kinds = self.module.md_kinds
        if not kinds:
            return
        stream = self.stream
        stream.enter_subblock(BlockId.METADATA, 3)
        for name, kind_id in sorted(kinds.items(), key=lambda item: item[1]):
            stream.emit_record(MetadataCode.KIND, [kind_id] + _chars(name))
        stream.exit_block()

    def _write_function_local_metadata(self) -> None:
        nodes = self.enumerator.local_mds
        if not nodes:
            return
        stream = self.stream
        stream.enter_subblock(BlockId.METADATA, 3)
        for node in nodes:
            stream.emit_record(MetadataCode.FN_NODE, self._node_record(node))
        stream.exit_block()

    def _write_metadata_attachments(self, fn: Function) -> None:
        records = []
        for index, inst in enumerate(fn.instructions()):
            if not inst.metadata:
                continue
            record = [index]
            for kind, handle in inst.metadata.items():
                record.extend([self.module.get_md_kind_id(kind), self.enumerator.md_id(handle.node)])
            records.append(record)
        if not records:
            return
        stream = self.stream
        stream.enter_subblock(BlockId.METADATA_ATTACHMENT, 3)
        for record in records:
            stream.emit_record(MetadataCode.ATTACHMENT, record)
        stream.exit_block()

    # ========================================================================
    # Symbol tables
    # ========================================================================

    def _write_symbol_entry(self, code: int, index: int, name: str) -> None:
        chars = _chars(name)
        if all(is_char6(c) for c in chars):
            abbrev = VST_BBENTRY_6_ABBREV if code == ValueSymtabCode.BBENTRY else VST_ENTRY_6_ABBREV
        elif code == ValueSymtabCode.BBENTRY:
            abbrev = None
        elif all(c < 128 for c in chars):
            abbrev = VST_ENTRY_7_ABBREV
        else:
            abbrev = VST_ENTRY_8_ABBREV
        self.stream.emit_record(code, [index] + chars, abbrev)

    def _write_module_symbol_table(self) -> None:
        module = self.module
        named = [gv for gv in list(module.global_variables) + list(module.functions)
                 + list(module.aliases) if gv.name]
        if not named:
            return
        self.stream.enter_subblock(BlockId.VALUE_SYMTAB, 4)
        for gv in named:
            self._write_symbol_entry(ValueSymtabCode.ENTRY, self.enumerator.value_id(gv), gv.name)
        self.stream.exit_block()

    def _write_function_symbol_table(self, fn: Function) -> None:
        enumerator = self.enumerator
        values = [arg for arg in fn.args if arg.name]
        values += [inst for inst in fn.instructions() if inst.name and not inst.type.is_void]
        blocks = [block for block in fn.blocks if block.name]
        if not values and not blocks:
            return
        self.stream.enter_subblock(BlockId.VALUE_SYMTAB, 4)
        for value in values:
            self._write_symbol_entry(ValueSymtabCode.ENTRY, enumerator.value_id(value), value.name)
        for block in blocks:
            self._write_symbol_entry(ValueSymtabCode.BBENTRY, enumerator.block_id(block), block.name)
        self.stream.exit_block()

    # ========================================================================
    # Functions
    # ========================================================================

    def _write_function(self, fn: Function) -> None:
        enumerator = self.enumerator
        stream = self.stream
        enumerator.incorporate_function(fn)
        stream.enter_subblock(BlockId.FUNCTION, 4)
        stream.emit_record(FunctionCode.DECLAREBLOCKS, [len(fn.blocks)])

        self._write_constants(enumerator.first_func_constant, enumerator.first_inst_id)
        self._write_function_local_metadata()

        inst_id = enumerator.first_inst_id
        last_loc = None
        for inst in fn.instructions():
            self._write_instruction(inst, inst_id)
            if not inst.type.is_void:
                inst_id += 1
            loc = inst.debug_loc
            if loc is None:
                continue
            if loc.same_as(last_loc):
                stream.emit_record(FunctionCode.DEBUG_LOC_AGAIN, [])
            else:
                scope = enumerator.md_id(loc.scope.node) + 1 if loc.scope is not None else 0
                inlined_at = (enumerator.md_id(loc.inlined_at.node) + 1
                              if loc.inlined_at is not None else 0)
                stream.emit_record(FunctionCode.DEBUG_LOC, [loc.line, loc.col, scope, inlined_at])
                last_loc = loc

        self._write_function_symbol_table(fn)
        self._write_metadata_attachments(fn)
        stream.exit_block()
        enumerator.purge_function()
        logger.debug("wrote body of '%s'", fn.name)

    # ------------------------------------------------------------------------
    # Operand encoding
    # ------------------------------------------------------------------------

    def _push_value_and_type(self, record: List[int], value: Value, inst_id: int) -> bool:
        """Append value's id, plus its type id if it refers forward. True if typed."""
        value_id = self.enumerator.value_id(value)
        record.append(value_id)
        if value_id >= inst_id:
            record.append(self.enumerator.type_id(value.type))
            return True
        return False

    def _push_value(self, record: List[int], value: Value) -> None:
        if _is_metadata(value):
            record.append(self.enumerator.md_id(value))
        else:
            record.append(self.enumerator.value_id(value))

    def _push_call_arguments(self, record: List[int], fn_type: FunctionType,
                             args: List[Value], inst_id: int) -> None:
        fixed = len(fn_type.params)
        for param, arg in zip(fn_type.params, args[:fixed]):
            if param.is_label:
                record.append(self.enumerator.block_id(arg))
            else:
                self._push_value(record, arg)
        for arg in args[fixed:]:
            self._push_value_and_type(record, arg, inst_id)

    def _write_instruction(self, inst: Instruction, inst_id: int) -> None:
        enumerator = self.enumerator
        stream = self.stream
        tid = enumerator.type_id
        bid = enumerator.block_id
        pair = self._push_value_and_type
        push = self._push_value
        ops = inst.operands
        attrs = inst.attrs
        opcode = inst.opcode
        record: List[int] = []
        abbrev: Optional[int] = None

        if opcode in _BINOP_CODES:
            code = FunctionCode.INST_BINOP
            typed = pair(record, ops[0], inst_id)
            push(record, ops[1])
            record.append(_BINOP_CODES[opcode])
            flags = encode_binop_flags(attrs.get("flags", ()))
            if flags:
                record.append(flags)
            if not typed:
                abbrev = FUNCTION_INST_BINOP_FLAGS_ABBREV if flags else FUNCTION_INST_BINOP_ABBREV

        elif opcode in _CAST_CODES:
            code = FunctionCode.INST_CAST
            typed = pair(record, ops[0], inst_id)
            record.extend([tid(inst.type), _CAST_CODES[opcode]])
            if not typed:
                abbrev = FUNCTION_INST_CAST_ABBREV

        elif opcode == Opcode.GETELEMENTPTR:
            code = FunctionCode.INST_INBOUNDS_GEP if attrs.get("inbounds") else FunctionCode.INST_GEP
            for op in ops:
                pair(record, op, inst_id)

        elif opcode == Opcode.EXTRACTVALUE:
            code = FunctionCode.INST_EXTRACTVAL
            pair(record, ops[0], inst_id)
            record.extend(attrs["indices"])

        elif opcode == Opcode.INSERTVALUE:
            code = FunctionCode.INST_INSERTVAL
            pair(record, ops[0], inst_id)
            pair(record, ops[1], inst_id)
            record.extend(attrs["indices"])

        elif opcode == Opcode.SELECT:
            code = FunctionCode.INST_VSELECT
            pair(record, ops[1], inst_id)
            push(record, ops[2])
            pair(record, ops[0], inst_id)

        elif opcode == Opcode.EXTRACTELEMENT:
            code = FunctionCode.INST_EXTRACTELT
            pair(record, ops[0], inst_id)
            push(record, ops[1])

        elif opcode == Opcode.INSERTELEMENT:
            code = FunctionCode.INST_INSERTELT
            pair(record, ops[0], inst_id)
            push(record, ops[1])
            push(record, ops[2])

        elif opcode == Opcode.SHUFFLEVECTOR:
            code = FunctionCode.INST_SHUFFLEVEC
            pair(record, ops[0], inst_id)
            push(record, ops[1])
            pair(record, ops[2], inst_id)

        elif opcode in (Opcode.ICMP, Opcode.FCMP):
            code = FunctionCode.INST_CMP2
            pair(record, ops[0], inst_id)
            push(record, ops[1])
            record.append(attrs["predicate"])

        elif opcode == Opcode.RET:
            code = FunctionCode.INST_RET
            if not ops:
                abbrev = FUNCTION_INST_RET_VOID_ABBREV
            elif not pair(record, ops[0], inst_id):
                abbrev = FUNCTION_INST_RET_VAL_ABBREV

        elif opcode == Opcode.BR:
            code = FunctionCode.INST_BR
            if len(ops) == 1:
                record.append(bid(ops[0]))
            else:
                record.extend([bid(ops[1]), bid(ops[2])])
                push(record, ops[0])

        elif opcode == Opcode.SWITCH:
            code = FunctionCode.INST_SWITCH
            record.append(tid(ops[0].type))
            push(record, ops[0])
            record.append(bid(ops[1]))
            for i in range(2, len(ops), 2):
                push(record, ops[i])
                record.append(bid(ops[i + 1]))

        elif opcode == Opcode.INDIRECTBR:
            code = FunctionCode.INST_INDIRECTBR
            record.append(tid(ops[0].type))
            push(record, ops[0])
            record.extend(bid(dest) for dest in ops[1:])

        elif opcode == Opcode.INVOKE:
            code = FunctionCode.INST_INVOKE
            callee = ops[0]
            record.extend([enumerator.attribute_id(attrs.get("attributes")), attrs.get("cc", 0),
                           bid(ops[1]), bid(ops[2])])
            pair(record, callee, inst_id)
            self._push_call_arguments(record, callee.type.pointee, ops[3:], inst_id)

        elif opcode == Opcode.RESUME:
            code = FunctionCode.INST_RESUME
            pair(record, ops[0], inst_id)

        elif opcode == Opcode.UNREACHABLE:
            code = FunctionCode.INST_UNREACHABLE
            abbrev = FUNCTION_INST_UNREACHABLE_ABBREV

        elif opcode == Opcode.PHI:
            code = FunctionCode.INST_PHI
            record.append(tid(inst.type))
            for i in range(0, len(ops), 2):
                push(record, ops[i])
                record.append(bid(ops[i + 1]))

        elif opcode == Opcode.LANDINGPAD:
            code = FunctionCode.INST_LANDINGPAD
            record.append(tid(inst.type))
            pair(record, ops[0], inst_id)
            clauses = attrs.get("clauses", ())
            record.extend([int(attrs.get("cleanup", False)), len(clauses)])
            for kind, clause in zip(clauses, ops[1:]):
                record.append(LandingPadClause.CATCH if kind == "catch" else LandingPadClause.FILTER)
                pair(record, clause, inst_id)

        elif opcode == Opcode.ALLOCA:
            code = FunctionCode.INST_ALLOCA
            size = ops[0]
            record.extend([tid(inst.type), tid(size.type), enumerator.value_id(size),
                           encode_alignment(attrs.get("alignment", 0))])

        elif opcode == Opcode.LOAD:
            typed = pair(record, ops[0], inst_id)
            record.extend([encode_alignment(attrs.get("alignment", 0)), int(attrs.get("volatile", False))])
            ordering = attrs.get("ordering")
            if ordering and ordering != "notatomic":
                code = FunctionCode.INST_LOADATOMIC
                record.extend([_ordering_code(ordering), _scope_code(attrs.get("scope"))])
            else:
                code = FunctionCode.INST_LOAD
                if not typed:
                    abbrev = FUNCTION_INST_LOAD_ABBREV

        elif opcode == Opcode.STORE:
            pair(record, ops[1], inst_id)
            push(record, ops[0])
            record.extend([encode_alignment(attrs.get("alignment", 0)), int(attrs.get("volatile", False))])
            ordering = attrs.get("ordering")
            if ordering and ordering != "notatomic":
                code = FunctionCode.INST_STOREATOMIC
                record.extend([_ordering_code(ordering), _scope_code(attrs.get("scope"))])
            else:
                code = FunctionCode.INST_STORE

        elif opcode == Opcode.CMPXCHG:
            code = FunctionCode.INST_CMPXCHG
            pair(record, ops[0], inst_id)
            push(record, ops[1])
            push(record, ops[2])
            record.extend([int(attrs.get("volatile", False)), _ordering_code(attrs.get("ordering")),
                           _scope_code(attrs.get("scope"))])

        elif opcode == Opcode.ATOMICRMW:
            code = FunctionCode.INST_ATOMICRMW
            pair(record, ops[0], inst_id)
            push(record, ops[1])
            record.extend([RMW_OPS.index(attrs["op"]), int(attrs.get("volatile", False)),
                           _ordering_code(attrs.get("ordering")), _scope_code(attrs.get("scope"))])

        elif opcode == Opcode.FENCE:
            code = FunctionCode.INST_FENCE
            record.extend([_ordering_code(attrs.get("ordering", "seq_cst")),
                           _scope_code(attrs.get("scope"))])

        elif opcode == Opcode.CALL:
            code = FunctionCode.INST_CALL
            callee = ops[0]
            record.extend([enumerator.attribute_id(attrs.get("attributes")),
                           attrs.get("cc", 0) << 1 | int(attrs.get("tail", False))])
            pair(record, callee, inst_id)
            self._push_call_arguments(record, callee.type.pointee, ops[1:], inst_id)

        elif opcode == Opcode.VAARG:
            code = FunctionCode.INST_VAARG
            record.extend([tid(ops[0].type), enumerator.value_id(ops[0]), tid(inst.type)])

        else:
            raise ValueError(f"cannot write instruction {opcode.value}")

        stream.emit_record(code, record, abbrev)


# ============================================================================
# Entry point
# ============================================================================

def write_bitcode(module: Module, wrapper: bool = False, cputype: int = 0) -> bytes:
    """Serialize module; with wrapper=True the result carries the wrapper header."""
    data = ModuleWriter(module).write()
    if wrapper:
        data = wrap_bitcode(data, cputype)
    return data
