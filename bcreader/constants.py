"""
Constants Decoding

CONSTANTS blocks append one constant per record to the value table. SETTYPE
changes the type applied to the following records. Operands that refer to
constants later in the block get placeholders; when the block ends every
pending placeholder is resolved in one bulk pass.

Also holds the opcode and flag decoders shared with the function body
decoder.
"""

import logging
from typing import TYPE_CHECKING, List, Optional, Tuple

from bitstream import BitstreamError, EntryKind
from bcreader.codes import BlockId, ConstantsCode, decode_sign_rotated
from bcreader.errors import ErrorKind, StructuralError, UnresolvedForwardReference
from bcreader.types import record_string
from ir_nodes import (
    Opcode, Type, IntegerType, PointerType, ArrayType, VectorType, FunctionType,
    StructType, LiteralStructType, Function, GlobalVariable, Constant,
    BINARY_OPS, FP_BINARY_OPS, CAST_OPS, get_gep_result_type,
)

if TYPE_CHECKING:
    from bcreader.core import BitcodeReader

logger = logging.getLogger(__name__)


I1 = IntegerType(1)
I8 = IntegerType(8)
I32 = IntegerType(32)

_OVERFLOW_OPS = (Opcode.ADD, Opcode.SUB, Opcode.MUL, Opcode.SHL)
_EXACT_OPS = (Opcode.UDIV, Opcode.SDIV, Opcode.LSHR, Opcode.ASHR)


def decode_binop(code: int, type: Type) -> Optional[Opcode]:
    if code >= len(BINARY_OPS):
        return None
    opcode = BINARY_OPS[code]
    if type.is_fp_or_fp_vector:
        return FP_BINARY_OPS.get(opcode)
    return opcode


def decode_binop_flags(opcode: Opcode, raw: int) -> Tuple[str, ...]:
    flags = []
    if opcode in _OVERFLOW_OPS:
        if raw & 1:
            flags.append("nuw")
        if raw & 2:
            flags.append("nsw")
    elif opcode in _EXACT_OPS and raw & 1:
        flags.append("exact")
    return tuple(flags)


def encode_binop_flags(flags: Tuple[str, ...]) -> int:
    raw = 0
    if "nuw" in flags or "exact" in flags:
        raw |= 1
    if "nsw" in flags:
        raw |= 2
    return raw


def decode_cast(code: int) -> Optional[Opcode]:
    if code >= len(CAST_OPS):
        return None
    return CAST_OPS[code]


def cmp_result_type(operand_type: Type) -> Type:
    if isinstance(operand_type, VectorType):
        return VectorType(I1, operand_type.count)
    return I1


def decode_float_bits(type: Type, record: List[int]) -> int:
    name = type.name
    if name == "half":
        return record[0] & 0xFFFF
    if name == "float":
        return record[0] & 0xFFFFFFFF
    if name == "double":
        return record[0] & 0xFFFFFFFFFFFFFFFF
    if name == "x86_fp80":
        # words are stored with the 16-bit sign/exponent last
        if len(record) < 2:
            raise StructuralError(ErrorKind.INVALID_RECORD, "short x86_fp80 constant")
        return (record[1] & 0xFFFF) | (record[0] << 16)
    if len(record) < 2:
        raise StructuralError(ErrorKind.INVALID_RECORD, f"short {name} constant")
    return (record[0] & 0xFFFFFFFFFFFFFFFF) | ((record[1] & 0xFFFFFFFFFFFFFFFF) << 64)


def decode_wide_integer(record: List[int], width: int) -> int:
    value = 0
    for i, word in enumerate(record):
        value |= (decode_sign_rotated(word) & 0xFFFFFFFFFFFFFFFF) << (64 * i)
    return value & ((1 << width) - 1)


class ConstantsParser:
    def __init__(self, reader: 'BitcodeReader'):
        self.reader = reader

    @property
    def cursor(self):
        return self.reader.cursor

    def _type(self, index: int) -> Type:
        type = self.reader.get_type_by_id(index)
        if type is None:
            raise StructuralError(ErrorKind.INVALID_RECORD, f"type #{index}")
        return type

    def _ref(self, index: int, type: Type) -> Constant:
        return self.reader.value_list.get_constant_fwd_ref(index, type)

    def parse_constants(self) -> None:
        reader = self.reader
        context = reader.context
        value_list = reader.value_list

        try:
            self.cursor.enter_sub_block(BlockId.CONSTANTS)
        except BitstreamError as e:
            raise StructuralError(ErrorKind.INVALID_RECORD, str(e))

        cur_type: Type = I32
        next_cst_no = len(value_list)

        while True:
            entry = self.cursor.advance_skipping_subblocks()
            if entry.kind == EntryKind.ERROR:
                raise StructuralError(ErrorKind.MALFORMED_BLOCK)
            if entry.kind == EntryKind.END_BLOCK:
                if next_cst_no != len(value_list):
                    raise UnresolvedForwardReference(
                        ErrorKind.INVALID_CONSTANT_REFERENCE,
                        f"reference to constant #{len(value_list) - 1} past end of block")
                value_list.resolve_constant_forward_refs()
                return

            code, record = self.cursor.read_record(entry.id)

            if code == ConstantsCode.SETTYPE:
                if not record:
                    raise StructuralError(ErrorKind.INVALID_RECORD)
                cur_type = self._type(record[0])
                continue

            value = self._decode(code, record, cur_type)
            if value is None:
                value = context.get_undef(cur_type)
            value_list.assign_value(value, next_cst_no)
            next_cst_no += 1

    def _decode(self, code: int, record: List[int], cur_type: Type) -> Optional[Constant]:
        context = self.reader.context

        if code == ConstantsCode.NULL:
            return context.get_null(cur_type)

        if code == ConstantsCode.INTEGER:
            if not isinstance(cur_type, IntegerType) or not record:
                raise StructuralError(ErrorKind.INVALID_RECORD, "integer constant")
            return context.get_int(cur_type, decode_sign_rotated(record[0]))

        if code == ConstantsCode.WIDE_INTEGER:
            if not isinstance(cur_type, IntegerType) or not record:
                raise StructuralError(ErrorKind.INVALID_RECORD, "wide integer constant")
            return context.get_int(cur_type, decode_wide_integer(record, cur_type.width))

        if code == ConstantsCode.FLOAT:
            if not record:
                raise StructuralError(ErrorKind.INVALID_RECORD, "float constant")
            if not cur_type.is_floating_point:
                return None
            return context.get_fp(cur_type, decode_float_bits(cur_type, record))

        if code == ConstantsCode.AGGREGATE:
            if not record:
                raise StructuralError(ErrorKind.INVALID_RECORD, "empty aggregate")
            if isinstance(cur_type, (StructType, LiteralStructType)):
                member_types = cur_type.elements or ()
                if len(record) != len(member_types):
                    raise StructuralError(ErrorKind.INVALID_RECORD, "struct arity")
                elements = [self._ref(v, t) for v, t in zip(record, member_types)]
            elif isinstance(cur_type, (ArrayType, VectorType)):
                elements = [self._ref(v, cur_type.element) for v in record]
            else:
                return None
            return context.get_aggregate(cur_type, elements)

        if code in (ConstantsCode.STRING, ConstantsCode.CSTRING):
            if not isinstance(cur_type, ArrayType) or not isinstance(cur_type.element, IntegerType):
                raise StructuralError(ErrorKind.INVALID_RECORD, "string constant type")
            chars = list(record)
            if code == ConstantsCode.CSTRING:
                chars.append(0)
            elements = [context.get_int(cur_type.element, c) for c in chars]
            return context.get_aggregate(cur_type, elements)

        if code == ConstantsCode.CE_BINOP:
            if len(record) < 3:
                raise StructuralError(ErrorKind.INVALID_RECORD, "binop constant")
            opcode = decode_binop(record[0], cur_type)
            if opcode is None:
                return None
            lhs = self._ref(record[1], cur_type)
            rhs = self._ref(record[2], cur_type)
            flags = decode_binop_flags(opcode, record[3]) if len(record) >= 4 else ()
            return context.get_expr(opcode, cur_type, [lhs, rhs], flags=flags)

        if code == ConstantsCode.CE_CAST:
            if len(record) < 3:
                raise StructuralError(ErrorKind.INVALID_RECORD, "cast constant")
            opcode = decode_cast(record[0])
            if opcode is None:
                return None
            operand = self._ref(record[2], self._type(record[1]))
            return context.get_expr(opcode, cur_type, [operand])

        if code in (ConstantsCode.CE_GEP, ConstantsCode.CE_INBOUNDS_GEP):
            if len(record) & 1 or not record:
                raise StructuralError(ErrorKind.INVALID_RECORD, "gep constant")
            operands = [self._ref(record[i + 1], self._type(record[i]))
                        for i in range(0, len(record), 2)]
            result_type = get_gep_result_type(operands[0].type, operands[1:])
            if result_type is None:
                raise StructuralError(ErrorKind.INVALID_RECORD, "invalid gep constant indices")
            return context.get_expr(Opcode.GETELEMENTPTR, result_type, operands,
                                    inbounds=code == ConstantsCode.CE_INBOUNDS_GEP)

        if code == ConstantsCode.CE_SELECT:
            if len(record) < 3:
                raise StructuralError(ErrorKind.INVALID_RECORD, "select constant")
            operands = [self._ref(record[0], I1), self._ref(record[1], cur_type),
                        self._ref(record[2], cur_type)]
            return context.get_expr(Opcode.SELECT, cur_type, operands)

        if code == ConstantsCode.CE_EXTRACTELT:
            if len(record) < 3:
                raise StructuralError(ErrorKind.INVALID_RECORD, "extractelement constant")
            vector_type = self._type(record[0])
            if not isinstance(vector_type, VectorType):
                raise StructuralError(ErrorKind.INVALID_RECORD, "extractelement of non-vector")
            operands = [self._ref(record[1], vector_type), self._ref(record[2], I32)]
            return context.get_expr(Opcode.EXTRACTELEMENT, vector_type.element, operands)

        if code == ConstantsCode.CE_INSERTELT:
            if len(record) < 3 or not isinstance(cur_type, VectorType):
                raise StructuralError(ErrorKind.INVALID_RECORD, "insertelement constant")
            operands = [self._ref(record[0], cur_type), self._ref(record[1], cur_type.element),
                        self._ref(record[2], I32)]
            return context.get_expr(Opcode.INSERTELEMENT, cur_type, operands)

        if code == ConstantsCode.CE_SHUFFLEVEC:
            if len(record) < 3 or not isinstance(cur_type, VectorType):
                raise StructuralError(ErrorKind.INVALID_RECORD, "shufflevector constant")
            mask_type = VectorType(I32, cur_type.count)
            operands = [self._ref(record[0], cur_type), self._ref(record[1], cur_type),
                        self._ref(record[2], mask_type)]
            return context.get_expr(Opcode.SHUFFLEVECTOR, cur_type, operands)

        if code == ConstantsCode.CE_SHUFVEC_EX:
            if len(record) < 4 or not isinstance(cur_type, VectorType):
                raise StructuralError(ErrorKind.INVALID_RECORD, "shufflevector constant")
            operand_type = self._type(record[0])
            if not isinstance(operand_type, VectorType):
                raise StructuralError(ErrorKind.INVALID_RECORD, "shufflevector of non-vector")
            mask_type = VectorType(I32, cur_type.count)
            operands = [self._ref(record[1], operand_type), self._ref(record[2], operand_type),
                        self._ref(record[3], mask_type)]
            return context.get_expr(Opcode.SHUFFLEVECTOR, cur_type, operands)

        if code == ConstantsCode.CE_CMP:
            if len(record) < 4:
                raise StructuralError(ErrorKind.INVALID_RECORD, "compare constant")
            operand_type = self._type(record[0])
            operands = [self._ref(record[1], operand_type), self._ref(record[2], operand_type)]
            opcode = Opcode.FCMP if operand_type.is_fp_or_fp_vector else Opcode.ICMP
            return context.get_expr(opcode, cmp_result_type(operand_type), operands,
                                    predicate=record[3])

        if code == ConstantsCode.INLINEASM:
            if len(record) < 2:
                raise StructuralError(ErrorKind.INVALID_RECORD, "inline asm")
            asm_size = record[1]
            if 2 + asm_size >= len(record):
                raise StructuralError(ErrorKind.INVALID_RECORD, "inline asm string")
            constraint_size = record[2 + asm_size]
            if 3 + asm_size + constraint_size > len(record):
                raise StructuralError(ErrorKind.INVALID_RECORD, "inline asm constraints")
            if not (isinstance(cur_type, PointerType) and isinstance(cur_type.pointee, FunctionType)):
                raise StructuralError(ErrorKind.INVALID_RECORD, "inline asm type")
            asm = record_string(record[2:2 + asm_size])
            constraints = record_string(record[3 + asm_size:3 + asm_size + constraint_size])
            return context.get_inline_asm(cur_type, asm, constraints,
                                          side_effects=bool(record[0] & 1),
                                          align_stack=bool(record[0] >> 1))

        if code == ConstantsCode.BLOCKADDRESS:
            if len(record) < 3:
                raise StructuralError(ErrorKind.INVALID_RECORD, "blockaddress")
            function = self._ref(record[1], self._type(record[0]))
            if not isinstance(function, Function):
                raise StructuralError(ErrorKind.INVALID_RECORD, "blockaddress of non-function")
            # stands in until the function body is read
            placeholder = GlobalVariable(I8, linkage="internal")
            self.reader.module.add_global_variable(placeholder)
            self.reader.block_addr_fwd_refs.setdefault(function, []).append((record[2], placeholder))
            return placeholder

        # UNDEF and unknown codes
        return None
