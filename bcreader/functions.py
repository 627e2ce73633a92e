"""
Function Body Decoding

Decodes one FUNCTION_BLOCK into basic blocks and instructions. The module's
value table is extended with the function's arguments, its local constants
and every non-void instruction, in that order; operand ids index into the
extended table. On exit (success or failure) the table is trimmed back to
its module-level size.

Operand encoding helpers:
    - value/type pair: a value id, followed by a type id only when the id
      refers forward (id >= number of the instruction being read)
    - plain value: a value id whose type is implied by the instruction
"""

import logging
from typing import TYPE_CHECKING, List, Optional, Tuple

from bitstream import BitstreamError, EntryKind
from bcreader.codes import (
    BlockId, FunctionCode, OrderingCode, SynchScopeCode, LandingPadClause, RMWCode,
    decode_alignment,
)
from bcreader.constants import (
    I1, I8, I32, cmp_result_type, decode_binop, decode_binop_flags, decode_cast,
)
from bcreader.errors import (
    BitcodeError, ErrorKind, FunctionBodyError, StructuralError, TypeMismatch,
    UnresolvedForwardReference,
)
from ir_nodes import (
    Opcode, Type, PointerType, VectorType, FunctionType, LiteralStructType,
    Value, Constant, BasicBlock, Function, Instruction, BlockAddress, DebugLoc,
    MetadataHandle, VOID, ORDERINGS, RMW_OPS, get_gep_result_type, get_indexed_type,
)

if TYPE_CHECKING:
    from bcreader.core import BitcodeReader

logger = logging.getLogger(__name__)


def decode_ordering(code: int) -> str:
    # unknown orderings are read as sequentially consistent
    if 0 <= code <= OrderingCode.SEQCST:
        return ORDERINGS[code]
    return ORDERINGS[OrderingCode.SEQCST]


def decode_synch_scope(code: int) -> str:
    if code == SynchScopeCode.SINGLETHREAD:
        return "singlethread"
    return "crossthread"


def _invalid(detail: str = "") -> StructuralError:
    return StructuralError(ErrorKind.INVALID_RECORD, detail)


class FunctionBodyParser:
    """Reads function bodies for the owning BitcodeReader."""

    def __init__(self, reader: 'BitcodeReader'):
        self.reader = reader
        self.function_bbs: List[BasicBlock] = []
        self.instruction_list: List[Instruction] = []

    @property
    def cursor(self):
        return self.reader.cursor

    # ========================================================================
    # Entry point
    # ========================================================================

    def parse_function_body(self, fn: Function) -> None:
        reader = self.reader
        value_list = reader.value_list
        md_list = reader.md_value_list
        module_values = len(value_list)
        module_mds = len(md_list)

        try:
            self._parse_body(fn, module_values, module_mds)
        except (BitcodeError, BitstreamError) as e:
            fn.delete_body()
            value_list.discard_pending()
            self._release_local_constants(module_values)
            cause = e
            if isinstance(e, BitstreamError):
                cause = StructuralError(ErrorKind.MALFORMED_BLOCK, str(e))
            logger.debug("function '%s' failed to decode: %s", fn.name, cause)
            raise FunctionBodyError(fn.name, cause) from e
        finally:
            value_list.shrink_to(module_values)
            md_list.shrink_to(module_mds)
            self.function_bbs = []
            self.instruction_list = []

    def _release_local_constants(self, start: int) -> None:
        value_list = self.reader.value_list
        # uniqued constants can also sit in module-level slots
        kept = {id(value_list[i]) for i in range(min(start, len(value_list)))}
        for index in range(len(value_list) - 1, start - 1, -1):
            value = value_list[index]
            if (isinstance(value, Constant) and value.context is not None and not value.uses
                    and id(value) not in kept):
                kept.add(id(value))
                value.destroy()

    # ========================================================================
    # Operand helpers
    # ========================================================================

    def _fn_value(self, value_id: int, type: Optional[Type]) -> Optional[Value]:
        if type is not None and type.is_metadata:
            return self.reader.md_value_list.get_value_fwd_ref(value_id)
        return self.reader.value_list.get_value_fwd_ref(value_id, type)

    def _value_type_pair(self, record: List[int], slot: int, inst_num: int) -> Tuple[Value, int]:
        if slot >= len(record):
            raise _invalid("missing operand")
        value_id = record[slot]
        slot += 1
        if value_id < inst_num:
            value = self._fn_value(value_id, None)
        else:
            # forward reference carries its type
            if slot >= len(record):
                raise _invalid("missing operand type")
            type = self.reader.get_type_by_id(record[slot])
            slot += 1
            if type is None:
                raise _invalid(f"type #{record[slot - 1]}")
            value = self._fn_value(value_id, type)
        if value is None:
            raise _invalid(f"value #{value_id}")
        return value, slot

    def _value(self, record: List[int], slot: int, type: Type) -> Tuple[Value, int]:
        if slot >= len(record):
            raise _invalid("missing operand")
        value = self._fn_value(record[slot], type)
        if value is None:
            raise _invalid(f"value #{record[slot]}")
        return value, slot + 1

    def _type(self, type_id: int) -> Type:
        type = self.reader.get_type_by_id(type_id)
        if type is None:
            raise _invalid(f"type #{type_id}")
        return type

    def _basic_block(self, index: int) -> BasicBlock:
        if index >= len(self.function_bbs):
            raise _invalid(f"basic block #{index}")
        return self.function_bbs[index]

    @staticmethod
    def _pointee(value: Value) -> Type:
        if not isinstance(value.type, PointerType):
            raise _invalid("operand is not a pointer")
        return value.type.pointee

    @staticmethod
    def _function_type(callee: Value) -> FunctionType:
        if not (isinstance(callee.type, PointerType)
                and isinstance(callee.type.pointee, FunctionType)):
            raise _invalid("callee is not a function pointer")
        return callee.type.pointee

    def _call_arguments(self, record: List[int], slot: int, fn_type: FunctionType,
                        inst_num: int, labels_allowed: bool) -> List[Value]:
        if len(record) < slot + len(fn_type.params):
            raise _invalid("too few call arguments")
        args = []
        for param in fn_type.params:
            if labels_allowed and param.is_label:
                args.append(self._basic_block(record[slot]))
            else:
                value = self._fn_value(record[slot], param)
                if value is None:
                    raise _invalid(f"call argument #{record[slot]}")
                args.append(value)
            slot += 1
        if not fn_type.var_arg:
            if slot != len(record):
                raise _invalid("too many call arguments")
        else:
            while slot != len(record):
                value, slot = self._value_type_pair(record, slot, inst_num)
                args.append(value)
        return args

    # ========================================================================
    # Body
    # ========================================================================

    def _last_instruction(self, cur_bb: Optional[BasicBlock], cur_bb_no: int) -> Optional[Instruction]:
        if cur_bb is not None and cur_bb.instructions:
            return cur_bb.instructions[-1]
        if cur_bb_no and self.function_bbs[cur_bb_no - 1].instructions:
            return self.function_bbs[cur_bb_no - 1].instructions[-1]
        return None

    def _parse_body(self, fn: Function, module_values: int, module_mds: int) -> None:
        reader = self.reader
        value_list = reader.value_list
        try:
            self.cursor.enter_sub_block(BlockId.FUNCTION)
        except BitstreamError as e:
            raise StructuralError(ErrorKind.INVALID_RECORD, str(e))

        self.instruction_list = []
        self.function_bbs = []
        next_value_no = len(value_list)
        for arg in fn.args:
            value_list.push_back(arg)
            next_value_no += 1

        cur_bb: Optional[BasicBlock] = None
        cur_bb_no = 0
        last_loc: Optional[DebugLoc] = None

        while True:
            entry = self.cursor.advance()
            if entry.kind == EntryKind.ERROR:
                raise StructuralError(ErrorKind.MALFORMED_BLOCK)
            if entry.kind == EntryKind.END_BLOCK:
                break

            if entry.kind == EntryKind.SUB_BLOCK:
                if entry.id == BlockId.CONSTANTS:
                    reader.constants.parse_constants()
                    next_value_no = len(value_list)
                elif entry.id == BlockId.VALUE_SYMTAB:
                    reader.parse_value_symbol_table()
                elif entry.id == BlockId.METADATA_ATTACHMENT:
                    reader.metadata.parse_metadata_attachment(self.instruction_list)
                elif entry.id == BlockId.METADATA:
                    reader.metadata.parse_metadata()
                else:
                    self.cursor.skip_block()
                continue

            code, record = self.cursor.read_record(entry.id)

            if code == FunctionCode.DECLAREBLOCKS:
                if not record or record[0] == 0:
                    raise _invalid("DECLAREBLOCKS")
                self.function_bbs = [BasicBlock(parent=fn) for _ in range(record[0])]
                fn.blocks = list(self.function_bbs)
                cur_bb = self.function_bbs[0]
                continue

            if code == FunctionCode.DEBUG_LOC_AGAIN:
                inst = self._last_instruction(cur_bb, cur_bb_no)
                if inst is None or last_loc is None:
                    raise _invalid("DEBUG_LOC_AGAIN without a location")
                inst.debug_loc = last_loc
                continue

            if code == FunctionCode.DEBUG_LOC:
                inst = self._last_instruction(cur_bb, cur_bb_no)
                if inst is None or len(record) < 4:
                    raise _invalid("DEBUG_LOC")
                md_list = reader.md_value_list
                scope = MetadataHandle(md_list.get_value_fwd_ref(record[2] - 1)) if record[2] else None
                inlined_at = MetadataHandle(md_list.get_value_fwd_ref(record[3] - 1)) if record[3] else None
                last_loc = DebugLoc(record[0], record[1], scope, inlined_at)
                inst.debug_loc = last_loc
                continue

            if code == FunctionCode.INST_UNWIND:
                inst = self._decode_unwind(fn, cur_bb)
            else:
                inst = self._decode_instruction(code, record, next_value_no)
            self.instruction_list.append(inst)

            if cur_bb is None:
                inst.drop_all_references()
                raise StructuralError(ErrorKind.INVALID_INSTRUCTION_WITH_NO_BB)
            cur_bb.append(inst)

            if inst.is_terminator:
                cur_bb_no += 1
                cur_bb = self.function_bbs[cur_bb_no] if cur_bb_no < len(self.function_bbs) else None

            if not inst.type.is_void:
                value_list.assign_value(inst, next_value_no)
                next_value_no += 1

        self._finish_body(fn, cur_bb_no, module_values, module_mds)

    def _finish_body(self, fn: Function, cur_bb_no: int, module_values: int, module_mds: int) -> None:
        reader = self.reader
        if not self.function_bbs:
            raise StructuralError(ErrorKind.MALFORMED_BLOCK, "function body without basic blocks")

        unresolved = reader.value_list.placeholders(module_values)
        if unresolved or reader.md_value_list.temporaries(module_mds):
            raise UnresolvedForwardReference(ErrorKind.NEVER_RESOLVED_VALUE_FOUND_IN_FUNCTION,
                                             f"value #{unresolved[0]}" if unresolved else "metadata")

        if cur_bb_no != len(self.function_bbs):
            raise _invalid(f"{len(self.function_bbs)} basic blocks but {cur_bb_no} terminators")

        refs = reader.block_addr_fwd_refs.get(fn)
        if refs:
            for block_index, _ in refs:
                if block_index >= len(self.function_bbs):
                    raise StructuralError(ErrorKind.INVALID_ID, f"blockaddress block #{block_index}")
            for block_index, placeholder in refs:
                address = BlockAddress(fn, self.function_bbs[block_index])
                placeholder.replace_all_uses_with(address)
                reader.value_list.replace_slot_value(placeholder, address)
                reader.module.remove_global_variable(placeholder)
            del reader.block_addr_fwd_refs[fn]

        logger.debug("decoded function '%s': %d blocks, %d instructions",
                     fn.name, len(self.function_bbs), len(self.instruction_list))

    def _decode_unwind(self, fn: Function, cur_bb: Optional[BasicBlock]) -> Instruction:
        """Legacy unwind becomes a cleanup landingpad feeding a resume."""
        if cur_bb is None:
            raise StructuralError(ErrorKind.INVALID_INSTRUCTION_WITH_NO_BB)
        module = self.reader.module
        exception_type = LiteralStructType((PointerType(I8), I32))
        personality = module.get_or_insert_function(
            "__gcc_personality_v0", FunctionType(I32, (), var_arg=True))
        landing_pad = Instruction(Opcode.LANDINGPAD, exception_type, [personality],
                                  cleanup=True, clauses=())
        cur_bb.append(landing_pad)
        return Instruction(Opcode.RESUME, VOID, [landing_pad])

    # ========================================================================
    # Instructions
    # ========================================================================

    def _decode_instruction(self, code: int, record: List[int], inst_num: int) -> Instruction:
        pair = self._value_type_pair
        value = self._value

        if code == FunctionCode.INST_BINOP:
            # [opval, ty, opval, opcode(, flags)]
            lhs, slot = pair(record, 0, inst_num)
            rhs, slot = value(record, slot, lhs.type)
            if slot + 1 > len(record):
                raise _invalid("BINOP")
            opcode = decode_binop(record[slot], lhs.type)
            if opcode is None:
                raise _invalid(f"binary opcode {record[slot]}")
            slot += 1
            flags = decode_binop_flags(opcode, record[slot]) if slot < len(record) else ()
            return Instruction(opcode, lhs.type, [lhs, rhs], flags=flags)

        if code == FunctionCode.INST_CAST:
            # [opval, opty, destty, castopc]
            operand, slot = pair(record, 0, inst_num)
            if slot + 2 != len(record):
                raise _invalid("CAST")
            dest_type = self._type(record[slot])
            opcode = decode_cast(record[slot + 1])
            if opcode is None:
                raise _invalid(f"cast opcode {record[slot + 1]}")
            return Instruction(opcode, dest_type, [operand])

        if code in (FunctionCode.INST_GEP, FunctionCode.INST_INBOUNDS_GEP):
            # [n x operands]
            base, slot = pair(record, 0, inst_num)
            indices = []
            while slot != len(record):
                index, slot = pair(record, slot, inst_num)
                indices.append(index)
            result_type = get_gep_result_type(base.type, indices)
            if result_type is None:
                raise _invalid("invalid getelementptr indices")
            return Instruction(Opcode.GETELEMENTPTR, result_type, [base] + indices,
                               inbounds=code == FunctionCode.INST_INBOUNDS_GEP)

        if code == FunctionCode.INST_EXTRACTVAL:
            # [opval, ty, indices...]
            aggregate, slot = pair(record, 0, inst_num)
            indices = tuple(record[slot:])
            result_type = get_indexed_type(aggregate.type, indices) if indices else None
            if result_type is None:
                raise _invalid("invalid extractvalue indices")
            return Instruction(Opcode.EXTRACTVALUE, result_type, [aggregate], indices=indices)

        if code == FunctionCode.INST_INSERTVAL:
            # [opval, ty, opval, ty, indices...]
            aggregate, slot = pair(record, 0, inst_num)
            element, slot = pair(record, slot, inst_num)
            indices = tuple(record[slot:])
            if not indices or get_indexed_type(aggregate.type, indices) is None:
                raise _invalid("invalid insertvalue indices")
            return Instruction(Opcode.INSERTVALUE, aggregate.type, [aggregate, element],
                               indices=indices)

        if code == FunctionCode.INST_SELECT:
            # obsolete form: [ty, opval, opval, opval]
            true_value, slot = pair(record, 0, inst_num)
            false_value, slot = value(record, slot, true_value.type)
            condition, slot = value(record, slot, I1)
            return Instruction(Opcode.SELECT, true_value.type, [condition, true_value, false_value])

        if code == FunctionCode.INST_VSELECT:
            # [ty, opval, opval, predty, pred]
            true_value, slot = pair(record, 0, inst_num)
            false_value, slot = value(record, slot, true_value.type)
            condition, slot = pair(record, slot, inst_num)
            cond_type = condition.type
            if isinstance(cond_type, VectorType):
                cond_type = cond_type.element
            if cond_type != I1:
                raise TypeMismatch(ErrorKind.INVALID_TYPE_FOR_VALUE, "select condition")
            return Instruction(Opcode.SELECT, true_value.type, [condition, true_value, false_value])

        if code == FunctionCode.INST_EXTRACTELT:
            # [opty, opval, opval]
            vector, slot = pair(record, 0, inst_num)
            index, slot = value(record, slot, I32)
            if not isinstance(vector.type, VectorType):
                raise _invalid("extractelement of non-vector")
            return Instruction(Opcode.EXTRACTELEMENT, vector.type.element, [vector, index])

        if code == FunctionCode.INST_INSERTELT:
            # [ty, opval, opval, opval]
            vector, slot = pair(record, 0, inst_num)
            if not isinstance(vector.type, VectorType):
                raise _invalid("insertelement into non-vector")
            element, slot = value(record, slot, vector.type.element)
            index, slot = value(record, slot, I32)
            return Instruction(Opcode.INSERTELEMENT, vector.type, [vector, element, index])

        if code == FunctionCode.INST_SHUFFLEVEC:
            # [ty, opval, opval, opval]
            first, slot = pair(record, 0, inst_num)
            second, slot = value(record, slot, first.type)
            mask, slot = pair(record, slot, inst_num)
            if not isinstance(first.type, VectorType) or not isinstance(mask.type, VectorType):
                raise _invalid("shufflevector operands")
            result_type = VectorType(first.type.element, mask.type.count)
            return Instruction(Opcode.SHUFFLEVECTOR, result_type, [first, second, mask])

        if code in (FunctionCode.INST_CMP, FunctionCode.INST_CMP2):
            # [opty, opval, opval, pred]
            lhs, slot = pair(record, 0, inst_num)
            rhs, slot = value(record, slot, lhs.type)
            if slot + 1 != len(record):
                raise _invalid("CMP")
            opcode = Opcode.FCMP if lhs.type.is_fp_or_fp_vector else Opcode.ICMP
            return Instruction(opcode, cmp_result_type(lhs.type), [lhs, rhs], predicate=record[slot])

        if code == FunctionCode.INST_RET:
            # [opty, opval]
            if not record:
                return Instruction(Opcode.RET, VOID)
            result, slot = pair(record, 0, inst_num)
            if slot != len(record):
                raise _invalid("RET")
            return Instruction(Opcode.RET, VOID, [result])

        if code == FunctionCode.INST_BR:
            # [bb#, bb#, cond] or [bb#]
            if len(record) not in (1, 3):
                raise _invalid("BR")
            true_dest = self._basic_block(record[0])
            if len(record) == 1:
                return Instruction(Opcode.BR, VOID, [true_dest])
            false_dest = self._basic_block(record[1])
            condition = self._fn_value(record[2], I1)
            return Instruction(Opcode.BR, VOID, [condition, true_dest, false_dest])

        if code == FunctionCode.INST_SWITCH:
            # [opty, op0, op1, ...]
            if len(record) < 3 or not len(record) & 1:
                raise _invalid("SWITCH")
            op_type = self._type(record[0])
            condition = self._fn_value(record[1], op_type)
            operands = [condition, self._basic_block(record[2])]
            for i in range(3, len(record), 2):
                case_value = self._fn_value(record[i], op_type)
                if not isinstance(case_value, Constant):
                    raise _invalid("switch case is not a constant")
                operands.extend([case_value, self._basic_block(record[i + 1])])
            return Instruction(Opcode.SWITCH, VOID, operands)

        if code == FunctionCode.INST_INDIRECTBR:
            # [opty, op0, op1, ...]
            if len(record) < 2:
                raise _invalid("INDIRECTBR")
            op_type = self._type(record[0])
            address = self._fn_value(record[1], op_type)
            destinations = [self._basic_block(r) for r in record[2:]]
            return Instruction(Opcode.INDIRECTBR, VOID, [address] + destinations)

        if code == FunctionCode.INST_INVOKE:
            # [attrs, cc, normbb, unwindbb, fnty, fnid, args...]
            if len(record) < 4:
                raise _invalid("INVOKE")
            attributes = self.reader.attributes.get_attributes(record[0])
            normal = self._basic_block(record[2])
            unwind = self._basic_block(record[3])
            callee, slot = pair(record, 4, inst_num)
            fn_type = self._function_type(callee)
            args = self._call_arguments(record, slot, fn_type, inst_num, labels_allowed=False)
            return Instruction(Opcode.INVOKE, fn_type.return_type, [callee, normal, unwind] + args,
                               cc=record[1], attributes=attributes)

        if code == FunctionCode.INST_RESUME:
            exception, slot = pair(record, 0, inst_num)
            if slot != len(record):
                raise _invalid("RESUME")
            return Instruction(Opcode.RESUME, VOID, [exception])

        if code == FunctionCode.INST_UNREACHABLE:
            return Instruction(Opcode.UNREACHABLE, VOID)

        if code == FunctionCode.INST_PHI:
            # [ty, val0, bb0, ...]
            if not record or (len(record) - 1) & 1:
                raise _invalid("PHI")
            type = self._type(record[0])
            operands = []
            for i in range(1, len(record), 2):
                incoming = self._fn_value(record[i], type)
                if incoming is None:
                    raise _invalid(f"phi value #{record[i]}")
                operands.extend([incoming, self._basic_block(record[i + 1])])
            return Instruction(Opcode.PHI, type, operands)

        if code == FunctionCode.INST_LANDINGPAD:
            # [ty, val, val, num, (id0, val0) ...]
            if len(record) < 4:
                raise _invalid("LANDINGPAD")
            type = self._type(record[0])
            personality, slot = pair(record, 1, inst_num)
            if slot + 2 > len(record):
                raise _invalid("LANDINGPAD")
            cleanup = bool(record[slot])
            num_clauses = record[slot + 1]
            slot += 2
            operands = [personality]
            clauses = []
            for _ in range(num_clauses):
                if slot >= len(record):
                    raise _invalid("LANDINGPAD clause")
                kind = record[slot]
                if kind not in (LandingPadClause.CATCH, LandingPadClause.FILTER):
                    raise _invalid(f"landingpad clause kind {kind}")
                clause, slot = pair(record, slot + 1, inst_num)
                clauses.append("catch" if kind == LandingPadClause.CATCH else "filter")
                operands.append(clause)
            return Instruction(Opcode.LANDINGPAD, type, operands,
                               cleanup=cleanup, clauses=tuple(clauses))

        if code == FunctionCode.INST_ALLOCA:
            # [instty, opty, op, align]
            if len(record) != 4:
                raise _invalid("ALLOCA")
            result_type = self._type(record[0])
            size = self._fn_value(record[2], self._type(record[1]))
            if size is None or not isinstance(result_type, PointerType):
                raise _invalid("ALLOCA")
            return Instruction(Opcode.ALLOCA, result_type, [size],
                               allocated_type=result_type.pointee,
                               alignment=decode_alignment(record[3]))

        if code == FunctionCode.INST_LOAD:
            # [op, opty, align, vol]
            pointer, slot = pair(record, 0, inst_num)
            if slot + 2 != len(record):
                raise _invalid("LOAD")
            return Instruction(Opcode.LOAD, self._pointee(pointer), [pointer],
                               alignment=decode_alignment(record[slot]),
                               volatile=bool(record[slot + 1]))

        if code == FunctionCode.INST_LOADATOMIC:
            # [op, opty, align, vol, ordering, synchscope]
            pointer, slot = pair(record, 0, inst_num)
            if slot + 4 != len(record):
                raise _invalid("LOADATOMIC")
            ordering = decode_ordering(record[slot + 2])
            if ordering in ("notatomic", "release", "acq_rel"):
                raise _invalid(f"atomic load with {ordering} ordering")
            if record[slot] == 0:
                raise _invalid("atomic load without alignment")
            return Instruction(Opcode.LOAD, self._pointee(pointer), [pointer],
                               alignment=decode_alignment(record[slot]),
                               volatile=bool(record[slot + 1]),
                               ordering=ordering, scope=decode_synch_scope(record[slot + 3]))

        if code == FunctionCode.INST_STORE:
            # [ptrty, ptr, val, align, vol]
            pointer, slot = pair(record, 0, inst_num)
            stored, slot = value(record, slot, self._pointee(pointer))
            if slot + 2 != len(record):
                raise _invalid("STORE")
            return Instruction(Opcode.STORE, VOID, [stored, pointer],
                               alignment=decode_alignment(record[slot]),
                               volatile=bool(record[slot + 1]))

        if code == FunctionCode.INST_STOREATOMIC:
            # [ptrty, ptr, val, align, vol, ordering, synchscope]
            pointer, slot = pair(record, 0, inst_num)
            stored, slot = value(record, slot, self._pointee(pointer))
            if slot + 4 != len(record):
                raise _invalid("STOREATOMIC")
            ordering = decode_ordering(record[slot + 2])
            if ordering in ("notatomic", "acquire", "acq_rel"):
                raise _invalid(f"atomic store with {ordering} ordering")
            if record[slot] == 0:
                raise _invalid("atomic store without alignment")
            return Instruction(Opcode.STORE, VOID, [stored, pointer],
                               alignment=decode_alignment(record[slot]),
                               volatile=bool(record[slot + 1]),
                               ordering=ordering, scope=decode_synch_scope(record[slot + 3]))

        if code == FunctionCode.INST_CMPXCHG:
            # [ptrty, ptr, cmp, new, vol, ordering, synchscope]
            pointer, slot = pair(record, 0, inst_num)
            pointee = self._pointee(pointer)
            expected, slot = value(record, slot, pointee)
            replacement, slot = value(record, slot, pointee)
            if slot + 3 != len(record):
                raise _invalid("CMPXCHG")
            ordering = decode_ordering(record[slot + 1])
            if ordering in ("notatomic", "unordered"):
                raise _invalid(f"cmpxchg with {ordering} ordering")
            return Instruction(Opcode.CMPXCHG, pointee, [pointer, expected, replacement],
                               volatile=bool(record[slot]), ordering=ordering,
                               scope=decode_synch_scope(record[slot + 2]))

        if code == FunctionCode.INST_ATOMICRMW:
            # [ptrty, ptr, val, operation, vol, ordering, synchscope]
            pointer, slot = pair(record, 0, inst_num)
            pointee = self._pointee(pointer)
            operand, slot = value(record, slot, pointee)
            if slot + 4 != len(record):
                raise _invalid("ATOMICRMW")
            if record[slot] > RMWCode.UMIN:
                raise _invalid(f"atomicrmw operation {record[slot]}")
            ordering = decode_ordering(record[slot + 2])
            if ordering in ("notatomic", "unordered"):
                raise _invalid(f"atomicrmw with {ordering} ordering")
            return Instruction(Opcode.ATOMICRMW, pointee, [pointer, operand],
                               op=RMW_OPS[record[slot]], volatile=bool(record[slot + 1]),
                               ordering=ordering, scope=decode_synch_scope(record[slot + 3]))

        if code == FunctionCode.INST_FENCE:
            # [ordering, synchscope]
            if len(record) != 2:
                raise _invalid("FENCE")
            ordering = decode_ordering(record[0])
            if ordering in ("notatomic", "unordered", "monotonic"):
                raise _invalid(f"fence with {ordering} ordering")
            return Instruction(Opcode.FENCE, VOID, ordering=ordering,
                               scope=decode_synch_scope(record[1]))

        if code == FunctionCode.INST_CALL:
            # [paramattrs, cc, fnty, fnid, args...]
            if len(record) < 3:
                raise _invalid("CALL")
            attributes = self.reader.attributes.get_attributes(record[0])
            cc_info = record[1]
            callee, slot = pair(record, 2, inst_num)
            fn_type = self._function_type(callee)
            args = self._call_arguments(record, slot, fn_type, inst_num, labels_allowed=True)
            return Instruction(Opcode.CALL, fn_type.return_type, [callee] + args,
                               cc=cc_info >> 1, tail=bool(cc_info & 1), attributes=attributes)

        if code == FunctionCode.INST_VAARG:
            # [valistty, valist, instty]
            if len(record) < 3:
                raise _invalid("VAARG")
            va_list = self._fn_value(record[1], self._type(record[0]))
            result_type = self._type(record[2])
            if va_list is None:
                raise _invalid("VAARG")
            return Instruction(Opcode.VAARG, result_type, [va_list])

        raise StructuralError(ErrorKind.INVALID_VALUE, f"unknown instruction code {code}")
