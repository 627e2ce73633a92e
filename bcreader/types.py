"""
Type Table

Types are numbered in the order their records appear. A record may refer to
a later entry only when that entry is a named struct: the reference creates
an opaque StructType in the slot, and the STRUCT_NAMED record later fills in
that same object.

Two block formats are read:
    TYPE_BLOCK_ID_NEW (17)  - single pass, forward refs only to named structs
    TYPE_BLOCK_ID_OLD (10)  - legacy; arbitrary forward refs, decoded by
                              re-reading the block while passes make progress
plus the legacy TYPE_SYMTAB block that names structs after the fact.
"""

import logging
from typing import TYPE_CHECKING, List, Optional

from bitstream import BitstreamError, EntryKind, ENTER_SUBBLOCK, END_BLOCK, DEFINE_ABBREV
from bcreader.codes import BlockId, TypeCode, TYPE_CODE_STRUCT_OLD, TST_CODE_ENTRY
from bcreader.errors import (
    DuplicateDefinitionError, ErrorKind, StructuralError,
)
from ir_nodes import (
    Type, StructType, IntegerType, PointerType, ArrayType, VectorType,
    FunctionType, LiteralStructType,
    VOID, HALF, FLOAT, DOUBLE, X86_FP80, FP128, PPC_FP128, LABEL, METADATA, X86_MMX,
)

if TYPE_CHECKING:
    from bcreader.core import BitcodeReader

logger = logging.getLogger(__name__)


_PRIMITIVES = {
    TypeCode.VOID: VOID,
    TypeCode.FLOAT: FLOAT,
    TypeCode.DOUBLE: DOUBLE,
    TypeCode.X86_FP80: X86_FP80,
    TypeCode.FP128: FP128,
    TypeCode.PPC_FP128: PPC_FP128,
    TypeCode.LABEL: LABEL,
    TypeCode.METADATA: METADATA,
    TypeCode.X86_MMX: X86_MMX,
}


def record_string(record: List[int], start: int = 0) -> str:
    """Characters of a record (one per field) as a string."""
    try:
        return bytes(record[start:]).decode("utf-8", errors="surrogateescape")
    except ValueError:
        raise StructuralError(ErrorKind.INVALID_RECORD, "character out of range")


class TypeTable:
    """The numbered type entries of one module."""

    def __init__(self):
        self.entries: List[Optional[Type]] = []
        self._sized = False

    def __len__(self):
        return len(self.entries)

    @property
    def is_sized(self) -> bool:
        return self._sized

    def __getitem__(self, index: int) -> Optional[Type]:
        return self.entries[index]

    def record_num_entries(self, count: int) -> None:
        if self._sized:
            raise DuplicateDefinitionError(ErrorKind.INVALID_TYPE_TABLE, "second NUMENTRY record")
        self.entries = [None] * count
        self._sized = True

    def get_or_create_forward_ref(self, index: int) -> Optional[Type]:
        """
        The type at index, or None if out of range. An empty slot can only be
        a named struct defined later, so it gets an opaque placeholder.
        """
        if index >= len(self.entries):
            return None
        entry = self.entries[index]
        if entry is None:
            entry = StructType()
            self.entries[index] = entry
        return entry

    def get_or_null(self, index: int) -> Optional[Type]:
        """Legacy lookup: grows the table and never creates placeholders."""
        if index >= len(self.entries):
            self.entries.extend([None] * (index + 1 - len(self.entries)))
        return self.entries[index]

    def take_named_struct(self, index: int, name: str) -> StructType:
        """The struct to give a body at index: a pending placeholder or a new one."""
        if index >= len(self.entries):
            raise StructuralError(ErrorKind.INVALID_TYPE_TABLE, f"type #{index} past NUMENTRY")
        entry = self.entries[index]
        if entry is None:
            struct_type = StructType(name)
        elif isinstance(entry, StructType) and entry.is_opaque:
            struct_type = entry
            struct_type.name = name
        else:
            raise DuplicateDefinitionError(ErrorKind.INVALID_TYPE_TABLE, f"type #{index} redefined")
        self.entries[index] = None
        return struct_type

    def define_type(self, index: int, type: Type) -> None:
        if index >= len(self.entries):
            raise StructuralError(ErrorKind.INVALID_TYPE_TABLE, f"type #{index} past NUMENTRY")
        entry = self.entries[index]
        if entry is not None and entry is not type:
            if isinstance(entry, StructType) and entry.is_opaque:
                raise StructuralError(ErrorKind.INVALID_TYPE_TABLE,
                                      f"forward reference to non-struct type #{index}")
            raise DuplicateDefinitionError(ErrorKind.INVALID_TYPE_TABLE, f"type #{index} redefined")
        self.entries[index] = type


class TypeTableParser:
    """Decodes TYPE blocks into the reader's TypeTable."""

    def __init__(self, reader: 'BitcodeReader'):
        self.reader = reader

    @property
    def table(self) -> TypeTable:
        return self.reader.type_table

    @property
    def cursor(self):
        return self.reader.cursor

    def _enter(self, block_id: int) -> None:
        if self.table.entries:
            raise DuplicateDefinitionError(ErrorKind.INVALID_MULTIPLE_BLOCKS, "type table")
        try:
            self.cursor.enter_sub_block(block_id)
        except BitstreamError as e:
            raise StructuralError(ErrorKind.INVALID_RECORD, str(e))

    # ========================================================================
    # New format
    # ========================================================================

    def parse_type_table(self) -> None:
        self._enter(BlockId.TYPE_NEW)
        table = self.table
        num_records = 0
        type_name = ""

        while True:
            entry = self.cursor.advance_skipping_subblocks()
            if entry.kind == EntryKind.ERROR:
                raise StructuralError(ErrorKind.MALFORMED_BLOCK)
            if entry.kind == EntryKind.END_BLOCK:
                if num_records != len(table):
                    raise StructuralError(
                        ErrorKind.INVALID_TYPE_TABLE,
                        f"{num_records} types defined, NUMENTRY said {len(table)}")
                logger.debug("type table: %d entries", num_records)
                return

            code, record = self.cursor.read_record(entry.id)
            result: Optional[Type] = None

            if code == TypeCode.NUMENTRY:
                if len(record) < 1:
                    raise StructuralError(ErrorKind.INVALID_RECORD)
                table.record_num_entries(record[0])
                continue
            elif code in _PRIMITIVES:
                result = _PRIMITIVES[code]
            elif code == TypeCode.HALF:
                result = HALF
            elif code == TypeCode.INTEGER:
                if len(record) < 1:
                    raise StructuralError(ErrorKind.INVALID_RECORD)
                result = IntegerType(record[0])
            elif code == TypeCode.POINTER:
                if len(record) < 1:
                    raise StructuralError(ErrorKind.INVALID_RECORD)
                address_space = record[1] if len(record) == 2 else 0
                pointee = self._type(record[0])
                result = PointerType(pointee, address_space)
            elif code == TypeCode.FUNCTION_OLD:
                # [vararg, attrid, retty, paramty x N]
                if len(record) < 3:
                    raise StructuralError(ErrorKind.INVALID_RECORD)
                params = [self._type(t) for t in record[3:]]
                result = FunctionType(self._type(record[2]), tuple(params), bool(record[0]))
            elif code == TypeCode.FUNCTION:
                # [vararg, retty, paramty x N]
                if len(record) < 2:
                    raise StructuralError(ErrorKind.INVALID_RECORD)
                params = [self._type(t) for t in record[2:]]
                result = FunctionType(self._type(record[1]), tuple(params), bool(record[0]))
            elif code == TypeCode.STRUCT_ANON:
                if len(record) < 1:
                    raise StructuralError(ErrorKind.INVALID_RECORD)
                elements = [self._type(t) for t in record[1:]]
                result = LiteralStructType(tuple(elements), bool(record[0]))
            elif code == TypeCode.STRUCT_NAME:
                type_name = record_string(record)
                continue
            elif code == TypeCode.STRUCT_NAMED:
                if len(record) < 1:
                    raise StructuralError(ErrorKind.INVALID_RECORD)
                struct_type = table.take_named_struct(num_records, type_name)
                type_name = ""
                elements = [self._type(t) for t in record[1:]]
                struct_type.set_body(elements, bool(record[0]))
                result = struct_type
            elif code == TypeCode.OPAQUE:
                if len(record) != 1:
                    raise StructuralError(ErrorKind.INVALID_RECORD)
                result = table.take_named_struct(num_records, type_name)
                type_name = ""
            elif code == TypeCode.ARRAY:
                if len(record) < 2:
                    raise StructuralError(ErrorKind.INVALID_RECORD)
                result = ArrayType(self._type(record[1]), record[0])
            elif code == TypeCode.VECTOR:
                if len(record) < 2:
                    raise StructuralError(ErrorKind.INVALID_RECORD)
                result = VectorType(self._type(record[1]), record[0])
            else:
                raise StructuralError(ErrorKind.INVALID_VALUE, f"unknown type code {code}")

            if num_records >= len(table):
                raise StructuralError(ErrorKind.INVALID_TYPE_TABLE, "more types than NUMENTRY")
            table.define_type(num_records, result)
            num_records += 1

    def _type(self, index: int) -> Type:
        type = self.table.get_or_create_forward_ref(index)
        if type is None:
            raise StructuralError(ErrorKind.INVALID_TYPE, f"type #{index}")
        return type

    # ========================================================================
    # Legacy format
    # ========================================================================

    def parse_old_type_table(self) -> None:
        """
        Legacy table: entries may reference any later entry. Each pass
        defines whatever has all of its operands available; the block is
        re-read from its start until everything is defined, and a pass that
        defines nothing new is an error.
        """
        self._enter(BlockId.TYPE_OLD)
        table = self.table
        start_of_block = self.cursor.clone()
        num_types_read = 0
        next_type_id = 0
        read_any_types = False
        passes = 1

        while True:
            code = self.cursor.read_code()
            if code == END_BLOCK:
                if next_type_id != len(table):
                    raise StructuralError(ErrorKind.INVALID_TYPE_TABLE,
                                          f"{next_type_id} types read, NUMENTRY said {len(table)}")
                if num_types_read != len(table):
                    if not read_any_types:
                        raise StructuralError(ErrorKind.INVALID_TYPE_TABLE,
                                              "pass resolved no new types")
                    passes += 1
                    self.reader.cursor = start_of_block.clone()
                    next_type_id = 0
                    read_any_types = False
                    continue
                try:
                    self.cursor.read_block_end()
                except BitstreamError:
                    raise StructuralError(ErrorKind.INVALID_TYPE_TABLE)
                logger.debug("legacy type table: %d entries in %d passes", num_types_read, passes)
                return

            if code == ENTER_SUBBLOCK:
                self.cursor.read_sub_block_id()
                try:
                    self.cursor.skip_block()
                except BitstreamError:
                    raise StructuralError(ErrorKind.MALFORMED_BLOCK)
                continue
            if code == DEFINE_ABBREV:
                self.cursor.read_abbrev_record()
                continue

            type_code, record = self.cursor.read_record(code)
            result: Optional[Type] = None

            if type_code == TypeCode.NUMENTRY:
                if len(record) < 1:
                    raise StructuralError(ErrorKind.INVALID_TYPE_TABLE)
                # the count record is seen again on every pass
                if not table.is_sized:
                    table.record_num_entries(record[0])
                continue
            elif type_code in _PRIMITIVES:
                result = _PRIMITIVES[type_code]
            elif type_code == TypeCode.INTEGER:
                if len(record) < 1:
                    raise StructuralError(ErrorKind.INVALID_TYPE_TABLE)
                result = IntegerType(record[0])
            elif type_code == TypeCode.OPAQUE:
                if next_type_id < len(table) and table[next_type_id] is None:
                    result = StructType()
            elif type_code == TYPE_CODE_STRUCT_OLD:
                # [ispacked, eltty x N]
                if next_type_id >= len(table):
                    raise StructuralError(ErrorKind.INVALID_TYPE_TABLE)
                if len(record) < 1:
                    raise StructuralError(ErrorKind.INVALID_TYPE_TABLE)
                existing = table[next_type_id]
                if isinstance(existing, StructType) and not existing.is_opaque:
                    next_type_id += 1
                    continue
                if table[next_type_id] is None:
                    table.entries[next_type_id] = StructType()
                elements = [table.get_or_null(t) for t in record[1:]]
                if None not in elements:
                    struct_type = table.entries[next_type_id]
                    table.entries[next_type_id] = None
                    if struct_type.is_opaque:
                        struct_type.set_body(elements, bool(record[0]))
                    result = struct_type
            elif type_code == TypeCode.POINTER:
                if len(record) < 1:
                    raise StructuralError(ErrorKind.INVALID_TYPE_TABLE)
                address_space = record[1] if len(record) == 2 else 0
                pointee = table.get_or_null(record[0])
                if pointee is not None:
                    result = PointerType(pointee, address_space)
            elif type_code == TypeCode.FUNCTION_OLD:
                # [vararg, attrid, retty, paramty x N]
                if len(record) < 3:
                    raise StructuralError(ErrorKind.INVALID_TYPE_TABLE)
                params = [table.get_or_null(t) for t in record[3:]]
                return_type = table.get_or_null(record[2])
                if return_type is not None and None not in params:
                    result = FunctionType(return_type, tuple(params), bool(record[0]))
            elif type_code == TypeCode.FUNCTION:
                # [vararg, retty, paramty x N]
                if len(record) < 2:
                    raise StructuralError(ErrorKind.INVALID_TYPE_TABLE)
                params = [table.get_or_null(t) for t in record[2:]]
                return_type = table.get_or_null(record[1])
                if return_type is not None and None not in params:
                    result = FunctionType(return_type, tuple(params), bool(record[0]))
            elif type_code == TypeCode.ARRAY:
                if len(record) < 2:
                    raise StructuralError(ErrorKind.INVALID_TYPE_TABLE)
                element = table.get_or_null(record[1])
                if element is not None:
                    result = ArrayType(element, record[0])
            elif type_code == TypeCode.VECTOR:
                if len(record) < 2:
                    raise StructuralError(ErrorKind.INVALID_TYPE_TABLE)
                element = table.get_or_null(record[1])
                if element is not None:
                    result = VectorType(element, record[0])
            else:
                raise StructuralError(ErrorKind.INVALID_TYPE_TABLE, f"unknown type code {type_code}")

            if next_type_id >= len(table):
                raise StructuralError(ErrorKind.INVALID_TYPE_TABLE, "more types than NUMENTRY")

            if result is not None and table[next_type_id] is None:
                num_types_read += 1
                read_any_types = True
                table.entries[next_type_id] = result
            next_type_id += 1

    def parse_old_type_symbol_table(self) -> None:
        try:
            self.cursor.enter_sub_block(BlockId.TYPE_SYMTAB_OLD)
        except BitstreamError as e:
            raise StructuralError(ErrorKind.INVALID_RECORD, str(e))

        while True:
            entry = self.cursor.advance_skipping_subblocks()
            if entry.kind == EntryKind.ERROR:
                raise StructuralError(ErrorKind.MALFORMED_BLOCK)
            if entry.kind == EntryKind.END_BLOCK:
                return

            code, record = self.cursor.read_record(entry.id)
            if code == TST_CODE_ENTRY:
                # [typeid, namechar x N]
                if len(record) < 1:
                    raise StructuralError(ErrorKind.INVALID_RECORD)
                type_id = record[0]
                if type_id >= len(self.table):
                    raise StructuralError(ErrorKind.INVALID_RECORD, f"type #{type_id}")
                struct_type = self.table[type_id]
                if isinstance(struct_type, StructType) and not struct_type.name:
                    struct_type.name = record_string(record, 1)
