"""
Bitcode Reader

BitcodeReader is the decode session for one container: it owns the cursor,
the type/value/metadata tables and the module being filled, and hands itself
to the per-block decoders (attributes, types, constants, metadata, function
bodies) as `reader`.

Module decoding:
    - one MODULE block per container, sub-blocks dispatched by id
    - global initializers and alias targets are queued by value id and
      resolved whenever a constants block completes
    - function bodies are not decoded during the module pass; their bit
      offsets are remembered and the body is read when the function is
      materialized
    - with a streaming source, the module pass suspends at the first function
      body seen after the module value symbol table and resumes on demand

The reader is also the module's materializer (see Module.materialize).
"""

import logging
from dataclasses import dataclass, replace
from typing import Dict, Iterable, List, Optional, Tuple

from bitstream import (
    AF_DONT_AUTOPROCESS_ABBREVS, BitstreamCursor, BitstreamError, BitstreamReader,
    EntryKind, MemoryObject, StreamingMemoryObject, WRAPPER_HEADER_SIZE,
    is_bitcode, is_bitcode_wrapper, read_wrapper_header, strip_wrapper_header,
)
from bcreader.attributes import AttributeTable
from bcreader.codes import (
    BlockId, ModuleCode, ValueSymtabCode,
    decode_alignment, decode_linkage, decode_tls_mode, decode_visibility,
)
from bcreader.constants import ConstantsParser
from bcreader.errors import (
    BitcodeError, DuplicateDefinitionError, ErrorKind, ForwardReferenceError, SignatureError,
    StructuralError, TypeMismatch, UnresolvedWorklistError,
)
from bcreader.functions import FunctionBodyParser
from bcreader.metadata import MetadataParser
from bcreader.types import TypeTable, TypeTableParser, record_string
from bcreader.upgrade import upgrade_calls_to, upgrade_intrinsic_function
from bcreader.values import MDValueList, ValueList
from ir_nodes import (
    Constant, ConstantExpr, ConstantInt, ConstantNull, Context, Function, FunctionType,
    GlobalAlias, GlobalValue, GlobalVariable, Module, Opcode, PointerType, Type, Value,
)

logger = logging.getLogger(__name__)


STREAM_CHUNK_SIZE = 4096


@dataclass
class ReaderOptions:
    """How a container is decoded."""
    lazy: bool = False                 # defer function bodies until materialized
    streaming: bool = False            # pull bytes on demand, suspend at function bodies
    upgrade_intrinsics: bool = True    # rewrite outdated intrinsic declarations and calls


class BitcodeReader:
    """Decode session for one bitcode container."""

    def __init__(self, memory: MemoryObject, context: Optional[Context] = None,
                 options: Optional[ReaderOptions] = None):
        self.options = options or ReaderOptions()
        self.stream = BitstreamReader(memory)
        self.cursor = BitstreamCursor(self.stream)
        self.context = context or Context()
        self.module: Optional[Module] = None

        # Tables
        self.type_table = TypeTable()
        self.value_list = ValueList(self.context)
        self.md_value_list = MDValueList()

        # Block decoders
        self.attributes = AttributeTable(self)
        self.types = TypeTableParser(self)
        self.constants = ConstantsParser(self)
        self.metadata = MetadataParser(self)
        self.function_bodies = FunctionBodyParser(self)

        # Module pass state
        self.section_table: List[str] = []
        self.gc_table: List[str] = []
        self.global_inits: List[Tuple[GlobalVariable, int]] = []
        self.alias_inits: List[Tuple[GlobalAlias, int]] = []
        self.functions_with_bodies: List[Function] = []
        self.deferred_function_info: Dict[Function, int] = {}
        self.block_addr_fwd_refs: Dict[Function, List[Tuple[int, GlobalVariable]]] = {}
        self.upgraded_intrinsics: Dict[Function, Function] = {}
        self.seen_module_block = False
        self.seen_value_symbol_table = False
        self.seen_first_function_body = False
        self.module_parse_done = False
        self.next_unread_bit = 0

    @property
    def streaming(self) -> bool:
        return self.options.streaming

    def get_type_by_id(self, type_id: int) -> Optional[Type]:
        return self.type_table.get_or_create_forward_ref(type_id)

    # ========================================================================
    # Container
    # ========================================================================

    def _read_signature(self) -> None:
        cursor = self.cursor
        try:
            valid = (cursor.read(8) == ord("B") and cursor.read(8) == ord("C")
                     and cursor.read(4) == 0x0 and cursor.read(4) == 0xC
                     and cursor.read(4) == 0xE and cursor.read(4) == 0xD)
        except BitstreamError:
            valid = False
        if not valid:
            raise SignatureError(ErrorKind.INVALID_BITCODE_SIGNATURE)

    def parse_bitcode_into(self, module: Module) -> None:
        """Decode the top level of the container into module."""
        cursor = self.cursor
        self.module = module
        self._read_signature()

        while True:
            if cursor.at_end_of_stream():
                return
            entry = cursor.advance(AF_DONT_AUTOPROCESS_ABBREVS)

            if entry.kind == EntryKind.ERROR:
                raise StructuralError(ErrorKind.MALFORMED_BLOCK)
            if entry.kind == EntryKind.END_BLOCK:
                return

            if entry.kind == EntryKind.SUB_BLOCK:
                if entry.id == BlockId.BLOCKINFO:
                    cursor.read_block_info_block()
                elif entry.id == BlockId.MODULE:
                    if self.seen_module_block:
                        raise DuplicateDefinitionError(ErrorKind.INVALID_MULTIPLE_BLOCKS, "module")
                    self.seen_module_block = True
                    self.parse_module(resume=False)
                    if self.streaming:
                        return
                else:
                    logger.warning("skipping unknown top-level block %d", entry.id)
                    cursor.skip_block()
                continue

            # Some archivers pad members to 8 bytes with a 4-byte record-like tail
            if (cursor.code_size == 2 and entry.id == 2
                    and cursor.read(6) == 2 and cursor.read(24) == 0xA0A0A
                    and cursor.at_end_of_stream()):
                logger.warning("ignoring trailing padding after module block")
                return
            raise StructuralError(ErrorKind.INVALID_RECORD, "record at top level")

    def read_target_triple_only(self) -> str:
        """Read the target triple without decoding the rest of the module."""
        cursor = self.cursor
        self._read_signature()
        while True:
            if cursor.at_end_of_stream():
                return ""
            entry = cursor.advance()
            if entry.kind == EntryKind.ERROR:
                raise StructuralError(ErrorKind.MALFORMED_BLOCK)
            if entry.kind == EntryKind.END_BLOCK:
                return ""
            if entry.kind == EntryKind.SUB_BLOCK:
                if entry.id == BlockId.MODULE:
                    return self._parse_module_triple()
                cursor.skip_block()
                continue
            cursor.skip_record(entry.id)

    def _parse_module_triple(self) -> str:
        try:
            self.cursor.enter_sub_block(BlockId.MODULE)
        except BitstreamError as e:
            raise StructuralError(ErrorKind.INVALID_RECORD, str(e))
        triple = ""
        while True:
            entry = self.cursor.advance_skipping_subblocks()
            if entry.kind == EntryKind.ERROR:
                raise StructuralError(ErrorKind.MALFORMED_BLOCK)
            if entry.kind == EntryKind.END_BLOCK:
                return triple
            code, record = self.cursor.read_record(entry.id)
            if code == ModuleCode.TRIPLE:
                triple = record_string(record)

    # ========================================================================
    # Module block
    # ========================================================================

    def parse_module(self, resume: bool = False) -> None:
        cursor = self.cursor
        if resume:
            cursor.jump_to_bit(self.next_unread_bit)
        else:
            try:
                cursor.enter_sub_block(BlockId.MODULE)
            except BitstreamError as e:
                raise StructuralError(ErrorKind.INVALID_RECORD, str(e))
            logger.debug("entered module block")

        while True:
            entry = cursor.advance()

            if entry.kind == EntryKind.ERROR:
                raise StructuralError(ErrorKind.MALFORMED_BLOCK)
            if entry.kind == EntryKind.END_BLOCK:
                self.module_parse_done = True
                self.global_cleanup()
                return

            if entry.kind == EntryKind.SUB_BLOCK:
                if self._parse_module_sub_block(entry.id):
                    return
                continue

            code, record = cursor.read_record(entry.id)
            self._parse_module_record(code, record)

    def _parse_module_sub_block(self, block_id: int) -> bool:
        """Decode one module sub-block. Returns True when the module pass suspends."""
        cursor = self.cursor
        logger.debug("module sub-block %d at bit %d", block_id, cursor.current_bit_no)

        if block_id == BlockId.BLOCKINFO:
            cursor.read_block_info_block()
        elif block_id == BlockId.PARAMATTR:
            self.attributes.parse_block()
        elif block_id == BlockId.TYPE_NEW:
            self.types.parse_type_table()
        elif block_id == BlockId.TYPE_OLD:
            self.types.parse_old_type_table()
        elif block_id == BlockId.TYPE_SYMTAB_OLD:
            self.types.parse_old_type_symbol_table()
        elif block_id == BlockId.VALUE_SYMTAB:
            self.parse_value_symbol_table()
            self.seen_value_symbol_table = True
        elif block_id == BlockId.CONSTANTS:
            self.constants.parse_constants()
            self.resolve_global_and_alias_inits()
        elif block_id == BlockId.METADATA:
            self.metadata.parse_metadata()
        elif block_id == BlockId.FUNCTION:
            if not self.seen_first_function_body:
                self.functions_with_bodies.reverse()
                self.global_cleanup()
                self.seen_first_function_body = True
            self._remember_and_skip_function_body()
            # function bodies come last in a streamed module
            if self.streaming and self.seen_value_symbol_table:
                self.next_unread_bit = cursor.current_bit_no
                logger.debug("suspending module pass at bit %d", self.next_unread_bit)
                return True
        else:
            logger.warning("skipping unknown module sub-block %d", block_id)
            try:
                cursor.skip_block()
            except BitstreamError as e:
                raise StructuralError(ErrorKind.INVALID_RECORD, str(e))
        return False

    def _pointer_type(self, type_id: int) -> PointerType:
        type = self.get_type_by_id(type_id)
        if type is None:
            raise StructuralError(ErrorKind.INVALID_RECORD, f"type #{type_id}")
        if not isinstance(type, PointerType):
            raise TypeMismatch(ErrorKind.INVALID_TYPE_FOR_VALUE, f"{type!r} is not a pointer")
        return type

    def _section(self, index: int) -> Optional[str]:
        if not index:
            return None
        if index - 1 >= len(self.section_table):
            raise ForwardReferenceError(ErrorKind.INVALID_ID, f"section #{index}")
        return self.section_table[index - 1]

    def _parse_module_record(self, code: int, record: List[int]) -> None:
        module = self.module

        if code == ModuleCode.VERSION:
            if not record:
                raise StructuralError(ErrorKind.INVALID_RECORD, "VERSION")
            if record[0] != 0:
                raise StructuralError(ErrorKind.INVALID_VALUE, f"unsupported version {record[0]}")

        elif code == ModuleCode.TRIPLE:
            module.triple = record_string(record)
        elif code == ModuleCode.DATALAYOUT:
            module.data_layout = record_string(record)
        elif code == ModuleCode.ASM:
            module.inline_asm = record_string(record)
        elif code == ModuleCode.DEPLIB:
            record_string(record)
        elif code == ModuleCode.SECTIONNAME:
            self.section_table.append(record_string(record))
        elif code == ModuleCode.GCNAME:
            self.gc_table.append(record_string(record))

        elif code == ModuleCode.GLOBALVAR:
            # [pointer type, isconst, initid, linkage, alignment, section,
            #  visibility, threadlocal, unnamed_addr]
            if len(record) < 6:
                raise StructuralError(ErrorKind.INVALID_RECORD, "GLOBALVAR")
            ptr_type = self._pointer_type(record[0])
            gv = GlobalVariable(ptr_type.pointee, linkage=decode_linkage(record[3]),
                                is_constant=bool(record[1]),
                                address_space=ptr_type.address_space)
            gv.alignment = decode_alignment(record[4])
            gv.section = self._section(record[5])
            if len(record) > 6:
                gv.visibility = decode_visibility(record[6])
            if len(record) > 7:
                gv.thread_local = decode_tls_mode(record[7])
            if len(record) > 8:
                gv.unnamed_addr = bool(record[8])
            module.add_global_variable(gv)
            self.value_list.push_back(gv)
            if record[2]:
                self.global_inits.append((gv, record[2] - 1))

        elif code == ModuleCode.FUNCTION:
            # [type, callingconv, isproto, linkage, paramattr, alignment,
            #  section, visibility, gc, unnamed_addr]
            if len(record) < 8:
                raise StructuralError(ErrorKind.INVALID_RECORD, "FUNCTION")
            ptr_type = self._pointer_type(record[0])
            if not isinstance(ptr_type.pointee, FunctionType):
                raise TypeMismatch(ErrorKind.INVALID_TYPE_FOR_VALUE,
                                   f"{ptr_type!r} is not a function pointer")
            fn = Function(ptr_type.pointee, linkage=decode_linkage(record[3]))
            fn.calling_conv = record[1]
            is_proto = bool(record[2])
            fn.attributes = self.attributes.get_attributes(record[4])
            fn.alignment = decode_alignment(record[5])
            fn.section = self._section(record[6])
            fn.visibility = decode_visibility(record[7])
            if len(record) > 8 and record[8]:
                if record[8] - 1 >= len(self.gc_table):
                    raise ForwardReferenceError(ErrorKind.INVALID_ID, f"gc #{record[8]}")
                fn.gc = self.gc_table[record[8] - 1]
            if len(record) > 9:
                fn.unnamed_addr = bool(record[9])
            module.add_function(fn)
            self.value_list.push_back(fn)
            if not is_proto:
                self.functions_with_bodies.append(fn)
                if self.streaming:
                    self.deferred_function_info[fn] = 0

        elif code == ModuleCode.ALIAS:
            # [alias type, aliasee val#, linkage(, visibility)]
            if len(record) < 3:
                raise StructuralError(ErrorKind.INVALID_RECORD, "ALIAS")
            alias = GlobalAlias(self._pointer_type(record[0]), linkage=decode_linkage(record[2]))
            if len(record) > 3:
                alias.visibility = decode_visibility(record[3])
            module.add_alias(alias)
            self.value_list.push_back(alias)
            self.alias_inits.append((alias, record[1]))

        elif code == ModuleCode.PURGEVALS:
            if not record or record[0] > len(self.value_list):
                raise StructuralError(ErrorKind.INVALID_RECORD, "PURGEVALS")
            self.value_list.shrink_to(record[0])

    def _remember_and_skip_function_body(self) -> None:
        if not self.functions_with_bodies:
            raise StructuralError(ErrorKind.INSUFFICIENT_FUNCTION_PROTOS)
        fn = self.functions_with_bodies.pop()
        self.deferred_function_info[fn] = self.cursor.current_bit_no
        try:
            self.cursor.skip_block()
        except BitstreamError as e:
            raise StructuralError(ErrorKind.INVALID_RECORD, str(e))
        logger.debug("deferred body of '%s' at bit %d", fn.name, self.deferred_function_info[fn])

    def parse_value_symbol_table(self) -> None:
        cursor = self.cursor
        try:
            cursor.enter_sub_block(BlockId.VALUE_SYMTAB)
        except BitstreamError as e:
            raise StructuralError(ErrorKind.INVALID_RECORD, str(e))

        while True:
            entry = cursor.advance_skipping_subblocks()
            if entry.kind == EntryKind.ERROR:
                raise StructuralError(ErrorKind.MALFORMED_BLOCK)
            if entry.kind == EntryKind.END_BLOCK:
                return

            code, record = cursor.read_record(entry.id)
            if code == ValueSymtabCode.ENTRY:
                # [valueid, namechar x N]
                if not record:
                    raise StructuralError(ErrorKind.INVALID_RECORD, "VST entry")
                value = self.value_list[record[0]]
                if value is None:
                    raise StructuralError(ErrorKind.INVALID_RECORD, f"VST entry for value #{record[0]}")
                value.name = record_string(record, 1)
            elif code == ValueSymtabCode.BBENTRY:
                # [bbid, namechar x N]
                if not record:
                    raise StructuralError(ErrorKind.INVALID_RECORD, "VST block entry")
                blocks = self.function_bodies.function_bbs
                if record[0] >= len(blocks):
                    raise StructuralError(ErrorKind.INVALID_RECORD, f"VST entry for block #{record[0]}")
                blocks[record[0]].name = record_string(record, 1)

    # ========================================================================
    # Global initializers and aliases
    # ========================================================================

    def resolve_global_and_alias_inits(self) -> None:
        """Attach every queued initializer and aliasee whose value now exists."""
        global_worklist, self.global_inits = self.global_inits, []
        alias_worklist, self.alias_inits = self.alias_inits, []

        while global_worklist:
            gv, value_id = global_worklist.pop()
            if value_id >= len(self.value_list):
                # needs a constant from a later block
                self.global_inits.append((gv, value_id))
                continue
            value = self.value_list[value_id]
            if not isinstance(value, Constant):
                raise ForwardReferenceError(ErrorKind.EXPECTED_CONSTANT, f"initializer #{value_id}")
            gv.initializer = value

        while alias_worklist:
            alias, value_id = alias_worklist.pop()
            if value_id >= len(self.value_list):
                self.alias_inits.append((alias, value_id))
                continue
            value = self.value_list[value_id]
            if not isinstance(value, Constant):
                raise ForwardReferenceError(ErrorKind.EXPECTED_CONSTANT, f"aliasee #{value_id}")
            alias.aliasee = value

        if self.global_inits or self.alias_inits:
            logger.debug("%d initializers and %d aliasees still pending",
                         len(self.global_inits), len(self.alias_inits))

    def global_cleanup(self) -> None:
        """Close the initializer worklists and collect intrinsic upgrades."""
        self.resolve_global_and_alias_inits()
        if self.global_inits or self.alias_inits:
            raise UnresolvedWorklistError(
                ErrorKind.MALFORMED_GLOBAL_INITIALIZER_SET,
                f"{len(self.global_inits)} initializers, {len(self.alias_inits)} aliases")
        # every worklist is empty here, so each alias chain is complete
        for alias in self.module.aliases:
            global_object_in_expr(alias.aliasee)

        if self.options.upgrade_intrinsics:
            upgraded = set(self.upgraded_intrinsics) | set(self.upgraded_intrinsics.values())
            for fn in list(self.module.functions):
                if fn in upgraded:
                    continue
                new_fn = upgrade_intrinsic_function(fn)
                if new_fn is not None:
                    self.upgraded_intrinsics[fn] = new_fn

    # ========================================================================
    # Materializer
    # ========================================================================

    def is_materializable(self, gv: GlobalValue) -> bool:
        return (isinstance(gv, Function) and gv.is_declaration
                and gv in self.deferred_function_info)

    def is_dematerializable(self, gv: GlobalValue) -> bool:
        return (isinstance(gv, Function) and not gv.is_declaration
                and gv in self.deferred_function_info)

    def materialize(self, gv: GlobalValue) -> None:
        """Read the body of a deferred function. No-op for anything else."""
        if not self.is_materializable(gv):
            return
        saved = self.cursor.clone()
        try:
            if self.streaming:
                self._find_function_in_stream(gv)
            self.cursor.jump_to_bit(self.deferred_function_info[gv])
            self.function_bodies.parse_function_body(gv)
        except BitstreamError as e:
            self.cursor = saved
            raise StructuralError(ErrorKind.MALFORMED_BLOCK, str(e)) from e
        except BitcodeError:
            self.cursor = saved
            raise

        for old_fn, new_fn in self.upgraded_intrinsics.items():
            upgrade_calls_to(old_fn, new_fn, self.context)
        logger.debug("materialized '%s'", gv.name)

    def _find_function_in_stream(self, fn: Function) -> None:
        while self.deferred_function_info[fn] == 0:
            if self.module_parse_done:
                raise StructuralError(ErrorKind.COULD_NOT_FIND_FUNCTION_IN_STREAM, fn.name)
            self.parse_module(resume=True)

    def dematerialize(self, gv: GlobalValue) -> None:
        if not self.is_dematerializable(gv):
            return
        gv.delete_body()
        logger.debug("dematerialized '%s'", gv.name)

    def materialize_all(self) -> None:
        if self.streaming and not self.module_parse_done:
            saved = self.cursor.clone()
            try:
                while not self.module_parse_done:
                    self.parse_module(resume=True)
            except BitstreamError as e:
                self.cursor = saved
                raise StructuralError(ErrorKind.MALFORMED_BLOCK, str(e)) from e
            except BitcodeError:
                self.cursor = saved
                raise

        for fn in list(self.module.functions):
            if self.is_materializable(fn):
                self.materialize(fn)

        # old declarations can only go once no unread body may still call them
        for old_fn, new_fn in self.upgraded_intrinsics.items():
            if old_fn.parent is None:
                continue
            upgrade_calls_to(old_fn, new_fn, self.context)
            if old_fn.uses:
                old_fn.replace_all_uses_with(new_fn)
            self.module.remove_function(old_fn)


def global_object_in_expr(value: Optional[Value]) -> GlobalValue:
    """
    Follow an aliasee through aliases, bitcasts and all-zero GEPs to the
    global variable or function it names.
    """
    seen = set()
    current: Optional[Value] = value
    while True:
        if isinstance(current, (GlobalVariable, Function)):
            return current
        if current is None or id(current) in seen:
            raise StructuralError(ErrorKind.INVALID_VALUE, "alias does not reach a global object")
        seen.add(id(current))
        if isinstance(current, GlobalAlias):
            current = current.aliasee
        elif isinstance(current, ConstantExpr) and current.opcode == Opcode.BITCAST:
            current = current.operands[0]
        elif (isinstance(current, ConstantExpr) and current.opcode == Opcode.GETELEMENTPTR
              and all(_is_zero(index) for index in current.operands[1:])):
            current = current.operands[0]
        else:
            raise StructuralError(ErrorKind.INVALID_VALUE, f"alias to {current!r}")


def _is_zero(value: Optional[Value]) -> bool:
    if isinstance(value, ConstantInt):
        return value.value == 0
    return isinstance(value, ConstantNull)


# ============================================================================
# Entry points
# ============================================================================

def _buffer_memory(data: bytes) -> MemoryObject:
    if len(data) & 3:
        raise SignatureError(ErrorKind.INVALID_BITCODE_SIGNATURE, "size is not a multiple of 4")
    if is_bitcode_wrapper(data):
        try:
            data = strip_wrapper_header(data, verify_size=True)
        except BitstreamError as e:
            raise SignatureError(ErrorKind.INVALID_BITCODE_WRAPPER_HEADER, str(e)) from e
    return MemoryObject(data)


def _streaming_memory(chunks: Iterable[bytes]) -> StreamingMemoryObject:
    memory = StreamingMemoryObject(chunks)
    head = memory.read_bytes(0, 16)
    if len(head) != 16 or not is_bitcode(head):
        raise SignatureError(ErrorKind.INVALID_BITCODE_SIGNATURE)
    if is_bitcode_wrapper(head):
        try:
            offset, size = read_wrapper_header(memory.read_bytes(0, WRAPPER_HEADER_SIZE))
        except BitstreamError as e:
            raise SignatureError(ErrorKind.INVALID_BITCODE_WRAPPER_HEADER, str(e)) from e
        memory.drop_leading_bytes(offset)
        memory.set_known_object_size(size)
    return memory


def _read_module(reader: BitcodeReader, name: str) -> Module:
    module = Module(name, reader.context)
    try:
        reader.parse_bitcode_into(module)
    except BitstreamError as e:
        raise StructuralError(ErrorKind.MALFORMED_BLOCK, str(e)) from e
    module.materializer = reader
    return module


def get_lazy_bitcode_module(data: bytes, name: str = "", context: Optional[Context] = None,
                            options: Optional[ReaderOptions] = None) -> Module:
    """Decode everything but function bodies; bodies load on materialize()."""
    options = options or ReaderOptions(lazy=True)
    reader = BitcodeReader(_buffer_memory(data), context, options)
    return _read_module(reader, name)


def get_streamed_bitcode_module(chunks: Iterable[bytes], name: str = "",
                                context: Optional[Context] = None,
                                options: Optional[ReaderOptions] = None) -> Module:
    """Like get_lazy_bitcode_module, pulling bytes from chunks only as needed."""
    options = replace(options or ReaderOptions(lazy=True), streaming=True)
    reader = BitcodeReader(_streaming_memory(chunks), context, options)
    return _read_module(reader, name)


def parse_bitcode_file(data: bytes, name: str = "", context: Optional[Context] = None,
                       options: Optional[ReaderOptions] = None) -> Module:
    """Decode the whole container, function bodies included."""
    module = get_lazy_bitcode_module(data, name, context, options)
    module.materialize_all_permanently()
    return module


def get_bitcode_target_triple(data: bytes) -> str:
    reader = BitcodeReader(_buffer_memory(data))
    try:
        return reader.read_target_triple_only()
    except BitstreamError as e:
        raise StructuralError(ErrorKind.MALFORMED_BLOCK, str(e)) from e


def load_module(data: bytes, name: str = "", options: Optional[ReaderOptions] = None) -> Module:
    """Decode data in the mode options ask for."""
    options = options or ReaderOptions()
    if options.streaming:
        chunks = (data[i:i + STREAM_CHUNK_SIZE] for i in range(0, len(data), STREAM_CHUNK_SIZE))
        return get_streamed_bitcode_module(chunks, name, options=options)
    if options.lazy:
        return get_lazy_bitcode_module(data, name, options=options)
    return parse_bitcode_file(data, name, options=options)
