"""
LLVM Bitstream Container

Reads and writes the generic bitstream format that bitcode files are stored in.

The format is a sequence of 32-bit little-endian words read LSB first. Content
is organised in nested blocks; inside a block every entry starts with an
abbreviation id of the block's code width:

    0  END_BLOCK        leave the current block (aligned to 32 bits)
    1  ENTER_SUBBLOCK   [blockid vbr8, newcodelen vbr4, <align32>, numwords 32]
    2  DEFINE_ABBREV    define an abbreviation for the current block
    3  UNABBREV_RECORD  [code vbr6, numops vbr6, op0 vbr6, ...]
    4+ abbreviated record using a previously defined abbreviation

Block 0 (BLOCKINFO) carries abbreviations that apply to other block ids.

Reading:
    - MemoryObject / StreamingMemoryObject: byte sources (finite or pulled)
    - BitstreamReader: byte source plus BLOCKINFO abbreviations
    - BitstreamCursor: position, block scope and record decoding

Writing:
    - BitstreamWriter: emits the same format (used by the module writer)

Wrapper header:
    - is_bitcode_wrapper / strip_wrapper_header / wrap_bitcode
"""

import struct
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Iterable, Iterator, List, Optional, Tuple


# ============================================================================
# Constants
# ============================================================================

END_BLOCK = 0
ENTER_SUBBLOCK = 1
DEFINE_ABBREV = 2
UNABBREV_RECORD = 3
FIRST_APPLICATION_ABBREV = 4

BLOCKINFO_BLOCK_ID = 0
BLOCKINFO_CODE_SETBID = 1
BLOCKINFO_CODE_BLOCKNAME = 2
BLOCKINFO_CODE_SETRECORDNAME = 3

BLOCK_ID_WIDTH = 8
CODE_LEN_WIDTH = 4
BLOCK_SIZE_WIDTH = 32
MAX_CHUNK_SIZE = 64

BITCODE_WRAPPER_MAGIC = 0x0B17C0DE
BITCODE_MAGIC = b"BC\xc0\xde"
WRAPPER_HEADER_SIZE = 20

# advance() flags
AF_DONT_POP_BLOCK_AT_END = 1
AF_DONT_AUTOPROCESS_ABBREVS = 2

_CHAR6 = "abcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789._"


class BitstreamError(Exception):
    """Malformed or truncated bitstream"""
    pass


class Encoding(Enum):
    FIXED = 1
    VBR = 2
    ARRAY = 3
    CHAR6 = 4
    BLOB = 5


@dataclass(frozen=True)
class AbbrevOp:
    """One operand of an abbreviation. encoding=None means a literal value."""
    value: int = 0
    encoding: Optional[Encoding] = None

    @property
    def is_literal(self) -> bool:
        return self.encoding is None

    @property
    def has_data(self) -> bool:
        return self.encoding in (Encoding.FIXED, Encoding.VBR)


@dataclass
class Abbrev:
    ops: List[AbbrevOp] = field(default_factory=list)


class EntryKind(Enum):
    ERROR = "error"
    END_BLOCK = "end_block"
    SUB_BLOCK = "sub_block"
    RECORD = "record"


@dataclass(frozen=True)
class BitstreamEntry:
    kind: EntryKind
    id: int = 0


@dataclass
class BlockInfo:
    """Abbreviations and names registered for one block id in BLOCKINFO"""
    block_id: int
    abbrevs: List[Abbrev] = field(default_factory=list)
    name: str = ""
    record_names: Dict[int, str] = field(default_factory=dict)


def is_char6(ch: int) -> bool:
    return 0 <= ch < 128 and chr(ch) in _CHAR6


def encode_char6(ch: int) -> int:
    index = _CHAR6.find(chr(ch))
    if index < 0:
        raise ValueError(f"character {ch!r} is not char6-encodable")
    return index


def decode_char6(value: int) -> int:
    return ord(_CHAR6[value & 63])


# ============================================================================
# Wrapper header
# ============================================================================

def is_bitcode_wrapper(data: bytes) -> bool:
    return len(data) >= 4 and struct.unpack_from("<I", data, 0)[0] == BITCODE_WRAPPER_MAGIC


def is_raw_bitcode(data: bytes) -> bool:
    return data[:4] == BITCODE_MAGIC


def is_bitcode(data: bytes) -> bool:
    return is_bitcode_wrapper(data) or is_raw_bitcode(data)


def read_wrapper_header(data: bytes) -> Tuple[int, int]:
    """Return (offset, size) of the bitcode enclosed by a wrapper header."""
    if len(data) < WRAPPER_HEADER_SIZE:
        raise BitstreamError("truncated bitcode wrapper header")
    _magic, _version, offset, size, _cputype = struct.unpack_from("<5I", data, 0)
    return offset, size


def strip_wrapper_header(data: bytes, verify_size: bool = True) -> bytes:
    """Strip the wrapper header, returning only the enclosed bitcode."""
    offset, size = read_wrapper_header(data)
    if verify_size and offset + size > len(data):
        raise BitstreamError(
            f"wrapper claims {size} bytes at offset {offset}, buffer has {len(data)}"
        )
    return bytes(data[offset:offset + size])


def wrap_bitcode(data: bytes, cputype: int = 0, version: int = 0) -> bytes:
    header = struct.pack("<5I", BITCODE_WRAPPER_MAGIC, version,
                         WRAPPER_HEADER_SIZE, len(data), cputype)
    return header + bytes(data)


# ============================================================================
# Byte sources
# ============================================================================

class MemoryObject:
    """A finite byte buffer with every byte available up front."""

    def __init__(self, data: bytes):
        self.data = bytes(data)

    def get_extent(self) -> int:
        return len(self.data)

    def is_valid_address(self, address: int) -> bool:
        return 0 <= address < len(self.data)

    def is_object_end(self, address: int) -> bool:
        return address == len(self.data)

    def read_bytes(self, address: int, size: int) -> bytes:
        return self.data[address:address + size]


class StreamingMemoryObject(MemoryObject):
    """
    Byte source that pulls chunks from an iterable only when a read needs them.

    Lets the reader start decoding before the whole container has arrived.
    """

    def __init__(self, chunks: Iterable[bytes]):
        super().__init__(b"")
        self._chunks: Iterator[bytes] = iter(chunks)
        self._buffer = bytearray()
        self._exhausted = False
        self._leading = 0
        self._known_size: Optional[int] = None

    def _fetch_to(self, address: int) -> None:
        wanted = self._leading + address + 1
        while len(self._buffer) < wanted and not self._exhausted:
            try:
                self._buffer.extend(next(self._chunks))
            except StopIteration:
                self._exhausted = True

    @property
    def bytes_fetched(self) -> int:
        return len(self._buffer)

    def get_extent(self) -> int:
        if self._known_size is not None:
            return self._known_size
        while not self._exhausted:
            self._fetch_to(len(self._buffer))
        return len(self._buffer) - self._leading

    def is_valid_address(self, address: int) -> bool:
        if address < 0:
            return False
        if self._known_size is not None and address >= self._known_size:
            return False
        self._fetch_to(address)
        return self._leading + address < len(self._buffer)

    def is_object_end(self, address: int) -> bool:
        if self._known_size is not None:
            return address == self._known_size
        self._fetch_to(address)
        return self._exhausted and self._leading + address == len(self._buffer)

    def read_bytes(self, address: int, size: int) -> bytes:
        self._fetch_to(address + size - 1)
        start = self._leading + address
        return bytes(self._buffer[start:start + size])

    def drop_leading_bytes(self, count: int) -> None:
        self._leading += count

    def set_known_object_size(self, size: int) -> None:
        self._known_size = size


# ============================================================================
# Reader / Cursor
# ============================================================================

class BitstreamReader:
    """Owns the byte source and the BLOCKINFO records shared by all cursors."""

    def __init__(self, memory: MemoryObject):
        self.memory = memory
        self.block_info: Dict[int, BlockInfo] = {}

    def has_block_info_records(self) -> bool:
        return bool(self.block_info)

    def get_block_info(self, block_id: int) -> Optional[BlockInfo]:
        return self.block_info.get(block_id)

    def get_or_create_block_info(self, block_id: int) -> BlockInfo:
        info = self.block_info.get(block_id)
        if info is None:
            info = BlockInfo(block_id)
            self.block_info[block_id] = info
        return info


class BitstreamCursor:
    """
    Position in a bitstream together with the block scope stack.

    Every operation raises BitstreamError on malformed or truncated input.
    """

    def __init__(self, reader: BitstreamReader):
        self.reader = reader
        self._bit = 0
        self.code_size = 2
        self.abbrevs: List[Abbrev] = []
        self.block_scope: List[Tuple[int, List[Abbrev]]] = []

    def clone(self) -> 'BitstreamCursor':
        other = BitstreamCursor(self.reader)
        other._bit = self._bit
        other.code_size = self.code_size
        other.abbrevs = list(self.abbrevs)
        other.block_scope = [(size, list(abbrevs)) for size, abbrevs in self.block_scope]
        return other

    # ------------------------------------------------------------------------
    # Position
    # ------------------------------------------------------------------------

    @property
    def current_bit_no(self) -> int:
        return self._bit

    def jump_to_bit(self, bit: int) -> None:
        byte = bit >> 3
        memory = self.reader.memory
        if bit < 0 or not (memory.is_valid_address(byte) or memory.is_object_end(byte)):
            raise BitstreamError(f"cannot jump to bit {bit}")
        self._bit = bit

    def at_end_of_stream(self) -> bool:
        return self._bit % 32 == 0 and self.reader.memory.is_object_end(self._bit >> 3)

    def skip_to_four_byte_boundary(self) -> None:
        self._bit = (self._bit + 31) & ~31

    # ------------------------------------------------------------------------
    # Primitive reads
    # ------------------------------------------------------------------------

    def read(self, num_bits: int) -> int:
        if num_bits == 0:
            return 0
        if num_bits > MAX_CHUNK_SIZE:
            raise BitstreamError(f"cannot read {num_bits} bits at once")
        start = self._bit
        end = start + num_bits
        first_byte = start >> 3
        last_byte = (end - 1) >> 3
        memory = self.reader.memory
        if not memory.is_valid_address(last_byte):
            raise BitstreamError(f"read past end of stream at bit {start}")
        chunk = memory.read_bytes(first_byte, last_byte - first_byte + 1)
        self._bit = end
        return (int.from_bytes(chunk, "little") >> (start & 7)) & ((1 << num_bits) - 1)

    def read_vbr(self, num_bits: int) -> int:
        piece = self.read(num_bits)
        hi_bit = 1 << (num_bits - 1)
        if not piece & hi_bit:
            return piece
        result = 0
        shift = 0
        while True:
            result |= (piece & (hi_bit - 1)) << shift
            if not piece & hi_bit:
                return result
            shift += num_bits - 1
            if shift > MAX_CHUNK_SIZE + num_bits:
                raise BitstreamError("VBR value too long")
            piece = self.read(num_bits)

    # ------------------------------------------------------------------------
    # Block structure
    # ------------------------------------------------------------------------

    def read_code(self) -> int:
        return self.read(self.code_size)

    def read_sub_block_id(self) -> int:
        return self.read_vbr(BLOCK_ID_WIDTH)

    def enter_sub_block(self, block_id: int) -> int:
        """Enter a block whose id was just read. Returns its length in words."""
        self.block_scope.append((self.code_size, self.abbrevs))
        self.abbrevs = []
        info = self.reader.get_block_info(block_id)
        if info is not None:
            self.abbrevs.extend(info.abbrevs)
        self.code_size = self.read_vbr(CODE_LEN_WIDTH)
        if self.code_size > MAX_CHUNK_SIZE:
            raise BitstreamError(f"code size {self.code_size} too large")
        self.skip_to_four_byte_boundary()
        num_words = self.read(BLOCK_SIZE_WIDTH)
        if self.code_size == 0 or self.at_end_of_stream():
            raise BitstreamError(f"malformed header for block {block_id}")
        return num_words

    def skip_block(self) -> None:
        """Skip the body of a block whose id was just read."""
        self.read_vbr(CODE_LEN_WIDTH)
        self.skip_to_four_byte_boundary()
        num_words = self.read(BLOCK_SIZE_WIDTH)
        skip_to = self._bit + num_words * 32
        memory = self.reader.memory
        if self.at_end_of_stream() or not (
                memory.is_valid_address((skip_to >> 3) - 1) or memory.is_object_end(skip_to >> 3)):
            raise BitstreamError("block extends past end of stream")
        self._bit = skip_to

    def read_block_end(self) -> None:
        if not self.block_scope:
            raise BitstreamError("end of block outside of any block")
        self.skip_to_four_byte_boundary()
        self.code_size, self.abbrevs = self.block_scope.pop()

    def advance(self, flags: int = 0) -> BitstreamEntry:
        while True:
            code = self.read_code()
            if code == END_BLOCK:
                if not flags & AF_DONT_POP_BLOCK_AT_END:
                    try:
                        self.read_block_end()
                    except BitstreamError:
                        return BitstreamEntry(EntryKind.ERROR)
                return BitstreamEntry(EntryKind.END_BLOCK)
            if code == ENTER_SUBBLOCK:
                return BitstreamEntry(EntryKind.SUB_BLOCK, self.read_sub_block_id())
            if code == DEFINE_ABBREV and not flags & AF_DONT_AUTOPROCESS_ABBREVS:
                self.read_abbrev_record()
                continue
            return BitstreamEntry(EntryKind.RECORD, code)

    def advance_skipping_subblocks(self, flags: int = 0) -> BitstreamEntry:
        while True:
            entry = self.advance(flags)
            if entry.kind != EntryKind.SUB_BLOCK:
                return entry
            try:
                self.skip_block()
            except BitstreamError:
                return BitstreamEntry(EntryKind.ERROR)

    # ------------------------------------------------------------------------
    # Abbreviations and records
    # ------------------------------------------------------------------------

    def read_abbrev_record(self) -> None:
        num_ops = self.read_vbr(5)
        ops: List[AbbrevOp] = []
        for _ in range(num_ops):
            if self.read(1):
                ops.append(AbbrevOp(self.read_vbr(8)))
                continue
            raw = self.read(3)
            try:
                encoding = Encoding(raw)
            except ValueError:
                raise BitstreamError(f"invalid abbreviation encoding {raw}")
            if encoding in (Encoding.FIXED, Encoding.VBR):
                width = self.read_vbr(5)
                # fixed(0) and vbr(0) are read as a literal zero
                if width == 0:
                    ops.append(AbbrevOp(0))
                    continue
                if width > MAX_CHUNK_SIZE:
                    raise BitstreamError(f"abbreviation field width {width} too large")
                ops.append(AbbrevOp(width, encoding))
            else:
                ops.append(AbbrevOp(0, encoding))
        self.abbrevs.append(Abbrev(ops))

    def get_abbrev(self, abbrev_id: int) -> Abbrev:
        index = abbrev_id - FIRST_APPLICATION_ABBREV
        if index < 0 or index >= len(self.abbrevs):
            raise BitstreamError(f"invalid abbreviation id {abbrev_id}")
        return self.abbrevs[index]

    def _read_scalar(self, op: AbbrevOp) -> int:
        if op.encoding == Encoding.FIXED:
            return self.read(op.value)
        if op.encoding == Encoding.VBR:
            return self.read_vbr(op.value)
        if op.encoding == Encoding.CHAR6:
            return decode_char6(self.read(6))
        raise BitstreamError(f"{op.encoding} is not a scalar encoding")

    def read_record(self, abbrev_id: int) -> Tuple[int, List[int]]:
        """Read one record, returning (code, fields)."""
        if abbrev_id == UNABBREV_RECORD:
            code = self.read_vbr(6)
            num_ops = self.read_vbr(6)
            return code, [self.read_vbr(6) for _ in range(num_ops)]

        ops = self.get_abbrev(abbrev_id).ops
        if not ops:
            raise BitstreamError("empty abbreviation")
        first = ops[0]
        if first.is_literal:
            code = first.value
        elif first.encoding in (Encoding.ARRAY, Encoding.BLOB):
            raise BitstreamError("abbreviation starts with an array or a blob")
        else:
            code = self._read_scalar(first)

        fields: List[int] = []
        i = 1
        while i < len(ops):
            op = ops[i]
            if op.is_literal:
                fields.append(op.value)
            elif op.encoding == Encoding.ARRAY:
                if i + 2 != len(ops):
                    raise BitstreamError("array op not second to last")
                count = self.read_vbr(6)
                element = ops[i + 1]
                for _ in range(count):
                    fields.append(self._read_scalar(element))
                break
            elif op.encoding == Encoding.BLOB:
                count = self.read_vbr(6)
                self.skip_to_four_byte_boundary()
                start = self._bit >> 3
                if count and not self.reader.memory.is_valid_address(start + count - 1):
                    raise BitstreamError("blob extends past end of stream")
                fields.extend(self.reader.memory.read_bytes(start, count))
                self._bit = (start + count) * 8
                self.skip_to_four_byte_boundary()
            else:
                fields.append(self._read_scalar(op))
            i += 1
        return code, fields

    def skip_record(self, abbrev_id: int) -> None:
        self.read_record(abbrev_id)

    def read_block_info_block(self) -> None:
        """Read a BLOCKINFO block whose id was just read."""
        if self.reader.has_block_info_records():
            self.skip_block()
            return
        self.enter_sub_block(BLOCKINFO_BLOCK_ID)
        current: Optional[BlockInfo] = None
        while True:
            entry = self.advance_skipping_subblocks(AF_DONT_AUTOPROCESS_ABBREVS)
            if entry.kind in (EntryKind.ERROR, EntryKind.SUB_BLOCK):
                raise BitstreamError("malformed BLOCKINFO block")
            if entry.kind == EntryKind.END_BLOCK:
                return
            if entry.id == DEFINE_ABBREV:
                if current is None:
                    raise BitstreamError("abbreviation in BLOCKINFO before SETBID")
                self.read_abbrev_record()
                current.abbrevs.append(self.abbrevs.pop())
                continue
            code, fields = self.read_record(entry.id)
            if code == BLOCKINFO_CODE_SETBID:
                if not fields:
                    raise BitstreamError("SETBID without a block id")
                current = self.reader.get_or_create_block_info(fields[0])
            elif code == BLOCKINFO_CODE_BLOCKNAME and current is not None:
                current.name = bytes(fields).decode("latin-1")
            elif code == BLOCKINFO_CODE_SETRECORDNAME and current is not None and fields:
                current.record_names[fields[0]] = bytes(fields[1:]).decode("latin-1")


# ============================================================================
# Writer
# ============================================================================

class BitstreamWriter:
    """Emits a bitstream: words, VBRs, blocks, abbreviations and records."""

    def __init__(self):
        self._out = bytearray()
        self._cur_word = 0
        self._cur_bit = 0
        self.code_size = 2
        self.abbrevs: List[Abbrev] = []
        self._block_scope: List[Tuple[int, List[Abbrev], int]] = []
        self._block_info: Dict[int, List[Abbrev]] = {}
        self._blockinfo_current: Optional[int] = None

    def emit(self, value: int, num_bits: int) -> None:
        if num_bits == 0:
            return
        value &= (1 << num_bits) - 1
        self._cur_word |= value << self._cur_bit
        self._cur_bit += num_bits
        while self._cur_bit >= 32:
            self._out += (self._cur_word & 0xFFFFFFFF).to_bytes(4, "little")
            self._cur_word >>= 32
            self._cur_bit -= 32

    def emit_vbr(self, value: int, num_bits: int) -> None:
        threshold = 1 << (num_bits - 1)
        while value >= threshold:
            self.emit((value & (threshold - 1)) | threshold, num_bits)
            value >>= num_bits - 1
        self.emit(value, num_bits)

    def flush_to_word(self) -> None:
        if self._cur_bit:
            self._out += (self._cur_word & 0xFFFFFFFF).to_bytes(4, "little")
            self._cur_word = 0
            self._cur_bit = 0

    def emit_magic(self) -> None:
        self.emit(ord("B"), 8)
        self.emit(ord("C"), 8)
        self.emit(0x0, 4)
        self.emit(0xC, 4)
        self.emit(0xE, 4)
        self.emit(0xD, 4)

    def get_bytes(self) -> bytes:
        if self._block_scope:
            raise ValueError("unterminated block")
        self.flush_to_word()
        return bytes(self._out)

    # ------------------------------------------------------------------------
    # Blocks
    # ------------------------------------------------------------------------

    def enter_subblock(self, block_id: int, code_len: int) -> None:
        self.emit(ENTER_SUBBLOCK, self.code_size)
        self.emit_vbr(block_id, BLOCK_ID_WIDTH)
        self.emit_vbr(code_len, CODE_LEN_WIDTH)
        self.flush_to_word()
        size_index = len(self._out)
        self.emit(0, BLOCK_SIZE_WIDTH)
        self._block_scope.append((self.code_size, self.abbrevs, size_index))
        self.code_size = code_len
        self.abbrevs = list(self._block_info.get(block_id, []))

    def exit_block(self) -> None:
        if not self._block_scope:
            raise ValueError("exit_block outside of any block")
        self.emit(END_BLOCK, self.code_size)
        self.flush_to_word()
        code_size, abbrevs, size_index = self._block_scope.pop()
        num_words = (len(self._out) - size_index) // 4 - 1
        self._out[size_index:size_index + 4] = num_words.to_bytes(4, "little")
        self.code_size = code_size
        self.abbrevs = abbrevs

    # ------------------------------------------------------------------------
    # Abbreviations
    # ------------------------------------------------------------------------

    def _emit_abbrev_definition(self, abbrev: Abbrev) -> None:
        self.emit(DEFINE_ABBREV, self.code_size)
        self.emit_vbr(len(abbrev.ops), 5)
        for op in abbrev.ops:
            if op.is_literal:
                self.emit(1, 1)
                self.emit_vbr(op.value, 8)
            else:
                self.emit(0, 1)
                self.emit(op.encoding.value, 3)
                if op.has_data:
                    self.emit_vbr(op.value, 5)

    def emit_abbrev(self, abbrev: Abbrev) -> int:
        """Define an abbreviation in the current block and return its id."""
        self._emit_abbrev_definition(abbrev)
        self.abbrevs.append(abbrev)
        return len(self.abbrevs) - 1 + FIRST_APPLICATION_ABBREV

    def enter_blockinfo_block(self) -> None:
        self.enter_subblock(BLOCKINFO_BLOCK_ID, 2)
        self._blockinfo_current = None

    def emit_blockinfo_abbrev(self, block_id: int, abbrev: Abbrev) -> int:
        """Inside a BLOCKINFO block, register an abbreviation for block_id."""
        if self._blockinfo_current != block_id:
            self.emit_record(BLOCKINFO_CODE_SETBID, [block_id])
            self._blockinfo_current = block_id
        self._emit_abbrev_definition(abbrev)
        registered = self._block_info.setdefault(block_id, [])
        registered.append(abbrev)
        return len(registered) - 1 + FIRST_APPLICATION_ABBREV

    # ------------------------------------------------------------------------
    # Records
    # ------------------------------------------------------------------------

    def _emit_scalar(self, op: AbbrevOp, value: int) -> None:
        if op.encoding == Encoding.FIXED:
            self.emit(value, op.value)
        elif op.encoding == Encoding.VBR:
            self.emit_vbr(value, op.value)
        elif op.encoding == Encoding.CHAR6:
            self.emit(encode_char6(value), 6)
        else:
            raise ValueError(f"{op.encoding} is not a scalar encoding")

    def emit_record(self, code: int, fields: List[int], abbrev_id: Optional[int] = None) -> None:
        if abbrev_id is None:
            self.emit(UNABBREV_RECORD, self.code_size)
            self.emit_vbr(code, 6)
            self.emit_vbr(len(fields), 6)
            for value in fields:
                self.emit_vbr(value, 6)
            return

        ops = self.abbrevs[abbrev_id - FIRST_APPLICATION_ABBREV].ops
        self.emit(abbrev_id, self.code_size)
        values = [code] + list(fields)
        pos = 0
        i = 0
        while i < len(ops):
            op = ops[i]
            if op.is_literal:
                if pos >= len(values) or values[pos] != op.value:
                    raise ValueError(f"record does not match literal {op.value}")
                pos += 1
            elif op.encoding == Encoding.ARRAY:
                rest = values[pos:]
                self.emit_vbr(len(rest), 6)
                for value in rest:
                    self._emit_scalar(ops[i + 1], value)
                pos = len(values)
                break
            elif op.encoding == Encoding.BLOB:
                rest = values[pos:]
                self.emit_vbr(len(rest), 6)
                self.flush_to_word()
                for value in rest:
                    self.emit(value, 8)
                self.flush_to_word()
                pos = len(values)
            else:
                if pos >= len(values):
                    raise ValueError("record is shorter than its abbreviation")
                self._emit_scalar(op, values[pos])
                pos += 1
            i += 1
        if pos != len(values):
            raise ValueError("record is longer than its abbreviation")
