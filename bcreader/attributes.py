"""
Parameter Attribute Table

PARAMATTR_BLOCK records build the attribute sets that functions and call
sites refer to by 1-based index (0 means "no attributes").

Each ENTRY_OLD record lists (slot index, encoded attributes) pairs. Slot 0 is
the return value, 0xFFFFFFFF the function itself, and i the i-th parameter.
"""

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Dict, List, Optional, Tuple

from bitstream import BitstreamError, EntryKind
from bcreader.codes import AttributeCode, BlockId
from bcreader.errors import (
    DuplicateDefinitionError, ErrorKind, ForwardReferenceError, StructuralError,
)

if TYPE_CHECKING:
    from bcreader.core import BitcodeReader

logger = logging.getLogger(__name__)


RETURN_INDEX = 0
FUNCTION_INDEX = 0xFFFFFFFF

# Bit positions of the in-memory attribute word
ATTRIBUTE_BITS = {
    0: "zeroext",
    1: "signext",
    2: "noreturn",
    3: "inreg",
    4: "sret",
    5: "nounwind",
    6: "noalias",
    7: "byval",
    8: "nest",
    9: "readnone",
    10: "readonly",
    11: "noinline",
    12: "alwaysinline",
    13: "optsize",
    14: "ssp",
    15: "sspreq",
    21: "nocapture",
    22: "noredzone",
    23: "noimplicitfloat",
    24: "naked",
    25: "inlinehint",
    29: "returns_twice",
    30: "uwtable",
    31: "nonlazybind",
}

ALIGNMENT_MASK = 0x1F << 16
STACK_ALIGNMENT_MASK = 0x7 << 26


@dataclass(frozen=True)
class AttributeSlot:
    """Attributes of one slot; flags exclude the alignment fields."""
    index: int
    flags: int
    alignment: int = 0
    stack_alignment: int = 0

    @property
    def names(self) -> List[str]:
        return [name for bit, name in sorted(ATTRIBUTE_BITS.items()) if self.flags >> bit & 1]

    def __repr__(self):
        parts = self.names
        if self.alignment:
            parts.append(f"align {self.alignment}")
        if self.stack_alignment:
            parts.append(f"alignstack({self.stack_alignment})")
        return " ".join(parts)


@dataclass(frozen=True)
class AttributeSet:
    slots: Tuple[AttributeSlot, ...]

    def get_slot(self, index: int) -> Optional[AttributeSlot]:
        for slot in self.slots:
            if slot.index == index:
                return slot
        return None

    @property
    def function_attributes(self) -> Optional[AttributeSlot]:
        return self.get_slot(FUNCTION_INDEX)

    @property
    def return_attributes(self) -> Optional[AttributeSlot]:
        return self.get_slot(RETURN_INDEX)

    def param_attributes(self, arg_no: int) -> Optional[AttributeSlot]:
        return self.get_slot(arg_no + 1)


def decode_llvm_attributes(encoded: int) -> Tuple[int, int, int]:
    """
    Split an encoded attribute word into (flags, alignment, stack alignment).

    Alignment is stored as its byte value in bits 16-31; the attribute bits
    above 32 move down to bit 21 and up.
    """
    alignment = (encoded >> 16) & 0xFFFF
    raw = ((encoded & (0xFFFFF << 32)) >> 11) | (encoded & 0xFFFF)
    stack_alignment = 0
    if raw & STACK_ALIGNMENT_MASK:
        stack_alignment = 1 << (((raw & STACK_ALIGNMENT_MASK) >> 26) - 1)
    flags = raw & ~(ALIGNMENT_MASK | STACK_ALIGNMENT_MASK)
    return flags, alignment, stack_alignment


def encode_llvm_attributes(slot: AttributeSlot) -> int:
    raw = slot.flags
    if slot.stack_alignment:
        raw |= slot.stack_alignment.bit_length() << 26
    encoded = raw & 0xFFFF
    if slot.alignment:
        encoded |= slot.alignment << 16
    encoded |= (raw & (0xFFFFF << 21)) << 11
    return encoded


class AttributeTable:
    """
    Reads the PARAMATTR block and hands out interned AttributeSets.
    """

    def __init__(self, reader: 'BitcodeReader'):
        self.reader = reader
        self.sets: List[AttributeSet] = []
        self._interned: Dict[AttributeSet, AttributeSet] = {}

    def intern(self, slots: List[AttributeSlot]) -> AttributeSet:
        attr_set = AttributeSet(tuple(slots))
        return self._interned.setdefault(attr_set, attr_set)

    def get_attributes(self, index: int) -> Optional[AttributeSet]:
        """1-based lookup; 0 means no attributes."""
        if index == 0:
            return None
        if index - 1 < len(self.sets):
            return self.sets[index - 1]
        raise ForwardReferenceError(ErrorKind.INVALID_ID, f"attribute set #{index}")

    def parse_block(self) -> None:
        cursor = self.reader.cursor
        try:
            cursor.enter_sub_block(BlockId.PARAMATTR)
        except BitstreamError as e:
            raise StructuralError(ErrorKind.INVALID_RECORD, str(e))

        if self.sets:
            raise DuplicateDefinitionError(ErrorKind.INVALID_MULTIPLE_BLOCKS, "parameter attributes")

        while True:
            entry = cursor.advance_skipping_subblocks()
            if entry.kind == EntryKind.ERROR:
                raise StructuralError(ErrorKind.MALFORMED_BLOCK)
            if entry.kind == EntryKind.END_BLOCK:
                logger.debug("read %d attribute sets", len(self.sets))
                return

            code, record = cursor.read_record(entry.id)
            if code == AttributeCode.ENTRY_OLD:
                if len(record) & 1:
                    raise StructuralError(ErrorKind.INVALID_RECORD, "odd attribute entry")
                slots = []
                for i in range(0, len(record), 2):
                    flags, alignment, stack_alignment = decode_llvm_attributes(record[i + 1])
                    if flags or alignment or stack_alignment:
                        slots.append(AttributeSlot(record[i], flags, alignment, stack_alignment))
                self.sets.append(self.intern(slots))
            elif code == AttributeCode.ENTRY:
                # attribute groups do not exist in this format version
                raise StructuralError(ErrorKind.INVALID_RECORD, "attribute group reference")
