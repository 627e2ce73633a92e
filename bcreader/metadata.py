"""
Metadata Decoding

METADATA blocks append strings and nodes to the metadata table in record
order. Node operands may name metadata that has not been read yet; those get
temporary nodes that are replaced wholesale once the real entry arrives.

Also handles METADATA_KIND records (mapping record kind ids to the module's
kind names) and METADATA_ATTACHMENT blocks inside function bodies.
"""

import logging
from typing import TYPE_CHECKING, Dict, List, Optional

from bitstream import BitstreamError, EntryKind
from bcreader.codes import BlockId, MetadataCode
from bcreader.errors import (
    DuplicateDefinitionError, ErrorKind, ForwardReferenceError, StructuralError,
)
from bcreader.types import record_string
from ir_nodes import Instruction, MDNode, MDString, Value

if TYPE_CHECKING:
    from bcreader.core import BitcodeReader

logger = logging.getLogger(__name__)


class MetadataParser:
    def __init__(self, reader: 'BitcodeReader'):
        self.reader = reader
        self.kind_map: Dict[int, str] = {}

    @property
    def cursor(self):
        return self.reader.cursor

    def parse_metadata(self) -> None:
        reader = self.reader
        md_list = reader.md_value_list
        next_md_no = len(md_list)

        try:
            self.cursor.enter_sub_block(BlockId.METADATA)
        except BitstreamError as e:
            raise StructuralError(ErrorKind.INVALID_RECORD, str(e))

        while True:
            entry = self.cursor.advance_skipping_subblocks()
            if entry.kind == EntryKind.ERROR:
                raise StructuralError(ErrorKind.MALFORMED_BLOCK)
            if entry.kind == EntryKind.END_BLOCK:
                logger.debug("metadata block: table now has %d entries", len(md_list))
                return

            code, record = self.cursor.read_record(entry.id)

            if code == MetadataCode.NAME:
                name = record_string(record)
                # NAME is always followed by the NAMED_NODE it names
                next_code, record = self.cursor.read_record(self.cursor.read_code())
                if next_code != MetadataCode.NAMED_NODE:
                    raise StructuralError(ErrorKind.INVALID_RECORD, "NAME without NAMED_NODE")
                named = reader.module.get_or_insert_named_metadata(name)
                for md_id in record:
                    node = md_list.get_value_fwd_ref(md_id)
                    if not isinstance(node, MDNode):
                        raise StructuralError(ErrorKind.INVALID_RECORD,
                                              f"named metadata operand #{md_id} is not a node")
                    named.add_operand(node)

            elif code in (MetadataCode.NODE, MetadataCode.FN_NODE):
                if len(record) % 2 == 1:
                    raise StructuralError(ErrorKind.INVALID_RECORD, "odd metadata node record")
                elements: List[Optional[Value]] = []
                for i in range(0, len(record), 2):
                    type = reader.get_type_by_id(record[i])
                    if type is None:
                        raise StructuralError(ErrorKind.INVALID_RECORD, f"type #{record[i]}")
                    if type.is_metadata:
                        elements.append(md_list.get_value_fwd_ref(record[i + 1]))
                    elif not type.is_void:
                        elements.append(reader.value_list.get_value_fwd_ref(record[i + 1], type))
                    else:
                        elements.append(None)
                node = MDNode(elements, function_local=code == MetadataCode.FN_NODE)
                md_list.assign_value(node, next_md_no)
                next_md_no += 1

            elif code == MetadataCode.STRING:
                md_list.assign_value(MDString(record_string(record)), next_md_no)
                next_md_no += 1

            elif code == MetadataCode.KIND:
                if len(record) < 2:
                    raise StructuralError(ErrorKind.INVALID_RECORD)
                kind = record[0]
                name = record_string(record, 1)
                reader.module.get_md_kind_id(name)
                if kind in self.kind_map:
                    raise DuplicateDefinitionError(ErrorKind.CONFLICTING_METADATA_KIND_RECORDS,
                                                   f"kind #{kind}")
                self.kind_map[kind] = name

    def parse_metadata_attachment(self, instructions: List[Instruction]) -> None:
        try:
            self.cursor.enter_sub_block(BlockId.METADATA_ATTACHMENT)
        except BitstreamError as e:
            raise StructuralError(ErrorKind.INVALID_RECORD, str(e))

        md_list = self.reader.md_value_list
        while True:
            entry = self.cursor.advance_skipping_subblocks()
            if entry.kind == EntryKind.ERROR:
                raise StructuralError(ErrorKind.MALFORMED_BLOCK)
            if entry.kind == EntryKind.END_BLOCK:
                return

            code, record = self.cursor.read_record(entry.id)
            if code != MetadataCode.ATTACHMENT:
                continue
            if not record or (len(record) - 1) % 2 == 1:
                raise StructuralError(ErrorKind.INVALID_RECORD, "malformed attachment")
            if record[0] >= len(instructions):
                raise StructuralError(ErrorKind.INVALID_RECORD,
                                      f"attachment to instruction #{record[0]}")
            inst = instructions[record[0]]
            for i in range(1, len(record), 2):
                kind = self.kind_map.get(record[i])
                if kind is None:
                    raise ForwardReferenceError(ErrorKind.INVALID_ID, f"metadata kind #{record[i]}")
                node = md_list.get_value_fwd_ref(record[i + 1])
                if not isinstance(node, MDNode):
                    raise StructuralError(ErrorKind.INVALID_RECORD, "attachment is not a node")
                inst.set_metadata(kind, node)
