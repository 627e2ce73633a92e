"""
Value and Metadata Tables

ValueList is the dense, index-addressed table of decoded values. A reference
to an index that is not defined yet gets a placeholder of the expected type:

    - ConstantPlaceholder when a constant is expected (constants blocks)
    - a parentless Argument otherwise (instruction operands)

Defining the index later replaces the placeholder. Argument placeholders are
swapped out immediately; constant placeholders are collected and resolved in
one pass at the end of the constants block, so a composite constant that uses
many forward references is rebuilt once instead of once per reference.

MDValueList is the same idea for metadata, with temporary MDNodes as the
placeholders.
"""

import bisect
import logging
from typing import Dict, List, Optional, Tuple

from bcreader.errors import (
    DuplicateDefinitionError, ErrorKind, ForwardReferenceError, TypeMismatch,
    UnresolvedForwardReference,
)
from ir_nodes import (
    Argument, Constant, ConstantPlaceholder, Context, GlobalValue, MDNode, Type, Value,
    METADATA,
)

logger = logging.getLogger(__name__)


def is_placeholder(value: Optional[Value]) -> bool:
    if isinstance(value, ConstantPlaceholder):
        return True
    return isinstance(value, Argument) and value.is_placeholder


class ValueList:
    def __init__(self, context: Context):
        self.context = context
        self._values: List[Optional[Value]] = []
        self._resolve_constants: List[Tuple[ConstantPlaceholder, int]] = []
        self.rebuilt_constants = 0

    def __len__(self):
        return len(self._values)

    def __getitem__(self, index: int) -> Optional[Value]:
        if index < len(self._values):
            return self._values[index]
        return None

    def __iter__(self):
        return iter(self._values)

    def push_back(self, value: Value) -> None:
        self._values.append(value)

    def clear(self) -> None:
        self._values = []
        self._resolve_constants = []

    def shrink_to(self, size: int) -> None:
        del self._values[size:]

    def discard_pending(self) -> None:
        self._resolve_constants = []

    @property
    def has_pending_constants(self) -> bool:
        return bool(self._resolve_constants)

    def replace_slot_value(self, old: Value, new: Value) -> None:
        for i, value in enumerate(self._values):
            if value is old:
                self._values[i] = new

    def placeholders(self, start: int = 0) -> List[int]:
        """Indices at or after start that still hold a placeholder."""
        return [i for i in range(start, len(self._values)) if is_placeholder(self._values[i])]

    # ------------------------------------------------------------------------
    # Definition and forward references
    # ------------------------------------------------------------------------

    def assign_value(self, value: Value, index: int) -> None:
        if index == len(self._values):
            self._values.append(value)
            return
        if index > len(self._values):
            self._values.extend([None] * (index + 1 - len(self._values)))

        old = self._values[index]
        if old is None:
            self._values[index] = value
            return
        if not is_placeholder(old):
            raise DuplicateDefinitionError(ErrorKind.INVALID_VALUE, f"value #{index} defined twice")
        if old.type != value.type:
            raise TypeMismatch(ErrorKind.INVALID_TYPE_FOR_VALUE,
                               f"value #{index} is {value.type!r}, referenced as {old.type!r}")

        if isinstance(old, ConstantPlaceholder):
            if not isinstance(value, Constant):
                raise ForwardReferenceError(ErrorKind.EXPECTED_CONSTANT, f"value #{index}")
            # users are rewritten in bulk by resolve_constant_forward_refs
            self._resolve_constants.append((old, index))
            self._values[index] = value
        else:
            self._values[index] = value
            old.replace_all_uses_with(value)

    def get_constant_fwd_ref(self, index: int, type: Type) -> Constant:
        if index >= len(self._values):
            self._values.extend([None] * (index + 1 - len(self._values)))
        value = self._values[index]
        if value is not None:
            if value.type != type:
                raise TypeMismatch(ErrorKind.INVALID_TYPE_FOR_VALUE,
                                   f"constant #{index} is {value.type!r}, expected {type!r}")
            if not isinstance(value, Constant):
                raise ForwardReferenceError(ErrorKind.EXPECTED_CONSTANT, f"value #{index}")
            return value
        placeholder = ConstantPlaceholder(type)
        self._values[index] = placeholder
        return placeholder

    def get_value_fwd_ref(self, index: int, type: Optional[Type]) -> Optional[Value]:
        """The value at index, or a placeholder of type. None if type is unknown."""
        if index >= len(self._values):
            self._values.extend([None] * (index + 1 - len(self._values)))
        value = self._values[index]
        if value is not None:
            if type is not None and value.type != type:
                raise TypeMismatch(ErrorKind.INVALID_TYPE_FOR_VALUE,
                                   f"value #{index} is {value.type!r}, expected {type!r}")
            return value
        if type is None:
            return None
        placeholder = Argument(type)
        self._values[index] = placeholder
        return placeholder

    # ------------------------------------------------------------------------
    # Bulk constant resolution
    # ------------------------------------------------------------------------

    def resolve_constant_forward_refs(self) -> None:
        """
        Replace every pending constant placeholder with its definition.

        Users that are not uniqued (globals, instructions, metadata, other
        non-pooled constants) are patched in place. A uniqued composite is
        rebuilt once with all of its placeholder operands substituted, then
        the old composite is replaced and destroyed.
        """
        if not self._resolve_constants:
            return
        pending = sorted(self._resolve_constants, key=lambda pair: id(pair[0]))
        self._resolve_constants = []
        keys = [id(placeholder) for placeholder, _ in pending]
        # table slots that hold a composite must follow it when it is rebuilt;
        # a uniqued composite can sit in several slots
        slots: Dict[int, List[int]] = {}
        for i, v in enumerate(self._values):
            if isinstance(v, Constant):
                slots.setdefault(id(v), []).append(i)
        rebuilt = 0

        def resolved(placeholder: Value) -> Value:
            i = bisect.bisect_left(keys, id(placeholder))
            if i == len(keys) or keys[i] != id(placeholder):
                raise UnresolvedForwardReference(ErrorKind.INVALID_CONSTANT_REFERENCE,
                                                 "operand placeholder never defined")
            return self._values[pending[i][1]]

        while pending:
            placeholder, index = pending.pop()
            keys.pop()
            real = self._values[index]

            while placeholder.uses:
                user, operand_index = next(iter(placeholder.uses))
                if (not isinstance(user, Constant) or isinstance(user, GlobalValue)
                        or user.context is None or user._pool_key is None):
                    user.set_operand(operand_index, real)
                    continue

                operands = []
                for op in user.operands:
                    if op is placeholder:
                        operands.append(real)
                    elif isinstance(op, ConstantPlaceholder):
                        operands.append(resolved(op))
                    else:
                        operands.append(op)
                new_constant = user.with_operands(operands)
                user.replace_all_uses_with(new_constant)
                held = slots.pop(id(user), [])
                for slot in held:
                    self._values[slot] = new_constant
                if held:
                    slots.setdefault(id(new_constant), []).extend(held)
                user.destroy()
                rebuilt += 1

        self.rebuilt_constants += rebuilt
        logger.debug("resolved constant forward references, rebuilt %d composites", rebuilt)


class MDValueList:
    def __init__(self):
        self._values: List[Optional[Value]] = []

    def __len__(self):
        return len(self._values)

    def __getitem__(self, index: int) -> Optional[Value]:
        if index < len(self._values):
            return self._values[index]
        return None

    def __iter__(self):
        return iter(self._values)

    def clear(self) -> None:
        self._values = []

    def shrink_to(self, size: int) -> None:
        del self._values[size:]

    def temporaries(self, start: int = 0) -> List[int]:
        return [i for i in range(start, len(self._values))
                if isinstance(self._values[i], MDNode) and self._values[i].temporary]

    def assign_value(self, value: Value, index: int) -> None:
        if index == len(self._values):
            self._values.append(value)
            return
        if index > len(self._values):
            self._values.extend([None] * (index + 1 - len(self._values)))

        old = self._values[index]
        if old is None:
            self._values[index] = value
            return
        if not (isinstance(old, MDNode) and old.temporary):
            raise DuplicateDefinitionError(ErrorKind.INVALID_VALUE, f"metadata #{index} defined twice")
        self._values[index] = value
        old.replace_all_uses_with(value)
        old.drop_all_references()

    def get_value_fwd_ref(self, index: int) -> Value:
        if index >= len(self._values):
            self._values.extend([None] * (index + 1 - len(self._values)))
        value = self._values[index]
        if value is not None:
            if value.type != METADATA:
                raise TypeMismatch(ErrorKind.INVALID_TYPE_FOR_VALUE, f"metadata #{index}")
            return value
        temporary = MDNode(temporary=True)
        self._values[index] = temporary
        return temporary
