"""
LLVM IR Graph Definitions

In-memory IR built by the bitcode reader: types, values, constants,
instructions, globals, metadata and the module.

Every value records its uses as (user, operand index) pairs, so a placeholder
can be swapped for its real definition with replace_all_uses_with(). Simple
constants and constant composites are uniqued per Context; a composite whose
operand changes in place is re-keyed in the pool.
"""

import struct
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional, Sequence, Set, Tuple, Any


# ============================================================================
# Types
# ============================================================================

class Type:
    """Base class for types"""

    @property
    def is_void(self) -> bool:
        return self == VOID

    @property
    def is_label(self) -> bool:
        return self == LABEL

    @property
    def is_metadata(self) -> bool:
        return self == METADATA

    @property
    def is_integer(self) -> bool:
        return isinstance(self, IntegerType)

    @property
    def is_floating_point(self) -> bool:
        return isinstance(self, PrimitiveType) and self.name in FP_BITS

    @property
    def is_fp_or_fp_vector(self) -> bool:
        if isinstance(self, VectorType):
            return self.element.is_floating_point
        return self.is_floating_point

    @property
    def is_pointer(self) -> bool:
        return isinstance(self, PointerType)

    @property
    def is_struct(self) -> bool:
        return isinstance(self, (StructType, LiteralStructType))

    @property
    def is_aggregate(self) -> bool:
        return isinstance(self, (StructType, LiteralStructType, ArrayType))

    @property
    def is_first_class(self) -> bool:
        return not self.is_void and not isinstance(self, FunctionType)


@dataclass(frozen=True, repr=False)
class PrimitiveType(Type):
    name: str  # void, label, metadata, x86_mmx or a floating point kind

    def __repr__(self):
        return self.name


FP_BITS = {
    "half": 16,
    "float": 32,
    "double": 64,
    "x86_fp80": 80,
    "fp128": 128,
    "ppc_fp128": 128,
}

VOID = PrimitiveType("void")
LABEL = PrimitiveType("label")
METADATA = PrimitiveType("metadata")
X86_MMX = PrimitiveType("x86_mmx")
HALF = PrimitiveType("half")
FLOAT = PrimitiveType("float")
DOUBLE = PrimitiveType("double")
X86_FP80 = PrimitiveType("x86_fp80")
FP128 = PrimitiveType("fp128")
PPC_FP128 = PrimitiveType("ppc_fp128")


@dataclass(frozen=True, repr=False)
class IntegerType(Type):
    width: int

    def __repr__(self):
        return f"i{self.width}"


@dataclass(frozen=True, repr=False)
class PointerType(Type):
    pointee: Type
    address_space: int = 0

    def __repr__(self):
        if self.address_space:
            return f"{self.pointee!r} addrspace({self.address_space})*"
        return f"{self.pointee!r}*"


@dataclass(frozen=True, repr=False)
class ArrayType(Type):
    element: Type
    count: int

    def __repr__(self):
        return f"[{self.count} x {self.element!r}]"


@dataclass(frozen=True, repr=False)
class VectorType(Type):
    element: Type
    count: int

    def __repr__(self):
        return f"<{self.count} x {self.element!r}>"


@dataclass(frozen=True, repr=False)
class FunctionType(Type):
    return_type: Type
    params: Tuple[Type, ...] = ()
    var_arg: bool = False

    def __repr__(self):
        params = [repr(p) for p in self.params]
        if self.var_arg:
            params.append("...")
        return f"{self.return_type!r} ({', '.join(params)})"


@dataclass(frozen=True, repr=False)
class LiteralStructType(Type):
    elements: Tuple[Type, ...] = ()
    packed: bool = False

    def __repr__(self):
        body = "{ " + ", ".join(repr(e) for e in self.elements) + " }"
        return f"<{body}>" if self.packed else body


class StructType(Type):
    """
    Identified (named) struct. Compared by identity so it can be created
    as an opaque placeholder and given a body later.
    """

    def __init__(self, name: str = ""):
        self.name = name
        self.elements: Optional[Tuple[Type, ...]] = None
        self.packed = False

    @property
    def is_opaque(self) -> bool:
        return self.elements is None

    def set_body(self, elements: Sequence[Type], packed: bool = False) -> None:
        self.elements = tuple(elements)
        self.packed = packed

    def __repr__(self):
        if self.name:
            return f"%{self.name}"
        return f"%<struct@{id(self):x}>"


def element_type(aggregate: Type, index: Optional[int] = None) -> Optional[Type]:
    if isinstance(aggregate, (ArrayType, VectorType)):
        return aggregate.element
    if isinstance(aggregate, (StructType, LiteralStructType)):
        elements = aggregate.elements
        if elements is None or index is None or not 0 <= index < len(elements):
            return None
        return elements[index]
    return None


def get_indexed_type(aggregate: Type, indices: Sequence[int]) -> Optional[Type]:
    """Type reached by extractvalue/insertvalue style constant indices."""
    current = aggregate
    for index in indices:
        if not isinstance(current, (ArrayType, StructType, LiteralStructType)):
            return None
        current = element_type(current, index)
        if current is None:
            return None
    return current


def get_gep_result_type(base_type: Type, indices: Sequence['Value']) -> Optional[Type]:
    """Result type of a getelementptr over base_type; None if ill-formed."""
    if not isinstance(base_type, PointerType):
        return None
    current = base_type.pointee
    for index in indices[1:]:
        if isinstance(current, (StructType, LiteralStructType)):
            if not isinstance(index, ConstantInt):
                return None
            current = element_type(current, index.value)
        else:
            current = element_type(current)
        if current is None:
            return None
    return PointerType(current, base_type.address_space)


# ============================================================================
# Opcodes
# ============================================================================

class Opcode(Enum):
    # Terminators
    RET = "ret"
    BR = "br"
    SWITCH = "switch"
    INDIRECTBR = "indirectbr"
    INVOKE = "invoke"
    RESUME = "resume"
    UNREACHABLE = "unreachable"
    # Binary
    ADD = "add"
    FADD = "fadd"
    SUB = "sub"
    FSUB = "fsub"
    MUL = "mul"
    FMUL = "fmul"
    UDIV = "udiv"
    SDIV = "sdiv"
    FDIV = "fdiv"
    UREM = "urem"
    SREM = "srem"
    FREM = "frem"
    SHL = "shl"
    LSHR = "lshr"
    ASHR = "ashr"
    AND = "and"
    OR = "or"
    XOR = "xor"
    # Memory
    ALLOCA = "alloca"
    LOAD = "load"
    STORE = "store"
    GETELEMENTPTR = "getelementptr"
    FENCE = "fence"
    CMPXCHG = "cmpxchg"
    ATOMICRMW = "atomicrmw"
    # Casts
    TRUNC = "trunc"
    ZEXT = "zext"
    SEXT = "sext"
    FPTOUI = "fptoui"
    FPTOSI = "fptosi"
    UITOFP = "uitofp"
    SITOFP = "sitofp"
    FPTRUNC = "fptrunc"
    FPEXT = "fpext"
    PTRTOINT = "ptrtoint"
    INTTOPTR = "inttoptr"
    BITCAST = "bitcast"
    # Other
    ICMP = "icmp"
    FCMP = "fcmp"
    PHI = "phi"
    CALL = "call"
    SELECT = "select"
    VAARG = "va_arg"
    EXTRACTELEMENT = "extractelement"
    INSERTELEMENT = "insertelement"
    SHUFFLEVECTOR = "shufflevector"
    EXTRACTVALUE = "extractvalue"
    INSERTVALUE = "insertvalue"
    LANDINGPAD = "landingpad"


TERMINATOR_OPS = frozenset({
    Opcode.RET, Opcode.BR, Opcode.SWITCH, Opcode.INDIRECTBR,
    Opcode.INVOKE, Opcode.RESUME, Opcode.UNREACHABLE,
})

BINARY_OPS = (
    Opcode.ADD, Opcode.SUB, Opcode.MUL, Opcode.UDIV, Opcode.SDIV,
    Opcode.UREM, Opcode.SREM, Opcode.SHL, Opcode.LSHR, Opcode.ASHR,
    Opcode.AND, Opcode.OR, Opcode.XOR,
)

FP_BINARY_OPS = {
    Opcode.ADD: Opcode.FADD,
    Opcode.SUB: Opcode.FSUB,
    Opcode.MUL: Opcode.FMUL,
    Opcode.SDIV: Opcode.FDIV,
    Opcode.SREM: Opcode.FREM,
}

CAST_OPS = (
    Opcode.TRUNC, Opcode.ZEXT, Opcode.SEXT, Opcode.FPTOUI, Opcode.FPTOSI,
    Opcode.UITOFP, Opcode.SITOFP, Opcode.FPTRUNC, Opcode.FPEXT,
    Opcode.PTRTOINT, Opcode.INTTOPTR, Opcode.BITCAST,
)

# Comparison predicates (fcmp 0-15, icmp 32-41)
PREDICATE_NAMES = {
    0: "false", 1: "oeq", 2: "ogt", 3: "oge", 4: "olt", 5: "ole", 6: "one",
    7: "ord", 8: "uno", 9: "ueq", 10: "ugt", 11: "uge", 12: "ult", 13: "ule",
    14: "une", 15: "true",
    32: "eq", 33: "ne", 34: "ugt", 35: "uge", 36: "ult", 37: "ule",
    38: "sgt", 39: "sge", 40: "slt", 41: "sle",
}

RMW_OPS = ("xchg", "add", "sub", "and", "nand", "or", "xor",
           "max", "min", "umax", "umin")

ORDERINGS = ("notatomic", "unordered", "monotonic", "acquire",
             "release", "acq_rel", "seq_cst")


def is_int_predicate(predicate: int) -> bool:
    return 32 <= predicate <= 41


# ============================================================================
# Values
# ============================================================================

class Value:
    """Base class for everything that can be an operand"""

    def __init__(self, type: Optional[Type], name: str = ""):
        self.type = type
        self.name = name
        self.uses: Set[Tuple['User', int]] = set()

    @property
    def num_uses(self) -> int:
        return len(self.uses)

    def users(self) -> List['User']:
        return [user for user, _ in self.uses]

    def replace_all_uses_with(self, new: 'Value') -> None:
        if new is self:
            return
        for user, index in list(self.uses):
            # a user rebuilt during this loop drops its operands
            if (user, index) in self.uses:
                user.set_operand(index, new)

    def __repr__(self):
        name = f" %{self.name}" if self.name else ""
        return f"<{type(self).__name__} {self.type!r}{name}>"


class User(Value):
    """A value with operands. None is allowed as an empty operand."""

    def __init__(self, type: Optional[Type], operands: Sequence[Optional[Value]] = (),
                 name: str = ""):
        super().__init__(type, name)
        self.operands: List[Optional[Value]] = []
        for op in operands:
            self.append_operand(op)

    def set_operand(self, index: int, value: Optional[Value]) -> None:
        old = self.operands[index]
        if old is value:
            return
        if old is not None:
            old.uses.discard((self, index))
        self.operands[index] = value
        if value is not None:
            value.uses.add((self, index))

    def append_operand(self, value: Optional[Value]) -> None:
        self.operands.append(value)
        if value is not None:
            value.uses.add((self, len(self.operands) - 1))

    def drop_all_references(self) -> None:
        for index, op in enumerate(self.operands):
            if op is not None:
                op.uses.discard((self, index))
        self.operands = []


class Argument(Value):
    """
    Formal function argument. An Argument without a parent function is a
    forward-reference placeholder for a value not yet decoded.
    """

    def __init__(self, type: Type, parent: Optional['Function'] = None, arg_no: int = 0,
                 name: str = ""):
        super().__init__(type, name)
        self.parent = parent
        self.arg_no = arg_no

    @property
    def is_placeholder(self) -> bool:
        return self.parent is None


class BasicBlock(Value):
    def __init__(self, name: str = "", parent: Optional['Function'] = None):
        super().__init__(LABEL, name)
        self.parent = parent
        self.instructions: List['Instruction'] = []

    def append(self, inst: 'Instruction') -> None:
        inst.parent = self
        self.instructions.append(inst)

    def insert_before(self, inst: 'Instruction', before: 'Instruction') -> None:
        inst.parent = self
        self.instructions.insert(self.instructions.index(before), inst)

    def remove(self, inst: 'Instruction') -> None:
        self.instructions.remove(inst)
        inst.parent = None

    @property
    def terminator(self) -> Optional['Instruction']:
        if self.instructions and self.instructions[-1].is_terminator:
            return self.instructions[-1]
        return None


@dataclass
class DebugLoc:
    line: int
    col: int
    scope: Optional['MetadataHandle'] = None
    inlined_at: Optional['MetadataHandle'] = None

    def same_as(self, other: Optional['DebugLoc']) -> bool:
        if other is None:
            return False
        return (self.line == other.line and self.col == other.col
                and _handle_node(self.scope) is _handle_node(other.scope)
                and _handle_node(self.inlined_at) is _handle_node(other.inlined_at))


def _handle_node(handle: Optional['MetadataHandle']) -> Optional[Value]:
    return handle.node if handle is not None else None


class Instruction(User):
    """
    One instruction. Opcode-specific data lives in attrs, e.g. 'flags',
    'predicate', 'indices', 'alignment', 'volatile', 'ordering', 'scope',
    'cc', 'tail', 'attributes', 'inbounds', 'op', 'cleanup', 'clauses',
    'allocated_type'.

    Operand layouts:
        phi     [v0, bb0, v1, bb1, ...]
        switch  [cond, default, val0, bb0, ...]
        br      [dest] or [cond, true, false]
        call    [callee, args...]
        invoke  [callee, normal, unwind, args...]
    """

    def __init__(self, opcode: Opcode, type: Type, operands: Sequence[Optional[Value]] = (),
                 name: str = "", **attrs):
        super().__init__(type, operands, name)
        self.opcode = opcode
        self.attrs: Dict[str, Any] = attrs
        self.parent: Optional[BasicBlock] = None
        self.debug_loc: Optional[DebugLoc] = None
        self.metadata: Dict[str, 'MetadataHandle'] = {}

    @property
    def is_terminator(self) -> bool:
        return self.opcode in TERMINATOR_OPS

    def set_metadata(self, kind: str, node: Value) -> None:
        self.metadata[kind] = MetadataHandle(node)

    def get_metadata(self, kind: str) -> Optional[Value]:
        handle = self.metadata.get(kind)
        return handle.node if handle is not None else None

    def erase_from_parent(self) -> None:
        if self.parent is not None:
            self.parent.remove(self)
        self.drop_all_references()
        for handle in self.metadata.values():
            handle.drop_all_references()
        self.metadata = {}

    def __repr__(self):
        name = f"%{self.name} = " if self.name else ""
        return f"<Instruction {name}{self.opcode.value} {self.type!r}>"


# ============================================================================
# Constants
# ============================================================================

class Constant(User):
    """Base class for constants. Uniqued constants carry their pool key."""

    context: Optional['Context'] = None
    _pool_key: Optional[tuple] = None

    def compute_key(self) -> Optional[tuple]:
        return None

    def set_operand(self, index: int, value: Optional[Value]) -> None:
        context = self.context
        if context is None or self._pool_key is None:
            super().set_operand(index, value)
            return
        context.forget(self)
        super().set_operand(index, value)
        context.remember(self)

    def destroy(self) -> None:
        """Remove an unused constant from its pool and drop its operands."""
        if self.context is not None:
            self.context.forget(self)
        self.drop_all_references()


class UndefValue(Constant):
    def compute_key(self):
        return ("undef", self.type)


class ConstantNull(Constant):
    """Null pointer, zero scalar or zeroinitializer aggregate"""

    def compute_key(self):
        return ("null", self.type)


class ConstantInt(Constant):
    def __init__(self, type: IntegerType, value: int):
        super().__init__(type)
        self.value = normalize_int(value, type.width)

    def compute_key(self):
        return ("int", self.type, self.value)

    @property
    def unsigned_value(self) -> int:
        return self.value & ((1 << self.type.width) - 1)

    def __repr__(self):
        return f"<ConstantInt {self.type!r} {self.value}>"


def normalize_int(value: int, width: int) -> int:
    """Wrap value to width bits, two's complement."""
    value &= (1 << width) - 1
    if width and value >> (width - 1):
        value -= 1 << width
    return value


class ConstantFP(Constant):
    """Floating point constant stored as its raw bit pattern."""

    def __init__(self, type: PrimitiveType, bits: int):
        super().__init__(type)
        self.bits = bits

    def compute_key(self):
        return ("fp", self.type, self.bits)

    @property
    def value(self) -> float:
        name = self.type.name
        if name == "float":
            return struct.unpack("<f", struct.pack("<I", self.bits))[0]
        if name == "double":
            return struct.unpack("<d", struct.pack("<Q", self.bits))[0]
        if name == "half":
            return struct.unpack("<e", struct.pack("<H", self.bits))[0]
        raise ValueError(f"no host representation for {name}")

    def __repr__(self):
        return f"<ConstantFP {self.type!r} 0x{self.bits:x}>"


class ConstantAggregate(Constant):
    """Constant struct, array or vector"""

    def compute_key(self):
        return ("agg", self.type, tuple(id(op) for op in self.operands))

    @property
    def elements(self) -> List[Value]:
        return self.operands

    def with_operands(self, operands: Sequence[Value]) -> 'Constant':
        return self.context.get_aggregate(self.type, operands)


class ConstantExpr(Constant):
    def __init__(self, opcode: Opcode, type: Type, operands: Sequence[Value], **attrs):
        super().__init__(type, operands)
        self.opcode = opcode
        self.attrs = attrs

    def compute_key(self):
        return ("expr", self.opcode, self.type, tuple(id(op) for op in self.operands),
                tuple(sorted(self.attrs.items())))

    def with_operands(self, operands: Sequence[Value]) -> 'Constant':
        return self.context.get_expr(self.opcode, self.type, operands, **self.attrs)

    def __repr__(self):
        return f"<ConstantExpr {self.opcode.value} {self.type!r}>"


class ConstantPlaceholder(Constant):
    """Stand-in for a constant referenced before its definition"""
    pass


class InlineAsm(Constant):
    def __init__(self, type: PointerType, asm: str, constraints: str,
                 side_effects: bool = False, align_stack: bool = False):
        super().__init__(type)
        self.asm = asm
        self.constraints = constraints
        self.side_effects = side_effects
        self.align_stack = align_stack

    def compute_key(self):
        return ("asm", self.type, self.asm, self.constraints,
                self.side_effects, self.align_stack)


class BlockAddress(Constant):
    """Address of a basic block: operands [function, block]"""

    def __init__(self, function: 'Function', block: BasicBlock):
        super().__init__(PointerType(IntegerType(8)), [function, block])

    @property
    def function(self) -> 'Function':
        return self.operands[0]

    @property
    def block(self) -> BasicBlock:
        return self.operands[1]


# ============================================================================
# Global values
# ============================================================================

class GlobalValue(Constant):
    def __init__(self, type: Type, name: str = "", linkage: str = "external"):
        super().__init__(type, name=name)
        self.linkage = linkage
        self.visibility = "default"
        self.section: Optional[str] = None
        self.alignment = 0
        self.unnamed_addr = False
        self.parent: Optional['Module'] = None

    @property
    def is_declaration(self) -> bool:
        return False


class GlobalVariable(GlobalValue):
    def __init__(self, value_type: Type, name: str = "", linkage: str = "external",
                 is_constant: bool = False, address_space: int = 0):
        super().__init__(PointerType(value_type, address_space), name, linkage)
        self.value_type = value_type
        self.is_constant = is_constant
        self.address_space = address_space
        self.thread_local: Optional[str] = None

    @property
    def initializer(self) -> Optional[Constant]:
        return self.operands[0] if self.operands else None

    @initializer.setter
    def initializer(self, value: Optional[Constant]) -> None:
        if value is None:
            self.drop_all_references()
        elif self.operands:
            self.set_operand(0, value)
        else:
            self.append_operand(value)

    @property
    def is_declaration(self) -> bool:
        return not self.operands


class GlobalAlias(GlobalValue):
    def __init__(self, type: Type, name: str = "", linkage: str = "external"):
        super().__init__(type, name, linkage)

    @property
    def aliasee(self) -> Optional[Constant]:
        return self.operands[0] if self.operands else None

    @aliasee.setter
    def aliasee(self, value: Constant) -> None:
        if self.operands:
            self.set_operand(0, value)
        else:
            self.append_operand(value)


class FunctionState(Enum):
    DECLARED = "declared"
    DEFERRED = "deferred"
    MATERIALIZED = "materialized"


class Function(GlobalValue):
    def __init__(self, function_type: FunctionType, name: str = "",
                 linkage: str = "external"):
        super().__init__(PointerType(function_type), name, linkage)
        self.function_type = function_type
        self.calling_conv = 0
        self.attributes = None
        self.gc: Optional[str] = None
        self.args = [Argument(t, self, i) for i, t in enumerate(function_type.params)]
        self.blocks: List[BasicBlock] = []

    @property
    def is_declaration(self) -> bool:
        return not self.blocks

    @property
    def is_intrinsic(self) -> bool:
        return self.name.startswith("llvm.")

    @property
    def state(self) -> FunctionState:
        if self.blocks:
            return FunctionState.MATERIALIZED
        if self.parent is not None and self.parent.is_materializable(self):
            return FunctionState.DEFERRED
        return FunctionState.DECLARED

    def instructions(self):
        for block in self.blocks:
            yield from block.instructions

    def delete_body(self) -> None:
        for block in self.blocks:
            for inst in block.instructions:
                inst.drop_all_references()
                for handle in inst.metadata.values():
                    handle.drop_all_references()
                inst.parent = None
            block.instructions = []
            block.parent = None
        self.blocks = []

    def __repr__(self):
        return f"<Function @{self.name} {self.function_type!r}>"


# ============================================================================
# Metadata
# ============================================================================

class MDString(Value):
    def __init__(self, string: str):
        super().__init__(METADATA)
        self.string = string

    def __repr__(self):
        return f"<MDString {self.string!r}>"


class MDNode(User):
    """
    Metadata tuple. A temporary node stands in for a forward reference and
    is replaced wholesale when the definition arrives.
    """

    def __init__(self, operands: Sequence[Optional[Value]] = (), function_local: bool = False,
                 temporary: bool = False):
        super().__init__(METADATA, operands)
        self.function_local = function_local
        self.temporary = temporary

    def __repr__(self):
        kind = "temporary " if self.temporary else ""
        return f"<MDNode {kind}{len(self.operands)} operands>"


class NamedMDNode(User):
    def __init__(self, name: str):
        super().__init__(None)
        self.name = name

    def add_operand(self, node: Value) -> None:
        self.append_operand(node)


class MetadataHandle(User):
    """Tracking reference to a metadata node held outside the operand list"""

    def __init__(self, node: Value):
        super().__init__(None, [node])

    @property
    def node(self) -> Optional[Value]:
        return self.operands[0] if self.operands else None


# ============================================================================
# Context
# ============================================================================

class Context:
    """Owns the uniqued constants of one decode session."""

    def __init__(self):
        self._pool: Dict[tuple, Constant] = {}

    def __len__(self):
        return len(self._pool)

    def _intern(self, constant: Constant) -> Constant:
        key = constant.compute_key()
        existing = self._pool.get(key)
        if existing is not None:
            constant.drop_all_references()
            return existing
        constant.context = self
        constant._pool_key = key
        self._pool[key] = constant
        return constant

    def forget(self, constant: Constant) -> None:
        key = constant._pool_key
        if key is not None and self._pool.get(key) is constant:
            del self._pool[key]

    def remember(self, constant: Constant) -> None:
        key = constant.compute_key()
        if key in self._pool:
            # an equal constant already exists; this one stays unpooled
            constant._pool_key = None
            return
        constant._pool_key = key
        self._pool[key] = constant

    def get_undef(self, type: Type) -> Constant:
        return self._lookup(("undef", type)) or self._intern(UndefValue(type))

    def get_null(self, type: Type) -> Constant:
        return self._lookup(("null", type)) or self._intern(ConstantNull(type))

    def get_int(self, type: IntegerType, value: int) -> ConstantInt:
        value = normalize_int(value, type.width)
        return self._lookup(("int", type, value)) or self._intern(ConstantInt(type, value))

    def get_fp(self, type: PrimitiveType, bits: int) -> ConstantFP:
        return self._lookup(("fp", type, bits)) or self._intern(ConstantFP(type, bits))

    def get_aggregate(self, type: Type, elements: Sequence[Value]) -> Constant:
        key = ("agg", type, tuple(id(e) for e in elements))
        return self._lookup(key) or self._intern(ConstantAggregate(type, elements))

    def get_expr(self, opcode: Opcode, type: Type, operands: Sequence[Value], **attrs) -> Constant:
        key = ("expr", opcode, type, tuple(id(op) for op in operands),
               tuple(sorted(attrs.items())))
        return self._lookup(key) or self._intern(ConstantExpr(opcode, type, operands, **attrs))

    def get_inline_asm(self, type: PointerType, asm: str, constraints: str,
                       side_effects: bool = False, align_stack: bool = False) -> Constant:
        key = ("asm", type, asm, constraints, side_effects, align_stack)
        return self._lookup(key) or self._intern(
            InlineAsm(type, asm, constraints, side_effects, align_stack))

    def _lookup(self, key: tuple) -> Optional[Constant]:
        return self._pool.get(key)


# ============================================================================
# Module
# ============================================================================

FIXED_MD_KINDS = ("dbg", "tbaa", "prof", "fpmath", "range")


class Module:
    def __init__(self, name: str = "", context: Optional[Context] = None):
        self.name = name
        self.context = context or Context()
        self.triple = ""
        self.data_layout = ""
        self.inline_asm = ""
        self.global_variables: List[GlobalVariable] = []
        self.functions: List[Function] = []
        self.aliases: List[GlobalAlias] = []
        self.named_metadata: Dict[str, NamedMDNode] = {}
        self.md_kinds: Dict[str, int] = {name: i for i, name in enumerate(FIXED_MD_KINDS)}
        self.materializer = None

    # ------------------------------------------------------------------------
    # Globals
    # ------------------------------------------------------------------------

    def add_global_variable(self, gv: GlobalVariable) -> GlobalVariable:
        gv.parent = self
        self.global_variables.append(gv)
        return gv

    def add_function(self, fn: Function) -> Function:
        fn.parent = self
        self.functions.append(fn)
        return fn

    def add_alias(self, alias: GlobalAlias) -> GlobalAlias:
        alias.parent = self
        self.aliases.append(alias)
        return alias

    def remove_global_variable(self, gv: GlobalVariable) -> None:
        self.global_variables.remove(gv)
        gv.parent = None
        gv.drop_all_references()

    def remove_function(self, fn: Function) -> None:
        self.functions.remove(fn)
        fn.parent = None
        fn.delete_body()

    def get_function(self, name: str) -> Optional[Function]:
        for fn in self.functions:
            if fn.name == name:
                return fn
        return None

    def get_global_variable(self, name: str) -> Optional[GlobalVariable]:
        for gv in self.global_variables:
            if gv.name == name:
                return gv
        return None

    def get_or_insert_function(self, name: str, function_type: FunctionType) -> Function:
        fn = self.get_function(name)
        if fn is None:
            fn = self.add_function(Function(function_type, name))
        return fn

    # ------------------------------------------------------------------------
    # Metadata
    # ------------------------------------------------------------------------

    def get_or_insert_named_metadata(self, name: str) -> NamedMDNode:
        node = self.named_metadata.get(name)
        if node is None:
            node = NamedMDNode(name)
            self.named_metadata[name] = node
        return node

    def get_md_kind_id(self, name: str) -> int:
        if name not in self.md_kinds:
            self.md_kinds[name] = len(self.md_kinds)
        return self.md_kinds[name]

    def get_md_kind_name(self, kind_id: int) -> Optional[str]:
        for name, value in self.md_kinds.items():
            if value == kind_id:
                return name
        return None

    # ------------------------------------------------------------------------
    # Materialization
    # ------------------------------------------------------------------------

    def is_materializable(self, gv: GlobalValue) -> bool:
        return self.materializer is not None and self.materializer.is_materializable(gv)

    def is_dematerializable(self, gv: GlobalValue) -> bool:
        return self.materializer is not None and self.materializer.is_dematerializable(gv)

    def materialize(self, gv: GlobalValue) -> None:
        if self.materializer is not None:
            self.materializer.materialize(gv)

    def dematerialize(self, gv: GlobalValue) -> None:
        if self.materializer is not None:
            self.materializer.dematerialize(gv)

    def materialize_all(self) -> None:
        if self.materializer is not None:
            self.materializer.materialize_all()

    def materialize_all_permanently(self) -> None:
        self.materialize_all()
        self.materializer = None

    def __repr__(self):
        return (f"<Module {self.name!r}: {len(self.global_variables)} globals, "
                f"{len(self.functions)} functions>")
