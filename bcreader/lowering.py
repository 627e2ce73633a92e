"""
llvmlite Lowering

Rebuilds a decoded module with llvmlite.ir so it can be printed as textual IR
or handed to llvmlite.binding. The decoded graph is never modified.

Lowering order:

    1. identified struct types (bodies set lazily through the type cache)
    2. every global variable and function, with all basic blocks created
       up front so blockaddress constants can refer to any of them
    3. global initializers and named metadata
    4. function bodies, one block at a time in reverse postorder from the
       entry so each definition is lowered before its uses; phi incoming
       values are added once the whole body exists

Constructs llvmlite cannot express (aliases, cmpxchg, va_arg, the 80 and
128 bit float types, x86_mmx) raise LoweringError. Debug locations and
volatile flags are not carried over.
"""

import logging
from typing import Dict, List, Optional, Tuple

from llvmlite import ir
from llvmlite.ir.instructions import CallInstrAttributes
from llvmlite.ir.values import ArgumentAttributes, FunctionAttributes

from bcreader.attributes import AttributeSet
from ir_nodes import (
    Argument, ArrayType, BasicBlock, BlockAddress, Constant, ConstantAggregate,
    ConstantExpr, ConstantFP, ConstantInt, ConstantNull, Function, FunctionType,
    GlobalValue, GlobalVariable, InlineAsm, Instruction, IntegerType, LiteralStructType,
    MDNode, MDString, Module, Opcode, PointerType, PrimitiveType, StructType, Type,
    UndefValue, Value, VectorType, BINARY_OPS, CAST_OPS, FP_BINARY_OPS, PREDICATE_NAMES,
    is_int_predicate,
)

logger = logging.getLogger(__name__)


class LoweringError(Exception):
    """The decoded module uses something llvmlite.ir cannot represent"""
    pass


CALLING_CONVENTIONS = {
    0: "",
    8: "fastcc",
    9: "coldcc",
    64: "x86_stdcallcc",
    65: "x86_fastcallcc",
    66: "arm_apcscc",
    67: "arm_aapcscc",
    68: "arm_aapcs_vfpcc",
    69: "msp430_intrcc",
    70: "x86_thiscallcc",
    71: "ptx_kernel",
    72: "ptx_device",
}

_PRIMITIVE_TYPES = {
    "void": ir.VoidType,
    "label": ir.LabelType,
    "metadata": ir.MetaDataType,
    "half": ir.HalfType,
    "float": ir.FloatType,
    "double": ir.DoubleType,
}

_BINARY_METHODS = {op: op.value for op in BINARY_OPS + tuple(FP_BINARY_OPS.values())}
_BINARY_METHODS[Opcode.AND] = "and_"
_BINARY_METHODS[Opcode.OR] = "or_"

_COMPARISONS = {"gt": ">", "ge": ">=", "lt": "<", "le": "<="}

# Attributes an llvmlite argument or return value can print by name alone
_ARGUMENT_ATTRIBUTES = frozenset(
    name for name, needs_type in ArgumentAttributes._known.items() if not needs_type)


def calling_convention_name(cc: int) -> str:
    return CALLING_CONVENTIONS.get(cc, f"cc {cc}")


def _linkage(linkage: str) -> str:
    return "" if linkage == "external" else linkage


def _typed_ref(value) -> str:
    return f"{value.type} {value.get_reference()}"


class ModuleLowering:
    """Lowers one decoded Module into a fresh llvmlite module."""

    def __init__(self, module: Module):
        self.module = module
        self.context = ir.Context()
        self.ir_module = ir.Module(name=module.name, context=self.context)
        self._types: Dict[object, ir.Type] = {}
        self._globals: Dict[int, ir.GlobalValue] = {}
        self._blocks: Dict[int, ir.Block] = {}
        self._constants: Dict[int, ir.Value] = {}
        self._metadata: Dict[int, ir.Value] = {}
        self._in_progress = set()

        # per function state
        self._locals: Dict[int, ir.Value] = {}
        self._pending_phis: List[Tuple[ir.Instruction, Instruction]] = []

    def lower(self) -> ir.Module:
        module = self.module
        if module.aliases:
            raise LoweringError(f"global aliases are not supported ({module.aliases[0].name})")
        for fn in module.functions:
            if module.is_materializable(fn):
                raise LoweringError(f"function '{fn.name}' is not materialized")

        if module.triple:
            self.ir_module.triple = module.triple
        self.ir_module.data_layout = module.data_layout

        # named globals first so generated names cannot collide with them
        unnamed = []
        for gv in module.global_variables + module.functions:
            if gv.name:
                self._declare(gv, gv.name)
            else:
                unnamed.append(gv)
        for gv in unnamed:
            self._declare(gv, self.ir_module.get_unique_name("anon"))

        for gv in module.global_variables:
            if gv.initializer is not None:
                self._globals[id(gv)].initializer = self._constant(gv.initializer)

        for name, named in module.named_metadata.items():
            self.ir_module.add_named_metadata(name)
            for node in named.operands:
                self.ir_module.add_named_metadata(name, self._module_metadata(node))

        for fn in module.functions:
            if fn.blocks:
                self._lower_body(fn)

        logger.debug("lowered module %r: %d globals, %d functions", module.name,
                     len(module.global_variables), len(module.functions))
        return self.ir_module

    # ========================================================================
    # Types
    # ========================================================================

    def lower_type(self, type: Type) -> ir.Type:
        key = id(type) if isinstance(type, StructType) else type
        lowered = self._types.get(key)
        if lowered is not None:
            return lowered

        if isinstance(type, StructType):
            name = type.name or "struct.anon"
            lowered = self.context.get_identified_type(self.context.scope.deduplicate(name),
                                                       packed=type.packed)
            self._types[key] = lowered
            if not type.is_opaque:
                lowered.set_body(*[self.lower_type(e) for e in type.elements])
            return lowered

        if isinstance(type, PrimitiveType):
            factory = _PRIMITIVE_TYPES.get(type.name)
            if factory is None:
                raise LoweringError(f"type {type!r} is not supported")
            lowered = factory()
        elif isinstance(type, IntegerType):
            lowered = ir.IntType(type.width)
        elif isinstance(type, PointerType):
            lowered = ir.PointerType(self.lower_type(type.pointee), type.address_space)
        elif isinstance(type, ArrayType):
            lowered = ir.ArrayType(self.lower_type(type.element), type.count)
        elif isinstance(type, VectorType):
            lowered = ir.VectorType(self.lower_type(type.element), type.count)
        elif isinstance(type, FunctionType):
            lowered = ir.FunctionType(self.lower_type(type.return_type),
                                      [self.lower_type(p) for p in type.params],
                                      var_arg=type.var_arg)
        elif isinstance(type, LiteralStructType):
            lowered = ir.LiteralStructType([self.lower_type(e) for e in type.elements],
                                           packed=type.packed)
        else:
            raise LoweringError(f"type {type!r} is not supported")
        self._types[key] = lowered
        return lowered

    # ========================================================================
    # Globals
    # ========================================================================

    def _declare(self, gv: GlobalValue, name: str) -> None:
        if isinstance(gv, Function):
            lowered = ir.Function(self.ir_module, self.lower_type(gv.function_type), name)
            lowered.calling_convention = calling_convention_name(gv.calling_conv)
            self._apply_function_attributes(lowered, gv.attributes)
            for arg, ir_arg in zip(gv.args, lowered.args):
                if arg.name:
                    ir_arg.name = arg.name
            for block in gv.blocks:
                self._blocks[id(block)] = lowered.append_basic_block(block.name)
        else:
            lowered = ir.GlobalVariable(self.ir_module, self.lower_type(gv.value_type), name,
                                        addrspace=gv.address_space)
            lowered.global_constant = gv.is_constant
            lowered.unnamed_addr = gv.unnamed_addr
            if gv.alignment:
                lowered.align = gv.alignment
            if gv.thread_local:
                mode = gv.thread_local
                lowered.storage_class = ("thread_local" if mode == "generaldynamic"
                                         else f"thread_local({mode})")
        lowered.linkage = _linkage(gv.linkage)
        if gv.section:
            lowered.section = gv.section
        self._globals[id(gv)] = lowered

    def _apply_function_attributes(self, fn: ir.Function,
                                   attributes: Optional[AttributeSet]) -> None:
        if attributes is None:
            return
        fn_slot = attributes.function_attributes
        if fn_slot is not None:
            for name in fn_slot.names:
                if name in FunctionAttributes._known:
                    fn.attributes.add(name)
            if fn_slot.stack_alignment:
                fn.attributes.alignstack = fn_slot.stack_alignment
        ret_slot = attributes.return_attributes
        if ret_slot is not None:
            for name in ret_slot.names:
                if name in _ARGUMENT_ATTRIBUTES:
                    fn.return_value.add_attribute(name)
        for i, arg in enumerate(fn.args):
            slot = attributes.param_attributes(i)
            if slot is None:
                continue
            for name in slot.names:
                if name in _ARGUMENT_ATTRIBUTES:
                    arg.add_attribute(name)
            if slot.alignment:
                arg.attributes.align = slot.alignment

    # ========================================================================
    # Constants
    # ========================================================================

    def _constant(self, constant: Constant) -> ir.Value:
        lowered = self._constants.get(id(constant))
        if lowered is None:
            lowered = self._lower_constant(constant)
            self._constants[id(constant)] = lowered
        return lowered

    def _lower_constant(self, constant: Constant) -> ir.Value:
        if isinstance(constant, GlobalValue):
            lowered = self._globals.get(id(constant))
            if lowered is None:
                raise LoweringError(f"{constant!r} does not belong to the module")
            return lowered

        type = self.lower_type(constant.type)
        if isinstance(constant, UndefValue):
            return ir.Constant(type, ir.Undefined)
        if isinstance(constant, ConstantNull):
            return ir.Constant(type, None)
        if isinstance(constant, ConstantInt):
            if constant.type.width == 1:
                return ir.Constant(type, bool(constant.value))
            return ir.Constant(type, constant.value)
        if isinstance(constant, ConstantFP):
            try:
                return ir.Constant(type, constant.value)
            except ValueError as e:
                raise LoweringError(str(e)) from e
        if isinstance(constant, ConstantAggregate):
            elements = constant.elements
            if (isinstance(constant.type, ArrayType) and constant.type.element == IntegerType(8)
                    and all(isinstance(e, ConstantInt) for e in elements)):
                return ir.Constant(type, bytearray(e.unsigned_value for e in elements))
            return ir.Constant(type, [self._constant(e) for e in elements])
        if isinstance(constant, BlockAddress):
            return ir.BlockAddress(self._constant(constant.function),
                                   self._blocks[id(constant.block)])
        if isinstance(constant, ConstantExpr):
            return ir.FormattedConstant(type, self._expression_text(constant))
        raise LoweringError(f"cannot lower constant {constant!r}")

    def _expression_text(self, expr: ConstantExpr) -> str:
        opcode = expr.opcode
        operands = [self._constant(op) for op in expr.operands]
        attrs = expr.attrs

        if opcode in CAST_OPS:
            return f"{opcode.value} ({_typed_ref(operands[0])} to {self.lower_type(expr.type)})"
        if opcode == Opcode.GETELEMENTPTR:
            base = operands[0]
            keyword = "getelementptr inbounds" if attrs.get("inbounds") else "getelementptr"
            args = ", ".join(_typed_ref(op) for op in operands)
            return f"{keyword} ({base.type.pointee}, {args})"
        if opcode in (Opcode.ICMP, Opcode.FCMP):
            predicate = PREDICATE_NAMES[attrs["predicate"]]
            args = ", ".join(_typed_ref(op) for op in operands)
            return f"{opcode.value} {predicate} ({args})"

        keyword = opcode.value
        flags = attrs.get("flags", ())
        if flags:
            keyword = " ".join((keyword,) + tuple(flags))
        return f"{keyword} ({', '.join(_typed_ref(op) for op in operands)})"

    # ========================================================================
    # Metadata
    # ========================================================================

    def _module_metadata(self, node: Value) -> ir.Value:
        if isinstance(node, MDString):
            return ir.MetaDataString(self.ir_module, node.string)
        if not isinstance(node, MDNode):
            raise LoweringError(f"{node!r} is not a metadata node")
        if node.function_local:
            raise LoweringError("function-local metadata outside a call argument")

        lowered = self._metadata.get(id(node))
        if lowered is not None:
            return lowered
        if id(node) in self._in_progress:
            raise LoweringError("cyclic metadata is not supported")
        self._in_progress.add(id(node))
        operands = []
        for op in node.operands:
            if op is None or isinstance(op, (MDString, MDNode)):
                operands.append(op if op is None else self._module_metadata(op))
            elif isinstance(op, Constant):
                operands.append(self._constant(op))
            else:
                raise LoweringError(f"metadata operand {op!r} is not supported")
        self._in_progress.discard(id(node))
        lowered = self.ir_module.add_metadata(operands)
        self._metadata[id(node)] = lowered
        return lowered

    # ========================================================================
    # Function bodies
    # ========================================================================

    def _lower_body(self, fn: Function) -> None:
        ir_fn = self._globals[id(fn)]
        self._locals = {id(arg): ir_arg for arg, ir_arg in zip(fn.args, ir_fn.args)}
        self._pending_phis = []
        builder = ir.IRBuilder()
        try:
            for block in block_order(fn):
                builder.position_at_end(self._blocks[id(block)])
                for inst in block.instructions:
                    lowered = self._lower_instruction(builder, ir_fn, inst)
                    if lowered is not None:
                        self._locals[id(inst)] = lowered
                        for kind, handle in inst.metadata.items():
                            if handle.node is not None:
                                lowered.set_metadata(kind, self._module_metadata(handle.node))
            for ir_phi, phi in self._pending_phis:
                operands = phi.operands
                for i in range(0, len(operands), 2):
                    ir_phi.add_incoming(self._value(operands[i]), self._value(operands[i + 1]))
        except (TypeError, ValueError) as e:
            raise LoweringError(f"in function '{fn.name}': {e}") from e
        self._locals = {}
        self._pending_phis = []

    def _value(self, value: Optional[Value]) -> ir.Value:
        if isinstance(value, BasicBlock):
            return self._blocks[id(value)]
        if isinstance(value, (Instruction, Argument)):
            lowered = self._locals.get(id(value))
            if lowered is None:
                raise LoweringError(f"{value!r} is used before its definition")
            return lowered
        if isinstance(value, MDString):
            return ir.MetaDataString(self.ir_module, value.string)
        if isinstance(value, MDNode):
            # a local wrapper around one value is passed as that value
            if value.function_local and len(value.operands) == 1:
                return self._value(value.operands[0])
            return self._module_metadata(value)
        if isinstance(value, InlineAsm):
            raise LoweringError("inline asm used as a value")
        if isinstance(value, Constant):
            return self._constant(value)
        raise LoweringError(f"cannot lower operand {value!r}")

    def _callee(self, callee: Value):
        if isinstance(callee, InlineAsm):
            return ir.InlineAsm(self.lower_type(callee.type.pointee), callee.asm,
                                callee.constraints, callee.side_effects)
        lowered = self._value(callee)
        if not isinstance(lowered, ir.NamedValue):
            raise LoweringError(f"indirect call through a constant expression ({callee!r})")
        return lowered

    def _personality(self, ir_fn: ir.Function, personality: Value) -> None:
        while isinstance(personality, ConstantExpr) and personality.opcode == Opcode.BITCAST:
            personality = personality.operands[0]
        if not isinstance(personality, GlobalValue):
            raise LoweringError(f"personality {personality!r} is not a global")
        lowered = self._constant(personality)
        current = ir_fn.attributes.personality
        if current is not None and current is not lowered:
            raise LoweringError(f"function '{ir_fn.name}' uses two personalities")
        ir_fn.attributes.personality = lowered

    def _lower_instruction(self, builder: ir.IRBuilder, ir_fn: ir.Function,
                           inst: Instruction) -> Optional[ir.Value]:
        opcode = inst.opcode
        attrs = inst.attrs
        name = inst.name
        ops = inst.operands
        value = self._value

        if opcode in _BINARY_METHODS:
            method = getattr(builder, _BINARY_METHODS[opcode])
            return method(value(ops[0]), value(ops[1]), name=name,
                          flags=list(attrs.get("flags", ())))

        if opcode in CAST_OPS:
            method = getattr(builder, opcode.value)
            return method(value(ops[0]), self.lower_type(inst.type), name=name)

        if opcode == Opcode.ICMP:
            predicate = PREDICATE_NAMES[attrs["predicate"]]
            lhs, rhs = value(ops[0]), value(ops[1])
            if predicate in ("eq", "ne"):
                return builder.icmp_unsigned("==" if predicate == "eq" else "!=", lhs, rhs, name)
            method = builder.icmp_signed if predicate[0] == "s" else builder.icmp_unsigned
            return method(_COMPARISONS[predicate[1:]], lhs, rhs, name)

        if opcode == Opcode.FCMP:
            # llvmlite passes predicate names it does not map through unchanged
            predicate = PREDICATE_NAMES[attrs["predicate"]]
            if is_int_predicate(attrs["predicate"]):
                raise LoweringError(f"fcmp with integer predicate {predicate}")
            return builder.fcmp_ordered(predicate, value(ops[0]), value(ops[1]), name)

        if opcode == Opcode.GETELEMENTPTR:
            return builder.gep(value(ops[0]), [value(op) for op in ops[1:]],
                               inbounds=attrs.get("inbounds", False), name=name)

        if opcode == Opcode.SELECT:
            return builder.select(value(ops[0]), value(ops[1]), value(ops[2]), name)

        if opcode == Opcode.EXTRACTVALUE:
            return builder.extract_value(value(ops[0]), list(attrs["indices"]), name)

        if opcode == Opcode.INSERTVALUE:
            return builder.insert_value(value(ops[0]), value(ops[1]), list(attrs["indices"]), name)

        if opcode == Opcode.EXTRACTELEMENT:
            return builder.extract_element(value(ops[0]), value(ops[1]), name)

        if opcode == Opcode.INSERTELEMENT:
            return builder.insert_element(value(ops[0]), value(ops[1]), value(ops[2]), name)

        if opcode == Opcode.SHUFFLEVECTOR:
            return builder.shuffle_vector(value(ops[0]), value(ops[1]), self._shuffle_mask(ops[2]),
                                          name)

        if opcode == Opcode.PHI:
            phi = builder.phi(self.lower_type(inst.type), name)
            self._pending_phis.append((phi, inst))
            return phi

        if opcode == Opcode.ALLOCA:
            size = ops[0]
            count = None
            if not (isinstance(size, ConstantInt) and size.value == 1):
                count = value(size)
            alloca = builder.alloca(self.lower_type(attrs["allocated_type"]), size=count, name=name)
            if attrs.get("alignment"):
                alloca.align = attrs["alignment"]
            return alloca

        if opcode == Opcode.LOAD:
            align = attrs.get("alignment") or None
            ordering = attrs.get("ordering", "notatomic")
            if ordering != "notatomic":
                return builder.load_atomic(value(ops[0]), ordering, align, name)
            return builder.load(value(ops[0]), name, align)

        if opcode == Opcode.STORE:
            align = attrs.get("alignment") or None
            ordering = attrs.get("ordering", "notatomic")
            if ordering != "notatomic":
                return builder.store_atomic(value(ops[0]), value(ops[1]), ordering, align)
            return builder.store(value(ops[0]), value(ops[1]), align)

        if opcode == Opcode.ATOMICRMW:
            return builder.atomic_rmw(attrs["op"], value(ops[0]), value(ops[1]),
                                      attrs["ordering"], name)

        if opcode == Opcode.FENCE:
            scope = "singlethread" if attrs.get("scope") == "singlethread" else None
            return builder.fence(attrs["ordering"], scope)

        if opcode == Opcode.CALL:
            callee = self._callee(ops[0])
            return builder.call(callee, [value(op) for op in ops[1:]], name,
                                cconv=calling_convention_name(attrs.get("cc", 0)),
                                tail=attrs.get("tail", False),
                                attrs=self._call_attributes(attrs.get("attributes")))

        if opcode == Opcode.INVOKE:
            callee = self._callee(ops[0])
            return builder.invoke(callee, [value(op) for op in ops[3:]],
                                  value(ops[1]), value(ops[2]), name,
                                  cconv=calling_convention_name(attrs.get("cc", 0)),
                                  attrs=self._call_attributes(attrs.get("attributes")))

        if opcode == Opcode.LANDINGPAD:
            self._personality(ir_fn, ops[0])
            landing_pad = builder.landingpad(self.lower_type(inst.type), name,
                                             cleanup=attrs.get("cleanup", False))
            for kind, clause in zip(attrs.get("clauses", ()), ops[1:]):
                if kind == "catch":
                    landing_pad.add_clause(ir.CatchClause(value(clause)))
                else:
                    landing_pad.add_clause(ir.FilterClause(value(clause)))
            return landing_pad

        if opcode == Opcode.RET:
            if ops:
                return builder.ret(value(ops[0]))
            return builder.ret_void()

        if opcode == Opcode.BR:
            if len(ops) == 1:
                return builder.branch(value(ops[0]))
            return builder.cbranch(value(ops[0]), value(ops[1]), value(ops[2]))

        if opcode == Opcode.SWITCH:
            switch = builder.switch(value(ops[0]), value(ops[1]))
            for i in range(2, len(ops), 2):
                switch.add_case(value(ops[i]), value(ops[i + 1]))
            return switch

        if opcode == Opcode.INDIRECTBR:
            branch = builder.branch_indirect(value(ops[0]))
            for destination in ops[1:]:
                branch.add_destination(value(destination))
            return branch

        if opcode == Opcode.RESUME:
            return builder.resume(value(ops[0]))

        if opcode == Opcode.UNREACHABLE:
            return builder.unreachable()

        raise LoweringError(f"{opcode.value} instructions are not supported")

    def _shuffle_mask(self, mask: Value) -> ir.Constant:
        type = self.lower_type(mask.type)
        if isinstance(mask, ConstantNull):
            return ir.Constant(type, [ir.Constant(type.element, 0)] * type.count)
        if isinstance(mask, ConstantAggregate) and all(
                isinstance(e, ConstantInt) for e in mask.elements):
            return ir.Constant(type, [ir.Constant(type.element, e.value) for e in mask.elements])
        raise LoweringError("shufflevector mask must be a vector of integer constants")

    def _call_attributes(self, attributes: Optional[AttributeSet]) -> Tuple[str, ...]:
        if attributes is None or attributes.function_attributes is None:
            return ()
        known = CallInstrAttributes._known
        return tuple(name for name in attributes.function_attributes.names if name in known)


def block_order(fn: Function) -> List[BasicBlock]:
    """
    Blocks in reverse postorder from the entry, then unreachable blocks in
    their original order.
    """
    if not fn.blocks:
        return []
    visited = {id(fn.blocks[0])}
    postorder = []
    stack = [(fn.blocks[0], iter(_successors(fn.blocks[0])))]
    while stack:
        block, successors = stack[-1]
        for successor in successors:
            if id(successor) not in visited:
                visited.add(id(successor))
                stack.append((successor, iter(_successors(successor))))
                break
        else:
            stack.pop()
            postorder.append(block)
    order = postorder[::-1]
    order.extend(block for block in fn.blocks if id(block) not in visited)
    return order


def _successors(block: BasicBlock) -> List[BasicBlock]:
    terminator = block.terminator
    if terminator is None:
        return []
    return [op for op in terminator.operands if isinstance(op, BasicBlock)]


def lower_module(module: Module) -> ir.Module:
    """Lower a fully materialized module to an llvmlite.ir.Module."""
    return ModuleLowering(module).lower()


def emit_ir(module: Module) -> str:
    """Textual LLVM IR for a fully materialized module."""
    return str(lower_module(module))
