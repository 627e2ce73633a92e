"""
Intrinsic Upgrades

Older bitcode declares llvm.ctlz.* and llvm.cttz.* with a single operand.
The current signature takes an extra i1 "is zero undef" flag. Upgrading is
two steps:

    1. upgrade_intrinsic_function: at global cleanup, the old declaration is
       renamed to <name>.old and a declaration with the new signature takes
       its name.
    2. upgrade_intrinsic_call: after each function body is read, calls to the
       old declaration are rewritten to call the new one with i1 false.
"""

import logging
from typing import Optional

from ir_nodes import (
    Context, Function, FunctionType, Instruction, IntegerType, Opcode,
)

logger = logging.getLogger(__name__)

I1 = IntegerType(1)

_ZERO_UNDEF_INTRINSICS = ("llvm.ctlz.", "llvm.cttz.")


def upgrade_intrinsic_function(fn: Function) -> Optional[Function]:
    """Return the replacement declaration for fn, or None if it is current."""
    if not fn.is_intrinsic or fn.parent is None:
        return None
    fn_type = fn.function_type
    if fn.name.startswith(_ZERO_UNDEF_INTRINSICS) and len(fn_type.params) == 1:
        name = fn.name
        fn.name = name + ".old"
        new_type = FunctionType(fn_type.return_type, (fn_type.params[0], I1))
        new_fn = fn.parent.get_or_insert_function(name, new_type)
        logger.debug("upgrading intrinsic %s", name)
        return new_fn
    return None


def upgrade_intrinsic_call(call: Instruction, new_fn: Function, context: Context) -> None:
    """Replace call (to an outdated intrinsic) with a call to new_fn."""
    block = call.parent
    args = call.operands[1:] + [context.get_int(I1, 0)]
    new_call = Instruction(Opcode.CALL, call.type, [new_fn] + args, name=call.name, **call.attrs)
    new_call.debug_loc = call.debug_loc
    for kind, handle in call.metadata.items():
        new_call.set_metadata(kind, handle.node)
    if block is not None:
        block.insert_before(new_call, call)
    call.replace_all_uses_with(new_call)
    call.erase_from_parent()


def upgrade_calls_to(old_fn: Function, new_fn: Function, context: Context) -> int:
    """Rewrite every call whose callee is old_fn. Returns the number rewritten."""
    calls = [user for user, index in list(old_fn.uses)
             if index == 0 and isinstance(user, Instruction) and user.opcode == Opcode.CALL]
    for call in calls:
        upgrade_intrinsic_call(call, new_fn, context)
    return len(calls)
