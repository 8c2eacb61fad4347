# (c) Copyright 2022 Aaron Kimball
#
# Human-readable listings of a loaded kernel's scope tree and line table.

import hsa_dbginfo.binutils as binutils
from hsa_dbginfo.location import LocationRegister
from hsa_dbginfo.scopes import ScopeKind


def _format_variable(var, indent):
    out = [f'{indent}{var!r}']
    for extra in var.additional_locations:
        out.append(f'{indent}  @ [{extra.low_pc:#x}, {extra.high_pc:#x}): {extra.location!r}')
    for member in var.members:
        out.extend(_format_variable(member, indent + '  '))
    return out


def format_scope_tree(tree):
    """
    Return a list of text lines describing each scope of the tree and its variables.
    """
    out = []

    def _scope(scope, depth):
        indent = '  ' * depth
        name = binutils.demangle(scope.function_name()) or ''
        line = f'{indent}{ScopeKind.name_of(scope.kind)} {name} {scope.ranges}'
        if scope.inherited_ranges:
            line += ' (inherited)'
        if scope.is_kernel:
            line += ' [kernel]'
        if scope.call_site is not None:
            line += f' called from {scope.call_site}'
        out.append(line)

        if scope.frame_base is not None and \
                scope.frame_base.register_kind == LocationRegister.REGISTER:
            out.append(f'{indent}  frame base: reg {scope.frame_base.register_number}')
        if scope.workitem_offset is not None:
            out.append(f'{indent}  work-item offset: {scope.workitem_offset!r}')
        for var in scope.variables:
            out.extend(_format_variable(var, indent + '  '))
        for child in tree.children_of(scope):
            _scope(child, depth + 1)

    root = tree.root()
    if root is not None:
        _scope(root, 0)
    return out


def format_line_table(lines):
    """
    Return a list of text lines listing each mapped address and its line key(s).
    """
    out = []
    for addr in lines.mapped_addresses():
        keys = ', '.join(map(repr, lines.lines_for_address(addr)))
        out.append(f'{addr:08x}: {keys}')
    return out
