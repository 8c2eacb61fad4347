# (c) Copyright 2022 Aaron Kimball
#
# Parse the DIEs of a kernel's first compilation unit in .debug_info into a ScopeTree,
# and its .debug_line program into a LineMapping.

import posixpath
import struct

import elftools.dwarf.constants as dwarf_constants
from elftools.common.exceptions import DWARFError, ELFError
from elftools.dwarf.enums import ENUM_DW_AT, ENUM_DW_TAG

from hsa_dbginfo.lines import LineMapping, MachineAddress, SourceLine
from hsa_dbginfo.location import LocationDecodeError, LocationDecoder, LocationRegister, \
    VariableLocation, UINT64_MAX
from hsa_dbginfo.scopes import DebugInfoInvariantError, Encoding, Indirection, \
    IndirectionDetail, LocatedRange, ScopeKind, ScopeTree, VariableInfo
from hsa_dbginfo.term import VHEX4


class DebugInfoParseError(Exception):
    """ The DWARF debug info could not be read into a scope tree. """
    pass


class DebugLevel(object):
    """
    Which level of a kernel's debug info is being parsed.
    """
    SINGLE  = 0     # One self-contained level; lines are source lines.
    HIGH    = 1     # HSAIL/BRIG level; lines are source lines, addresses are BRIG offsets.
    LOW     = 2     # ISA level; "lines" are BRIG offsets (see lines.MachineAddress).


def _enum_key(enum, code):
    # When several names share a value, the decoder reports the last one.
    key = code
    for (name, value) in enum.items():
        if isinstance(value, int) and value == code and not name.startswith('_'):
            key = name
    return key


def _attr_key(code):
    """
    Return the key pyelftools uses in DIE.attributes for the attribute with numeric 'code'.
    Vendor attributes it has no name for are keyed by the int code itself.
    """
    return _enum_key(ENUM_DW_AT, code)


def _tag_key(code):
    """ As _attr_key(), for DIE tags. """
    return _enum_key(ENUM_DW_TAG, code)


# HSA / AMDIL vendor extensions.
DW_AT_AMDIL_address_space = _attr_key(0x3ff1)
DW_AT_AMDIL_resource = _attr_key(0x3ff2)
DW_AT_HSA_is_kernel = _attr_key(0x3000)
DW_AT_HSA_is_outParam = _attr_key(0x3001)
DW_AT_HSA_workitemid_offset = _attr_key(0x3002)
DW_AT_HSA_isa_memory_region = _attr_key(0x3003)
DW_AT_HSA_brig_offset = _attr_key(0x3004)
DW_TAG_HSA_argument_scope = _tag_key(0x8000)
DW_LANG_HSA_Assembly = 0x9000

_SCOPE_TAGS = {
    'DW_TAG_entry_point': ScopeKind.FUNCTION,
    'DW_TAG_subprogram': ScopeKind.FUNCTION,
    'DW_TAG_inlined_subroutine': ScopeKind.INLINED_FUNCTION,
    'DW_TAG_lexical_block': ScopeKind.CODE_SCOPE,
    DW_TAG_HSA_argument_scope: ScopeKind.HSA_ARGUMENT_SCOPE,
}

_LOCATED_VARIABLE_TAGS = ('DW_TAG_formal_parameter', 'DW_TAG_variable')
_CONSTANT_TAGS = ('DW_TAG_constant', 'DW_TAG_enumerator')

# Type tags that can appear directly in a scope; skipped when filling scope children.
_TYPE_TAGS = (
    'DW_TAG_array_type', 'DW_TAG_base_type', 'DW_TAG_class_type', 'DW_TAG_const_type',
    'DW_TAG_enumeration_type', 'DW_TAG_pointer_type', 'DW_TAG_reference_type',
    'DW_TAG_restrict_type', 'DW_TAG_rvalue_reference_type', 'DW_TAG_string_type',
    'DW_TAG_structure_type', 'DW_TAG_subrange_type', 'DW_TAG_subroutine_type',
    'DW_TAG_typedef', 'DW_TAG_union_type', 'DW_TAG_volatile_type', 'DW_TAG_unspecified_type',
)

# Tag -> (type name prefix, Indirection)
_INDIRECT_TYPE_TAGS = {
    'DW_TAG_array_type': ('[]', Indirection.ARRAY),
    'DW_TAG_pointer_type': ('*', Indirection.POINTER),
    'DW_TAG_reference_type': ('&', Indirection.REFERENCE),
}

# Qualifiers that don't change how a variable is presented.
_PASS_THROUGH_TYPE_TAGS = ('DW_TAG_const_type', 'DW_TAG_volatile_type', 'DW_TAG_restrict_type')

_COMPOSITE_TYPE_TAGS = ('DW_TAG_structure_type', 'DW_TAG_union_type', 'DW_TAG_class_type')

# DW_AT_address_class values used by HSA.
_ADDRESS_CLASS_DETAILS = {
    0: IndirectionDetail.PRIVATE,
    1: IndirectionDetail.GLOBAL,
    2: IndirectionDetail.READONLY,
    3: IndirectionDetail.GROUP,
}

# DW_AT_AMDIL_address_space values.
_ADDRESS_SPACE_DETAILS = {
    1: IndirectionDetail.GLOBAL,
    2: IndirectionDetail.READONLY,
    3: IndirectionDetail.GROUP,
}

_ATE_ENCODINGS = {
    dwarf_constants.DW_ATE_address: Encoding.POINTER,
    dwarf_constants.DW_ATE_boolean: Encoding.BOOLEAN,
    dwarf_constants.DW_ATE_float: Encoding.FLOAT,
    dwarf_constants.DW_ATE_signed: Encoding.INTEGER,
    dwarf_constants.DW_ATE_signed_char: Encoding.CHARACTER,
    dwarf_constants.DW_ATE_unsigned: Encoding.UINTEGER,
    dwarf_constants.DW_ATE_unsigned_char: Encoding.UCHARACTER,
}

_UNNAMED_MEMBER_KINDS = {
    'DW_TAG_array_type': 'array',
    'DW_TAG_enumeration_type': 'enum',
    'DW_TAG_pointer_type': 'ptr',
    'DW_TAG_reference_type': 'ref',
    'DW_TAG_structure_type': 'struct',
    'DW_TAG_union_type': 'union',
    'DW_TAG_class_type': 'class',
}

_EXPR_FORMS = ('DW_FORM_exprloc', 'DW_FORM_block', 'DW_FORM_block1', 'DW_FORM_block2',
               'DW_FORM_block4')
_CONST_FORM_WIDTHS = {
    'DW_FORM_data1': 1,
    'DW_FORM_data2': 2,
    'DW_FORM_data4': 4,
    'DW_FORM_data8': 8,
    'DW_FORM_sdata': None,
    'DW_FORM_udata': None,
    'DW_FORM_implicit_const': None,
}
_LOCLIST_FORMS = ('DW_FORM_data4', 'DW_FORM_data8', 'DW_FORM_sec_offset', 'DW_FORM_loclistx')
_STRING_FORMS = ('DW_FORM_string', 'DW_FORM_strp', 'DW_FORM_line_strp', 'DW_FORM_strx',
                 'DW_FORM_strx1', 'DW_FORM_strx2', 'DW_FORM_strx3', 'DW_FORM_strx4')


def _decode_str(val):
    if isinstance(val, bytes):
        return val.decode('utf-8', errors='replace')
    return val


def _dieattr(die, name, default_value=None):
    """
        Look up an attribute within 'die'; if not found, use default_value.
        String values are decoded to str.
    """
    try:
        return _decode_str(die.attributes[name].value)
    except KeyError:
        return default_value


def _type_die(die):
    """
        Return the DIE referenced by this DIE's DW_AT_type, or None.
    """
    if 'DW_AT_type' not in die.attributes:
        return None
    return die.get_DIE_from_attribute('DW_AT_type')


def _next_sibling(die):
    """
        Return the DIE following 'die' within its parent, or None.
    """
    parent = die.get_parent()
    if parent is None:
        return None
    found = False
    for child in parent.iter_children():
        if found:
            return child
        if child.offset == die.offset:
            found = True
    return None


class DwarfTreeBuilder(object):
    """
    Build the scope tree and line mapping for the first compilation unit of a DWARFInfo.

    Usage:
        builder = DwarfTreeBuilder(elf.get_dwarf_info(), DebugLevel.SINGLE)
        (tree, lines) = builder.build()
    """

    def __init__(self, dwarf_info, level, verboseprint=None, print_die_offset=None,
                 real_path=None):
        """
        @param dwarf_info the pyelftools DWARFInfo to read.
        @param level a DebugLevel; DebugLevel.LOW records line keys as MachineAddress.
        @param verboseprint if not None, called with a trace of the DIE tree as it is parsed.
        @param print_die_offset if a DIE with this offset is found, its full content and that of
            its subtree is sent to verboseprint.
        @param real_path if not None, the path to report for the first file of the line table.
        """
        self._dwarf_info = dwarf_info
        self._level = level
        self._verboseprint = verboseprint
        self._print_die_offset = print_die_offset
        self._real_path = real_path

        self._range_lists = dwarf_info.range_lists()
        self._loc_lists = dwarf_info.location_lists()

        self._tree = ScopeTree()
        self._cu = None
        self._cu_base = 0
        self._dwarf_ver = None
        self._decoder = None
        self._line_version = None
        self._file_names = []
        self._unnamed_count = 0
        self._nesting = 0
        self._print_full_die_at = None

    def build(self):
        """
        Parse the first compile unit.
        @return (ScopeTree, LineMapping)
        """
        cu = None
        for cu in self._dwarf_info.iter_CUs():
            break  # Only the first compile unit describes the kernel.
        if cu is None:
            raise DebugInfoParseError('No compilation unit in .debug_info')

        self._cu = cu
        self._dwarf_ver = cu['version']
        self._decoder = LocationDecoder(cu.structs, self._verboseprint)

        top_die = cu.get_top_DIE()
        if top_die.tag not in ('DW_TAG_compile_unit', 'DW_TAG_partial_unit'):
            raise DebugInfoParseError(f'First DIE is {top_die.tag}, not a compilation unit')
        self._cu_base = _dieattr(top_die, 'DW_AT_low_pc', 0)

        line_program = None
        if 'DW_AT_stmt_list' in top_die.attributes:
            if self._dwarf_info.debug_line_sec is None:
                raise DebugInfoParseError('Compilation unit has a line table but no .debug_line')
            line_program = self._dwarf_info.line_program_for_CU(cu)
        self._read_file_names(line_program)

        root = self._tree.add_scope(ScopeKind.COMPILATION_UNIT)
        self._fill_scope(top_die, root)

        lines = self._fill_line_mapping(line_program)
        self._tree.compute_visible_variables()
        return self._tree, lines

    ###### Line table

    def _read_file_names(self, line_program):
        self._file_names = []
        if line_program is None:
            return

        self._line_version = line_program['version']
        include_dirs = []
        for d in line_program['include_directory'] or []:
            if not isinstance(d, (bytes, str)):
                d = d['DW_LNCT_path'] # DWARF 5 directory entry format.
            include_dirs.append(_decode_str(d))
        for entry in line_program['file_entry'] or []:
            name = _decode_str(entry.name)
            dir_index = entry.dir_index
            if self._line_version >= 5:
                if 0 < dir_index < len(include_dirs):
                    name = posixpath.join(include_dirs[dir_index], name)
            elif 0 < dir_index <= len(include_dirs):
                name = posixpath.join(include_dirs[dir_index - 1], name)
            self._file_names.append(name.replace('\\', '/'))

    def _path_for_file(self, file_index):
        if file_index == 1 and self._real_path:
            return self._real_path

        if self._line_version is not None and self._line_version >= 5:
            idx = file_index
        else:
            idx = file_index - 1 # File numbers are 1-based before DWARF 5.

        if 0 <= idx < len(self._file_names):
            return self._file_names[idx]
        return ''

    def _line_key(self, file_index, line):
        if self._level == DebugLevel.LOW:
            return MachineAddress(line)
        return SourceLine(self._path_for_file(file_index), line)

    def _fill_line_mapping(self, line_program):
        lines = LineMapping()
        if line_program is None:
            return lines

        for entry in line_program.get_entries():
            state = entry.state
            if state is None or state.end_sequence:
                continue
            key = self._line_key(state.file, state.line)
            if not lines.add(key, state.address) and state.address != 0:
                if self._verboseprint:
                    self._verboseprint('Duplicate line mapping ', key, ' -> 0x', VHEX4, state.address)
        return lines

    ###### Scopes

    def _trace_die(self, die):
        """
        In verbose mode, print the DIE tree as we parse it.
        """
        if self._print_full_die_at is not None and self._print_full_die_at >= self._nesting:
            # We've left the subtree of the DIE we were dumping.
            self._print_full_die_at = None
        if self._print_die_offset is not None and die.offset == self._print_die_offset:
            self._print_full_die_at = self._nesting

        if self._verboseprint is None:
            return

        self._verboseprint(VHEX4, die.offset, ':  ', self._nesting, '  ', self._nesting * '  ',
            die.tag, ': ', _dieattr(die, 'DW_AT_name', ''))
        if self._print_full_die_at is not None:
            self._verboseprint('')
            self._verboseprint(die)

    def _fill_scope(self, die, scope):
        self._trace_die(die)

        scope.name = _dieattr(die, 'DW_AT_name', '')
        self._fill_hsa_data(die, scope)
        self._fill_address_ranges(die, scope)
        self._fill_frame_base(die, scope)
        if scope.kind == ScopeKind.INLINED_FUNCTION:
            self._fill_inline_data(die, scope)

        self._nesting += 1
        self._fill_children(die, scope)
        self._nesting -= 1

    def _fill_hsa_data(self, die, scope):
        scope.is_kernel = bool(_dieattr(die, DW_AT_HSA_is_kernel, False))

        if DW_AT_HSA_workitemid_offset in die.attributes:
            entries = self._location_entries(die, DW_AT_HSA_workitemid_offset)
            if len(entries) != 1:
                raise DebugInfoInvariantError(
                    f'DIE {die.offset:#x}: work-item id offset must have one location; got {len(entries)}')
            scope.workitem_offset = self._decoder.decode(entries[0][2])

    def _fill_address_ranges(self, die, scope):
        parent = self._tree.parent_of(scope)
        if parent is not None:
            parent_low = parent.lowest_address()
            parent_high = parent.highest_address()
        else:
            parent_low = 0
            parent_high = UINT64_MAX

        attrs = die.attributes
        if 'DW_AT_low_pc' in attrs or 'DW_AT_high_pc' in attrs:
            low = _dieattr(die, 'DW_AT_low_pc', parent_low)
            if 'DW_AT_high_pc' in attrs:
                high_attr = attrs['DW_AT_high_pc']
                if high_attr.form in _CONST_FORM_WIDTHS:
                    high = low + high_attr.value # DWARF 4+: high_pc is an offset from low_pc.
                else:
                    high = high_attr.value
                high = max(high, low)
            else:
                high = parent_high
            scope.add_range(low, high)
        elif 'DW_AT_ranges' in attrs:
            for (low, high) in self._range_list(die):
                if high >= low:
                    scope.add_range(low, high)

        if not len(scope.ranges):
            # No range info; the scope covers the same addresses as its parent.
            scope.add_range(parent_low, parent_high)
            scope.inherited_ranges = True

    def _range_list(self, die):
        if self._range_lists is None:
            raise DebugInfoParseError(f'DIE {die.offset:#x} has DW_AT_ranges but no range lists')

        out = []
        base = self._cu_base
        for entry in self._range_lists.get_range_list_at_offset(die.attributes['DW_AT_ranges'].value):
            if hasattr(entry, 'base_address'):
                base = entry.base_address
            elif getattr(entry, 'is_absolute', False):
                out.append((entry.begin_offset, entry.end_offset))
            else:
                out.append((base + entry.begin_offset, base + entry.end_offset))
        return out

    def _fill_frame_base(self, die, scope):
        if 'DW_AT_frame_base' not in die.attributes:
            return

        entries = self._location_entries(die, 'DW_AT_frame_base')
        if len(entries) != 1 or isinstance(entries[0][2], int):
            raise DebugInfoInvariantError(
                f'DIE {die.offset:#x}: frame base must be a single location expression')

        frame_base = self._decoder.decode(entries[0][2], max_ops=1)
        if frame_base.register_kind != LocationRegister.REGISTER or frame_base.deref or \
                frame_base.offset != 0:
            raise DebugInfoInvariantError(
                f'DIE {die.offset:#x}: frame base must be a register; got {frame_base}')
        scope.frame_base = frame_base

    def _fill_inline_data(self, die, scope):
        scope.call_site = self._line_key(_dieattr(die, 'DW_AT_call_file', 0),
                                         _dieattr(die, 'DW_AT_call_line', 0))
        if 'DW_AT_abstract_origin' in die.attributes:
            origin = die.get_DIE_from_attribute('DW_AT_abstract_origin')
            scope.inline_origin_name = _dieattr(origin, 'DW_AT_name', None)

    def _fill_children(self, die, scope):
        for child in die.iter_children():
            tag = child.tag
            if tag in _TYPE_TAGS:
                continue
            elif tag in _SCOPE_TAGS:
                if tag != 'DW_TAG_inlined_subroutine' and _dieattr(child, 'DW_AT_inline', 0):
                    # Abstract instance of an inlined method; its concrete copies are
                    # described by DW_TAG_inlined_subroutine entries.
                    continue
                child_scope = self._tree.add_scope(_SCOPE_TAGS[tag], scope.index)
                self._fill_scope(child, child_scope)
            elif tag == 'DW_TAG_compile_unit':
                raise DebugInfoInvariantError(f'Nested compilation unit at DIE {child.offset:#x}')
            elif tag in _LOCATED_VARIABLE_TAGS or tag in _CONSTANT_TAGS:
                self._trace_die(child)
                var = VariableInfo()
                if tag in _CONSTANT_TAGS:
                    var.const_value = b''
                else:
                    var.location = VariableLocation()
                    var.high_pc = scope.highest_address()
                    var.is_param = (tag == 'DW_TAG_formal_parameter')
                self._fill_variable(child, var, is_member=False)
                var.check_invariants()
                scope.variables.append(var)

    ###### Variables

    def _location_entries(self, die, attr_name):
        """
        Return the location descriptions of attribute attr_name as a list of
        (low_pc, high_pc, expr) tuples. low_pc and high_pc are None for a single
        location expression. 'expr' is the expression bytes, or an int for a
        constant data member offset.
        """
        attr = die.attributes[attr_name]
        if attr.form in _EXPR_FORMS:
            return [(None, None, attr.value)]
        elif attr_name == 'DW_AT_data_member_location' and attr.form in _CONST_FORM_WIDTHS:
            return [(None, None, attr.value)]
        elif attr.form in _LOCLIST_FORMS:
            if self._loc_lists is None:
                raise DebugInfoParseError(
                    f'DIE {die.offset:#x}: {attr_name} refers to a location list; none present')
            out = []
            base = self._cu_base
            for entry in self._loc_lists.get_location_list_at_offset(attr.value, die=die):
                if hasattr(entry, 'base_address'):
                    base = entry.base_address
                elif hasattr(entry, 'loc_expr'):
                    if getattr(entry, 'is_absolute', False):
                        out.append((entry.begin_offset, entry.end_offset, entry.loc_expr))
                    else:
                        out.append((base + entry.begin_offset, base + entry.end_offset,
                                    entry.loc_expr))
            return out
        else:
            raise DebugInfoParseError(
                f'DIE {die.offset:#x}: unexpected form {attr.form} for {attr_name}')

    def _fill_locations(self, die, var, is_member):
        attr_name = 'DW_AT_data_member_location' if is_member else 'DW_AT_location'
        if var.is_constant() or attr_name not in die.attributes:
            return

        resource = _dieattr(die, DW_AT_AMDIL_resource)
        start_scope = _dieattr(die, 'DW_AT_start_scope')
        base = var.location if var.location is not None else VariableLocation()
        main_low = var.low_pc
        main_high = var.high_pc

        extra = []
        for (i, (low, high, expr)) in enumerate(self._location_entries(die, attr_name)):
            loc = base.copy()
            if resource is not None:
                loc.resource = resource
            if isinstance(expr, int):
                loc.piece_offset += expr
            else:
                loc = self._decoder.decode(expr, is_member, loc)

            if low is None or is_member:
                low = main_low
                high = main_high
            if start_scope is not None and low < start_scope and start_scope <= high:
                low = start_scope

            if i == 0:
                var.location = loc
                var.low_pc = low
                var.high_pc = high
            else:
                extra.append(LocatedRange(low, high, loc))

        var.additional_locations = extra

    def _fill_variable(self, die, var, is_member):
        name = _dieattr(die, 'DW_AT_name')
        if name:
            var.name = name

        self._fill_locations(die, var, is_member)

        is_register_param = var.is_register_param()
        type_die = _type_die(die)
        if type_die is not None:
            self._fill_type_details(type_die, var, not is_member, is_register_param)
            if is_register_param and var.encoding == Encoding.NONE:
                var.location.deref = True

        if is_member and not var.name:
            var.name = self._unnamed_member_name(type_die)

        if 'DW_AT_const_value' in die.attributes:
            blob = self._const_value_bytes(die.attributes['DW_AT_const_value'], var.size)
            self._set_constant_value(var, blob)
        elif var.is_constant() and not is_member:
            self._set_constant_value(var, var.const_value)

        if 'DW_AT_abstract_origin' in die.attributes:
            origin = die.get_DIE_from_attribute('DW_AT_abstract_origin')
            if origin.offset != die.offset:
                extra = var.additional_locations
                self._fill_variable(origin, var, is_member)
                if var.additional_locations is not extra and len(var.additional_locations):
                    raise DebugInfoInvariantError(
                        f"Abstract origin of '{var.name}' adds {len(var.additional_locations)} locations")

        if DW_AT_HSA_is_outParam in die.attributes:
            var.is_out_param = bool(_dieattr(die, DW_AT_HSA_is_outParam))

        memory_region = _dieattr(die, DW_AT_HSA_isa_memory_region)
        if memory_region is not None and var.location is not None:
            var.location.memory_region = memory_region

        brig_offset = _dieattr(die, DW_AT_HSA_brig_offset)
        if brig_offset is not None:
            var.brig_offset = brig_offset

        if var.location is not None and var.location.piece_size < var.size:
            var.size = var.location.piece_size

    def _unnamed_member_name(self, type_die):
        kind = 'member'
        if type_die is not None:
            kind = _UNNAMED_MEMBER_KINDS.get(type_die.tag, 'member')
        name = f'unnamed_{kind}_{self._unnamed_count}'
        self._unnamed_count += 1
        return name

    @staticmethod
    def _const_value_bytes(attr, size):
        value = attr.value
        if isinstance(value, list):
            return bytes(value) # block forms
        elif isinstance(value, bytes):
            if attr.form in _STRING_FORMS:
                return value + b'\x00'
            return value
        elif isinstance(value, int):
            width = size or _CONST_FORM_WIDTHS.get(attr.form) or 8
            return (value & ((1 << (8 * width)) - 1)).to_bytes(width, 'little')
        raise DebugInfoParseError(f'Unexpected form {attr.form} for DW_AT_const_value')

    def _set_constant_value(self, var, blob):
        """
        Make 'var' a constant holding 'blob'. Its members receive the slices of blob at their
        offsets within var.
        """
        if len(var.additional_locations):
            raise DebugInfoInvariantError(
                f"Constant '{var.name}' has {len(var.additional_locations)} additional locations")

        base = var.location.piece_offset if var.location is not None else 0
        var.const_value = bytes(blob)
        var.location = None
        for member in var.members:
            offset = base
            if member.location is not None:
                offset = member.location.piece_offset
            offset -= base
            self._set_constant_value(member, blob[offset:offset + member.size])

    ###### Types

    def _fill_type_details(self, type_die, var, expand_indirect_members, is_register_param):
        """
        Walk the DW_AT_type chain from type_die to build the variable's type name, size,
        encoding, indirection and (for structs/unions) members.

        @param expand_indirect_members if False, pointer-like variables do not get members.
            Used for members, so that e.g. a linked-list node does not expand forever.
        """
        var.type_name = ''
        var.encoding = Encoding.NONE
        var.indirection = Indirection.DIRECT
        var.members = []

        encoding_known = False
        found_name = False
        found_detail = False
        has_members = False
        name_die = None
        pointer_die = None
        visited = set()

        current = type_die
        while True:
            visited.add((current.offset, found_name))
            tag = current.tag
            next_die = _type_die(current)

            if tag in _INDIRECT_TYPE_TAGS:
                if not found_detail:
                    detail = _ADDRESS_CLASS_DETAILS.get(_dieattr(current, 'DW_AT_address_class'))
                    if detail is not None:
                        var.indirection_detail = detail
                        found_detail = True

                (prefix, indirection) = _INDIRECT_TYPE_TAGS[tag]
                if not found_name:
                    var.type_name = prefix + var.type_name
                if var.indirection == Indirection.DIRECT:
                    var.indirection = indirection
                    pointer_die = current
            elif tag == 'DW_TAG_enumeration_type':
                if not found_name:
                    var.type_name = ' enum' + var.type_name
                break
            elif tag in _COMPOSITE_TYPE_TAGS:
                encoding_known = True
                has_members = True
                if found_name:
                    break
                # An anonymous struct may be named by a typedef that follows it.
                sibling = _next_sibling(current)
                if sibling is None or sibling.tag != 'DW_TAG_typedef':
                    break
                next_die = sibling
            elif tag == 'DW_TAG_typedef':
                if not found_name:
                    name_die = current
                    found_name = True
            elif tag == 'DW_TAG_base_type':
                break
            elif tag in _PASS_THROUGH_TYPE_TAGS:
                pass
            else:
                raise DebugInfoParseError(
                    f'Unsupported type {tag} at DIE {current.offset:#x} for variable {var.name}')

            if next_die is None or (next_die.offset, found_name) in visited:
                break
            current = next_die

        if not found_detail and var.indirection == Indirection.POINTER:
            address_space = _dieattr(pointer_die, DW_AT_AMDIL_address_space)
            if address_space is not None:
                var.indirection_detail = _ADDRESS_SPACE_DETAILS.get(
                    address_space, IndirectionDetail.UNKNOWN)

        if var.indirection in (Indirection.POINTER, Indirection.ARRAY) and \
                var.encoding == Encoding.NONE and not encoding_known:
            var.encoding = Encoding.POINTER

        if not found_name:
            name_die = current

        if not expand_indirect_members and \
                (var.indirection != Indirection.DIRECT or var.encoding == Encoding.POINTER):
            has_members = False

        var.type_name = _dieattr(name_die, 'DW_AT_name', '') + var.type_name
        var.size = _dieattr(current, 'DW_AT_byte_size', 0)

        if (var.encoding == Encoding.NONE and not encoding_known) or \
                var.indirection != Indirection.DIRECT:
            self._fill_encoding(current, var)

        if has_members:
            self._fill_members(current, var, is_register_param)

    @staticmethod
    def _fill_encoding(type_die, var):
        ate = _dieattr(type_die, 'DW_AT_encoding')
        if ate is None:
            return
        encoding = _ATE_ENCODINGS.get(ate)
        if encoding is None:
            raise DebugInfoParseError(f'Unsupported base type encoding {ate:#x} at DIE {type_die.offset:#x}')
        var.encoding = encoding

    def _fill_members(self, composite_die, var, is_register_param):
        for child in composite_die.iter_children():
            if child.tag != 'DW_TAG_member':
                continue

            member = VariableInfo()
            if var.is_constant():
                # Only used to find the member's offset within the constant's value.
                member.location = VariableLocation()
            else:
                member.location = var.location.copy() if var.location is not None else VariableLocation()
                if is_register_param:
                    member.location.deref = True
                member.low_pc = var.low_pc
                member.high_pc = var.high_pc

            self._fill_variable(child, member, is_member=True)
            var.members.append(member)


def parse_debug_info(kernel_binary, level, session=None, real_path=None):
    """
    Parse the DWARF debug info embedded in a KernelBinary.

    @param kernel_binary the ELF image holding .debug_info, .debug_abbrev, and .debug_line.
    @param level a DebugLevel.
    @param session if not None, a Session whose verboseprint() and config are used.
    @param real_path if not None, reported as the path of file #1 of the line table.
    @return (ScopeTree, LineMapping)
    """
    elf = kernel_binary.elf() if kernel_binary is not None else None
    if elf is None:
        raise DebugInfoParseError('Binary is not a readable ELF image')

    verboseprint = None
    print_die_offset = None
    if session is not None:
        if session.get_conf('dbginfo.verbose'):
            verboseprint = session.verboseprint
        print_die_offset = session.get_conf('dbginfo.print_die.offset')

    try:
        if elf.get_section_by_name('.debug_info') is None or \
                elf.get_section_by_name('.debug_abbrev') is None:
            raise DebugInfoParseError('No DWARF debug info in binary')

        dwarf_info = elf.get_dwarf_info()
        builder = DwarfTreeBuilder(dwarf_info, level, verboseprint, print_die_offset, real_path)
        return builder.build()
    except LocationDecodeError as e:
        raise DebugInfoParseError(f'Cannot decode variable location: {e}') from e
    except (ELFError, DWARFError, KeyError, IndexError, ValueError, AssertionError, OverflowError,
            TypeError, struct.error) as e:
        raise DebugInfoParseError(f'Malformed DWARF debug info: {e}') from e
