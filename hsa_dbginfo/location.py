# (c) Copyright 2022 Aaron Kimball
#
# Decode DWARF location expressions into structured VariableLocation records.
#
# This is not a stack machine: kernel debug info only describes locations as a register,
# a stack slot, or a symbolic (BRIG) address, adjusted by offsets, dereferences and pieces.
# Each supported op updates the location record in place.

import elftools.dwarf.dwarf_expr as dwarf_expr
from elftools.common.exceptions import ELFError

UINT32_MAX = 0xFFFFFFFF
UINT64_MAX = 0xFFFFFFFFFFFFFFFF


class LocationRegister(object):
    """
    Kinds of register a VariableLocation can be relative to.
    """
    REGISTER    = 0     # Value is in (or addressed by) a machine register.
    STACK       = 1     # Value is at an offset from the frame base.
    NONE        = 2     # Value is at a symbolic address (e.g. a BRIG offset).
    UNINIT      = 3     # Nothing decoded yet.

    @staticmethod
    def name_of(kind):
        return { LocationRegister.REGISTER: 'register', LocationRegister.STACK: 'stack',
                 LocationRegister.NONE: 'none', LocationRegister.UNINIT: 'uninit' }.get(kind, '???')


class LocationDecodeError(Exception):
    """ A location expression uses an op we cannot represent, or is malformed. """
    pass


class VariableLocation(object):
    """
    Where a variable's value lives.
    """

    def __init__(self):
        self.register_kind = LocationRegister.UNINIT
        self.register_number = UINT32_MAX
        self.deref = False
        self.offset = 0
        self.resource = UINT64_MAX
        self.memory_region = UINT32_MAX
        self.piece_offset = 0
        self.piece_size = UINT32_MAX
        self.const_addition = 0

    def copy(self):
        out = VariableLocation()
        out.__dict__.update(self.__dict__)
        return out

    def _fields(self):
        return (self.register_kind, self.register_number, self.deref, self.offset,
                self.resource, self.memory_region, self.piece_offset, self.piece_size,
                self.const_addition)

    def __eq__(self, other):
        if not isinstance(other, VariableLocation):
            return False
        return self._fields() == other._fields()

    def __ne__(self, other):
        return not self.__eq__(other)

    def __hash__(self):
        return hash(self._fields())

    def __repr__(self):
        reg = 'none' if self.register_number == UINT32_MAX else str(self.register_number)
        res = 'none' if self.resource == UINT64_MAX else f'{self.resource:#x}'
        region = 'none' if self.memory_region == UINT32_MAX else str(self.memory_region)
        size = 'all' if self.piece_size == UINT32_MAX else str(self.piece_size)
        return (f'<loc {LocationRegister.name_of(self.register_kind)} reg={reg} '
                f'{"*" if self.deref else ""}off={self.offset:#x} res={res} region={region} '
                f'piece=[{self.piece_offset}:{size}] +{self.const_addition:#x}>')


class LocationDecoder(object):
    """
    Decode a DWARF location expression into a VariableLocation.

    Usage:
        decoder = LocationDecoder(cu.structs)
        loc = decoder.decode(expr_bytes, is_member=False)

    'expr_bytes' is the raw expression (a list of ints or a bytes object), as held by a
    DW_FORM_exprloc / DW_FORM_block attribute or a location list entry.
    """

    # Dispatch table from opcode to method.
    __dispatch = None

    def __init__(self, structs, verboseprint=None):
        if LocationDecoder.__dispatch is None:
            LocationDecoder.__init_dispatch()

        self._expr_parser = dwarf_expr.DWARFExprParser(structs)
        self._verboseprint = verboseprint
        self._loc = None
        self._is_member = False

    def parse_ops(self, expr):
        """
        Parse expression bytes into a list of pyelftools DWARFExprOp.
        """
        try:
            return self._expr_parser.parse_expr(expr)
        except (ELFError, KeyError, IndexError, ValueError) as e:
            raise LocationDecodeError(f'Malformed DWARF location expression {list(expr)}: {e}') from e

    def decode(self, expr, is_member=False, base=None, max_ops=None):
        """
        Decode a location expression.

        @param expr the raw expression bytes.
        @param is_member True if this is a DW_AT_data_member_location being applied on top of
            the containing variable's location.
        @param base a VariableLocation to start from (it is copied, not modified). If None,
            decoding starts from a default location.
        @param max_ops if not None, only decode this many leading ops.
        @return a new VariableLocation.
        """
        return self.decode_ops(self.parse_ops(expr), is_member, base, max_ops)

    def decode_ops(self, ops, is_member=False, base=None, max_ops=None):
        """
        Decode an already-parsed list of DWARFExprOp. See decode().
        """
        self._loc = base.copy() if base is not None else VariableLocation()
        self._is_member = is_member

        if max_ops is not None:
            ops = ops[:max_ops]

        for op in ops:
            if self._verboseprint:
                self._verboseprint('Processing opcode ', op.op_name, '; args=', op.args)
            if op.op < len(LocationDecoder.__dispatch):
                func = LocationDecoder.__dispatch[op.op]
            else:
                func = LocationDecoder._unsupported_op
            func(self, op)

        loc = self._loc
        self._loc = None
        return loc

    def _unsupported_op(self, op):
        raise LocationDecodeError(
            f"Unsupported DWARF location op='{op.op_name}' ({op.op:x}) args={op.args}")

    def _set_deref(self, op):
        if self._loc.deref:
            raise LocationDecodeError(f'{op.op_name}: location is already dereferenced')
        self._loc.deref = True

    def _addr(self, op):
        self._loc.deref = True
        self._loc.register_kind = LocationRegister.NONE
        self._loc.register_number = UINT32_MAX
        self._loc.offset = op.args[0]

    def _deref(self, op):
        self._set_deref(op)

    def _xderef(self, op):
        self._set_deref(op)
        if len(op.args):
            self._loc.resource = op.args[0]

    def _deref_size(self, op):
        self._set_deref(op)
        self._loc.piece_size = op.args[0]

    def _xderef_size(self, op):
        self._set_deref(op)
        self._loc.piece_size = op.args[0]
        if len(op.args) > 1:
            self._loc.resource = op.args[1]

    def _plus_uconst(self, op):
        if self._is_member:
            # Member offset within the containing variable.
            self._loc.piece_offset += op.args[0]
        else:
            self._loc.const_addition += op.args[0]

    def _reg_direct(self, op):
        """ reg0 .. reg31 op - value is held directly in the register. """
        # register id encoded in opcode itself.
        reg_num = op.op - dwarf_expr.DW_OP_name2opcode['DW_OP_reg0']
        self._set_register(reg_num, deref=False, offset=0)

    def _regx(self, op):
        """ value is directly in register arg[0] """
        self._set_register(op.args[0], deref=False, offset=0)

    def _reg_lookup(self, op):
        """ breg0 .. breg31 op - value is at the address in the register, plus arg[0]. """
        reg_num = op.op - dwarf_expr.DW_OP_name2opcode['DW_OP_breg0']
        self._set_register(reg_num, deref=True, offset=op.args[0])

    def _bregx(self, op):
        """ value is at the address in register arg[0], plus offset arg[1] """
        self._set_register(op.args[0], deref=True, offset=op.args[1])

    def _set_register(self, reg_num, deref, offset):
        self._loc.register_kind = LocationRegister.REGISTER
        self._loc.register_number = reg_num
        self._loc.deref = deref
        self._loc.offset = offset

    def _fbreg(self, op):
        self._loc.deref = True
        self._loc.register_kind = LocationRegister.STACK
        self._loc.register_number = UINT32_MAX
        self._loc.offset = op.args[0]

    def _piece(self, op):
        self._loc.piece_size = min(self._loc.piece_size, op.args[0])

    def _bit_piece(self, op):
        size_bits = op.args[0]
        offset_bits = op.args[1] if len(op.args) > 1 else 0
        self._loc.piece_size = min(self._loc.piece_size, (size_bits + 7) // 8)
        self._loc.piece_offset += (offset_bits + 7) // 8

    def _nop(self, op):
        pass

    ### Setup ###

    @classmethod
    def __init_dispatch(cls):
        """
        Initialize the opcode dispatch table the first time we're used.
        """
        d = {
            0x03: cls._addr, # DW_OP_addr
            0x06: cls._deref, # DW_OP_deref
            0x18: cls._xderef, # DW_OP_xderef
            0x23: cls._plus_uconst, # DW_OP_plus_uconst
            0x90: cls._regx, # DW_OP_regx
            0x91: cls._fbreg, # DW_OP_fbreg
            0x92: cls._bregx, # DW_OP_bregx
            0x93: cls._piece, # DW_OP_piece
            0x94: cls._deref_size, # DW_OP_deref_size
            0x95: cls._xderef_size, # DW_OP_xderef_size
            0x96: cls._nop, # DW_OP_nop
            0x9d: cls._bit_piece, # DW_OP_bit_piece
        }

        # Add reg0..reg31, breg0..breg31 to mappings
        for i in range(0, 32):
            d[i + 0x50] = cls._reg_direct
            d[i + 0x70] = cls._reg_lookup

        # Convert the map above into an array for fast lookups.
        cls.__dispatch = (max(d.keys()) + 1) * [ cls._unsupported_op ]
        for (idx, func) in d.items():
            cls.__dispatch[idx] = func
