#!/usr/bin/env python3
# (c) Copyright 2022 Aaron Kimball

import unittest

from elftools.dwarf.structs import DWARFStructs

from hsa_dbginfo.location import LocationDecodeError, LocationDecoder, LocationRegister, \
    VariableLocation, UINT32_MAX, UINT64_MAX
from dbg_testcase import *

_structs = DWARFStructs(little_endian=True, dwarf_format=32, address_size=8)

class TestLocationDecoder(unittest.TestCase):

    def __init__(self, methodName='runTest'):
        super().__init__(methodName)

    def setUp(self):
        self.decoder = LocationDecoder(_structs)

    def test_default_location(self):
        loc = VariableLocation()
        self.assertEqual(loc.register_kind, LocationRegister.UNINIT)
        self.assertEqual(loc.register_number, UINT32_MAX)
        self.assertEqual(loc.resource, UINT64_MAX)
        self.assertEqual(loc.memory_region, UINT32_MAX)
        self.assertEqual(loc.piece_size, UINT32_MAX)
        self.assertFalse(loc.deref)

    def test_reg(self):
        loc = self.decoder.decode([0x53]) # DW_OP_reg3
        self.assertEqual(loc.register_kind, LocationRegister.REGISTER)
        self.assertEqual(loc.register_number, 3)
        self.assertFalse(loc.deref)
        self.assertEqual(loc.offset, 0)

    def test_regx(self):
        loc = self.decoder.decode([0x90, 0x28]) # DW_OP_regx 40
        self.assertEqual(loc.register_kind, LocationRegister.REGISTER)
        self.assertEqual(loc.register_number, 40)
        self.assertFalse(loc.deref)

    def test_breg(self):
        loc = self.decoder.decode([0x74, 0x08]) # DW_OP_breg4 +8
        self.assertEqual(loc.register_kind, LocationRegister.REGISTER)
        self.assertEqual(loc.register_number, 4)
        self.assertTrue(loc.deref)
        self.assertEqual(loc.offset, 8)

    def test_bregx_negative(self):
        loc = self.decoder.decode([0x92, 0x21, 0x7c]) # DW_OP_bregx 33, -4
        self.assertEqual(loc.register_number, 33)
        self.assertTrue(loc.deref)
        self.assertEqual(loc.offset, -4)

    def test_fbreg(self):
        loc = self.decoder.decode([0x91, 0x70]) # DW_OP_fbreg -16
        self.assertEqual(loc.register_kind, LocationRegister.STACK)
        self.assertEqual(loc.register_number, UINT32_MAX)
        self.assertTrue(loc.deref)
        self.assertEqual(loc.offset, -16)

    def test_addr(self):
        loc = self.decoder.decode([0x03, 0x40, 0, 0, 0, 0, 0, 0, 0]) # DW_OP_addr 0x40
        self.assertEqual(loc.register_kind, LocationRegister.NONE)
        self.assertTrue(loc.deref)
        self.assertEqual(loc.offset, 0x40)

    def test_plus_uconst(self):
        # Outside a member, the addend is held separately from the offset.
        loc = self.decoder.decode([0x03, 0x40, 0, 0, 0, 0, 0, 0, 0, 0x23, 0x04])
        self.assertEqual(loc.offset, 0x40)
        self.assertEqual(loc.const_addition, 4)
        self.assertEqual(loc.piece_offset, 0)

    def test_member_offset(self):
        base = self.decoder.decode([0x91, 0x70])
        member = self.decoder.decode([0x23, 0x0c], is_member=True, base=base)
        self.assertEqual(member.piece_offset, 12)
        self.assertEqual(member.const_addition, 0)
        self.assertEqual(member.offset, -16)
        self.assertEqual(member.register_kind, LocationRegister.STACK)

        # The base location is left alone.
        self.assertEqual(base.piece_offset, 0)

    def test_pieces(self):
        loc = self.decoder.decode([0x53, 0x93, 0x04]) # DW_OP_reg3; DW_OP_piece 4
        self.assertEqual(loc.piece_size, 4)

        loc = self.decoder.decode([0x53, 0x9d, 0x10, 0x10]) # DW_OP_bit_piece 16 bits @ 16
        self.assertEqual(loc.piece_size, 2)
        self.assertEqual(loc.piece_offset, 2)

    def test_xderef_size(self):
        loc = self.decoder.decode([0x55, 0x95, 0x04]) # DW_OP_reg5; DW_OP_xderef_size 4
        self.assertTrue(loc.deref)
        self.assertEqual(loc.piece_size, 4)

    def test_double_deref(self):
        with self.assertRaises(LocationDecodeError):
            self.decoder.decode([0x91, 0x70, 0x06]) # DW_OP_fbreg; DW_OP_deref
        with self.assertRaises(LocationDecodeError):
            self.decoder.decode([0x74, 0x08, 0x94, 0x04]) # DW_OP_breg4 +8; DW_OP_deref_size 4

    def test_addressing_after_deref(self):
        # Addressing ops replace the location; only the deref family checks for a prior deref.
        loc = self.decoder.decode([0x06, 0x91, 0x70]) # DW_OP_deref; DW_OP_fbreg -16
        self.assertEqual(loc.register_kind, LocationRegister.STACK)
        self.assertTrue(loc.deref)
        self.assertEqual(loc.offset, -16)

        # DW_OP_addr 0x40; DW_OP_breg4 +8
        loc = self.decoder.decode([0x03, 0x40, 0, 0, 0, 0, 0, 0, 0, 0x74, 0x08])
        self.assertEqual(loc.register_kind, LocationRegister.REGISTER)
        self.assertEqual(loc.register_number, 4)
        self.assertTrue(loc.deref)
        self.assertEqual(loc.offset, 8)

        # DW_OP_breg4 +8; DW_OP_bregx 33, -4
        loc = self.decoder.decode([0x74, 0x08, 0x92, 0x21, 0x7c])
        self.assertEqual(loc.register_number, 33)
        self.assertEqual(loc.offset, -4)

        # DW_OP_fbreg -16; DW_OP_addr 0x40
        loc = self.decoder.decode([0x91, 0x70, 0x03, 0x40, 0, 0, 0, 0, 0, 0, 0])
        self.assertEqual(loc.register_kind, LocationRegister.NONE)
        self.assertEqual(loc.offset, 0x40)

    def test_unsupported_op(self):
        with self.assertRaises(LocationDecodeError):
            self.decoder.decode([0x30]) # DW_OP_lit0
        with self.assertRaises(LocationDecodeError):
            self.decoder.decode([0x53, 0x22]) # DW_OP_reg3; DW_OP_plus

    def test_max_ops(self):
        loc = self.decoder.decode([0x51, 0x30], max_ops=1)
        self.assertEqual(loc.register_number, 1)

    def test_deterministic(self):
        expr = [0x74, 0x08, 0x93, 0x04]
        first = self.decoder.decode(expr)
        second = self.decoder.decode(expr)
        self.assertIsNot(first, second)
        self.assertEqual(first, second)
        self.assertEqual(hash(first), hash(second))

    def test_copy(self):
        loc = self.decoder.decode([0x53])
        dup = loc.copy()
        self.assertEqual(loc, dup)
        dup.offset = 4
        self.assertNotEqual(loc, dup)
        self.assertEqual(loc.offset, 0)


if __name__ == "__main__":
    unittest.main(verbosity=2)
