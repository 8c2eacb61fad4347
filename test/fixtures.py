# (c) Copyright 2022 Aaron Kimball
#
# Kernel binaries used as test fixtures, built in memory with elf_writer.
#
# The two-level kernel 'kern' is compiled from kernel.cl:
#
#   High level (BRIG offsets)            Low level (ISA addresses)
#   kern        [0x100, 0x200)           &__OpenCL_kern_kernel [0x1000, 0x1100)
#     x   @ BRIG 0x40                      x  brig 0x40 in register 3
#     inlined helper [0x140, 0x180)        y  brig 0x48 at [register 4 + 8]
#       called from kernel.cl:42
#       y @ BRIG 0x48
#
#   HL lines: 0x100 -> 40, 0x140 -> 10, 0x150 -> 11, 0x180 -> 43, 0x1a0 -> 44
#   LL lines: 0x1000 -> 0x100, 0x1040 -> 0x140, 0x1050 -> 0x150, 0x1080 -> 0x180,
#             0x10a0 -> 0x1a0

import struct

from elf_writer import DwarfDie, ElfWriter, STT_FUNC, address_pairs, line_program, \
    location_list

DW_AT_HSA_is_kernel = 0x3000
DW_AT_HSA_brig_offset = 0x3004

DW_OP_addr = 0x03
DW_OP_plus_uconst = 0x23
DW_OP_reg0 = 0x50
DW_OP_breg0 = 0x70
DW_OP_fbreg = 0x91

DW_ATE_signed = 0x05
DW_ATE_float = 0x04

HSAIL_TEXT = 'module &m:1:0:$full:$large:$default;\nkernel &kern() {}\n'


def op_addr(addr):
    return bytes([DW_OP_addr]) + struct.pack('<Q', addr)


def int_type(name='int', size=4, encoding=DW_ATE_signed):
    return DwarfDie('DW_TAG_base_type', [
        ('DW_AT_name', 'DW_FORM_string', name),
        ('DW_AT_byte_size', 'DW_FORM_data1', size),
        ('DW_AT_encoding', 'DW_FORM_data1', encoding),
    ])


def variable(name, type_die, location, brig_offset=None, tag='DW_TAG_variable'):
    attrs = [
        ('DW_AT_name', 'DW_FORM_string', name),
        ('DW_AT_type', 'DW_FORM_ref4', type_die),
    ]
    if location is not None:
        attrs.append(('DW_AT_location', 'DW_FORM_exprloc', location))
    if brig_offset is not None:
        attrs.append((DW_AT_HSA_brig_offset, 'DW_FORM_data4', brig_offset))
    return DwarfDie(tag, attrs)


def high_level_elf():
    """ The HSAIL/BRIG level of 'kern', with its source text in .source. """
    int_die = int_type()
    helper = DwarfDie('DW_TAG_subprogram', [
        ('DW_AT_name', 'DW_FORM_string', 'helper'),
        ('DW_AT_inline', 'DW_FORM_data1', 1),
    ])
    inlined = DwarfDie('DW_TAG_inlined_subroutine', [
        ('DW_AT_abstract_origin', 'DW_FORM_ref4', helper),
        ('DW_AT_low_pc', 'DW_FORM_addr', 0x140),
        ('DW_AT_high_pc', 'DW_FORM_addr', 0x180),
        ('DW_AT_call_file', 'DW_FORM_data1', 1),
        ('DW_AT_call_line', 'DW_FORM_data1', 42),
    ], [
        variable('y', int_die, op_addr(0x48)),
    ])
    kern = DwarfDie('DW_TAG_subprogram', [
        ('DW_AT_name', 'DW_FORM_string', 'kern'),
        ('DW_AT_low_pc', 'DW_FORM_addr', 0x100),
        ('DW_AT_high_pc', 'DW_FORM_addr', 0x200),
        ('DW_AT_frame_base', 'DW_FORM_exprloc', bytes([DW_OP_reg0 + 1])),
        (DW_AT_HSA_is_kernel, 'DW_FORM_flag_present', True),
    ], [
        variable('x', int_die, op_addr(0x40)),
        inlined,
    ])
    cu = DwarfDie('DW_TAG_compile_unit', [
        ('DW_AT_name', 'DW_FORM_string', 'kernel.cl'),
        ('DW_AT_low_pc', 'DW_FORM_addr', 0x100),
        ('DW_AT_high_pc', 'DW_FORM_data4', 0x100),
        ('DW_AT_stmt_list', 'DW_FORM_sec_offset', 0),
    ], [helper, kern, int_die])

    lines = line_program([('kernel.cl', 0)],
        [(0x100, 1, 40), (0x140, 1, 10), (0x150, 1, 11), (0x180, 1, 43), (0x1a0, 1, 44)], 0x200)

    elf = ElfWriter()
    elf.add_dwarf(cu, lines)
    elf.add_section('.source', brig_source_section(HSAIL_TEXT))
    return elf.build()


def brig_source_section(text):
    """ HSAIL text preceded by a BRIG section header. """
    name = b'hsa_source'
    header_len = 16 + len(name)
    body = text.encode('utf-8') + b'\x00'
    return struct.pack('<QII', header_len + len(body), header_len, len(name)) + name + body


def _low_level_debug():
    """ DIEs and line program of the ISA level of 'kern'. Its line numbers are BRIG offsets. """
    int_die = int_type()
    func = DwarfDie('DW_TAG_subprogram', [
        ('DW_AT_name', 'DW_FORM_string', '&__OpenCL_kern_kernel'),
        ('DW_AT_low_pc', 'DW_FORM_addr', 0x1000),
        ('DW_AT_high_pc', 'DW_FORM_addr', 0x1100),
    ], [
        variable('x', int_die, bytes([DW_OP_reg0 + 3]), brig_offset=0x40),
        variable('y', int_die, bytes([DW_OP_breg0 + 4, 8]), brig_offset=0x48),
    ])
    cu = DwarfDie('DW_TAG_compile_unit', [
        ('DW_AT_name', 'DW_FORM_string', 'kernel.isa'),
        ('DW_AT_low_pc', 'DW_FORM_addr', 0x1000),
        ('DW_AT_high_pc', 'DW_FORM_addr', 0x1100),
        ('DW_AT_stmt_list', 'DW_FORM_sec_offset', 0),
    ], [func, int_die])

    lines = line_program([('kernel.brig', 0)],
        [(0x1000, 1, 0x100), (0x1040, 1, 0x140), (0x1050, 1, 0x150), (0x1080, 1, 0x180),
         (0x10a0, 1, 0x1a0)], 0x1100)
    return cu, lines


def low_level_elf():
    elf = ElfWriter()
    elf.add_dwarf(*_low_level_debug())
    return elf.build()


def hsa_1_0_container(hl_section='.hsahldebug_kern', ll_section='.debug_.sc_elf'):
    """ An outer ELF carrying the HL debug ELF and the LL debug ELF as sections. """
    elf = ElfWriter()
    elf.add_section('.text', bytes(0x100))
    if hl_section is not None:
        elf.add_section(hl_section, high_level_elf())
    if ll_section is not None:
        elf.add_section(ll_section, low_level_elf())
    return elf.build()


def hsa_1_0_flat_container():
    """ A container that nests the HL debug ELF but carries the LL debug info itself. """
    elf = ElfWriter()
    elf.add_section('.hsahldebug_kern', high_level_elf())
    elf.add_dwarf(*_low_level_debug())
    return elf.build()


def single_level_elf():
    """
    A self-contained kernel exercising scope and variable features:

    main [0x0, 0x100) in main.c, frame base register 5
      int count @ fbreg -8          (shadowed in the block below)
      struct point pos @ fbreg -16  (members x at +0, y at +4)
      const int limit = 7
      block [0x40, 0x80)
        float count @ fbreg -24
      block, no address range
        int inner @ location list: [0x10,0x20) reg 1, [0x20,0x30) reg 2
      block in two ranges [0x90,0xa0) + [0xb0,0xc0)
    """
    int_die = int_type()
    float_die = int_type('float', 4, DW_ATE_float)
    point = DwarfDie('DW_TAG_structure_type', [
        ('DW_AT_name', 'DW_FORM_string', 'point'),
        ('DW_AT_byte_size', 'DW_FORM_data1', 8),
    ], [
        DwarfDie('DW_TAG_member', [
            ('DW_AT_name', 'DW_FORM_string', 'x'),
            ('DW_AT_type', 'DW_FORM_ref4', int_die),
            ('DW_AT_data_member_location', 'DW_FORM_data1', 0),
        ]),
        DwarfDie('DW_TAG_member', [
            ('DW_AT_name', 'DW_FORM_string', 'y'),
            ('DW_AT_type', 'DW_FORM_ref4', int_die),
            ('DW_AT_data_member_location', 'DW_FORM_exprloc', bytes([DW_OP_plus_uconst, 4])),
        ]),
    ])
    const_int = DwarfDie('DW_TAG_const_type', [('DW_AT_type', 'DW_FORM_ref4', int_die)])
    int_ptr = DwarfDie('DW_TAG_pointer_type', [
        ('DW_AT_byte_size', 'DW_FORM_data1', 8),
        ('DW_AT_type', 'DW_FORM_ref4', int_die),
        ('DW_AT_address_class', 'DW_FORM_data1', 1),
    ])

    main = DwarfDie('DW_TAG_subprogram', [
        ('DW_AT_name', 'DW_FORM_string', 'main'),
        ('DW_AT_low_pc', 'DW_FORM_addr', 0x0),
        ('DW_AT_high_pc', 'DW_FORM_data4', 0x100),
        ('DW_AT_frame_base', 'DW_FORM_exprloc', bytes([DW_OP_reg0 + 5])),
    ], [
        variable('count', int_die, bytes([DW_OP_fbreg, 0x78])),  # fbreg -8
        variable('pos', point, bytes([DW_OP_fbreg, 0x70])),      # fbreg -16
        variable('ptr', int_ptr, bytes([DW_OP_fbreg, 0x68])),    # fbreg -24
        DwarfDie('DW_TAG_variable', [
            ('DW_AT_name', 'DW_FORM_string', 'limit'),
            ('DW_AT_type', 'DW_FORM_ref4', const_int),
            ('DW_AT_const_value', 'DW_FORM_data1', 7),
        ]),
        DwarfDie('DW_TAG_lexical_block', [
            ('DW_AT_low_pc', 'DW_FORM_addr', 0x40),
            ('DW_AT_high_pc', 'DW_FORM_addr', 0x80),
        ], [
            variable('count', float_die, bytes([DW_OP_fbreg, 0x68])),
        ]),
        DwarfDie('DW_TAG_lexical_block', [], [
            DwarfDie('DW_TAG_variable', [
                ('DW_AT_name', 'DW_FORM_string', 'inner'),
                ('DW_AT_type', 'DW_FORM_ref4', int_die),
                ('DW_AT_location', 'DW_FORM_sec_offset', 0),
            ]),
        ]),
        DwarfDie('DW_TAG_lexical_block', [
            ('DW_AT_ranges', 'DW_FORM_sec_offset', 0),
        ]),
    ])
    cu = DwarfDie('DW_TAG_compile_unit', [
        ('DW_AT_name', 'DW_FORM_string', 'main.c'),
        ('DW_AT_low_pc', 'DW_FORM_addr', 0x0),
        ('DW_AT_high_pc', 'DW_FORM_addr', 0x100),
        ('DW_AT_stmt_list', 'DW_FORM_sec_offset', 0),
    ], [main, int_die, float_die, point, const_int, int_ptr])

    lines = line_program([('main.c', 1)],
        [(0x0, 1, 10), (0x10, 1, 11), (0x20, 1, 12), (0x40, 1, 14), (0x50, 1, 15),
         (0x60, 1, 12), (0x80, 1, 20)],
        0x100, include_dirs=['/src'])
    ranges = address_pairs([(0x90, 0xa0), (0xb0, 0xc0)])
    locs = location_list([(0x10, 0x20, bytes([DW_OP_reg0 + 1])),
                          (0x20, 0x30, bytes([DW_OP_reg0 + 2]))])

    elf = ElfWriter()
    text_index = elf.add_section('.text', bytes(range(0x100)), addr=0)
    elf.add_dwarf(cu, lines, ranges, locs)
    elf.add_symbols([('main', 0x10, 0x20, text_index, STT_FUNC)])
    return elf.build()


###### Damaged binaries

# Offsets into the ELF64 file header and section header.
_E_SHOFF = 0x28
_E_SHENTSIZE = 0x3a
_E_SHSTRNDX = 0x3e
_SH_OFFSET = 0x18


def rename_section(data, old_name, new_name):
    """ Rename a section by rewriting its entry in .shstrtab; names must be the same length. """
    assert len(old_name) == len(new_name)
    old = old_name.encode('utf-8') + b'\x00'
    assert data.count(old) == 1
    return data.replace(old, new_name.encode('utf-8') + b'\x00')


def corrupt_section_names(data):
    """ Point the section name string table far past the end of the image. """
    image = bytearray(data)
    (shoff,) = struct.unpack_from('<Q', image, _E_SHOFF)
    (shentsize,) = struct.unpack_from('<H', image, _E_SHENTSIZE)
    (shstrndx,) = struct.unpack_from('<H', image, _E_SHSTRNDX)
    struct.pack_into('<Q', image, shoff + shstrndx * shentsize + _SH_OFFSET, 0xfffffffffffffff0)
    return bytes(image)


def truncations(data):
    """ Copies of data cut short at several points; each loses part of the section headers. """
    return [data[:n] for n in (20, 64, len(data) // 2, len(data) - 8)]
