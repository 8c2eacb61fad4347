# (c) Copyright 2022 Aaron Kimball

import argparse
import sys

import hsa_dbginfo.api as api
import hsa_dbginfo.dump as dump
from .term import ConsolePrinter, MsgLevel
from .version import DBGINFO_VERSION_STR, FULL_DBGINFO_VERSION_STR

__version__ = DBGINFO_VERSION_STR


def _parseArgs(argv):
    parser = argparse.ArgumentParser(description="List the debug info of an HSA kernel binary")
    parser.add_argument("-f", "--file", metavar="kernel_file", required=True)
    parser.add_argument("-v", "--verbose", action="store_true", help="Log while parsing")
    parser.add_argument("--lines", action="store_true", help="Print the line table")
    parser.add_argument("--scopes", action="store_true", help="Print the scope tree")
    parser.add_argument("--version", action="version", version=FULL_DBGINFO_VERSION_STR)

    return parser.parse_args(argv)


def main(argv=None):
    args = _parseArgs(argv)

    with open(args.file, 'rb') as f:
        data = f.read()

    console_printer = ConsolePrinter()
    console_printer.start()
    try:
        print_q = console_printer.print_q
        force_config = {'dbginfo.verbose': True} if args.verbose else None
        (dbg, err) = api.init_and_identify_binary(data, print_q, force_config)
        if dbg is None:
            print_q.put((f'{args.file}: {api.DbgInfoErr.get_message(err)}', MsgLevel.ERR))
            ret = 1
        else:
            console_printer.set_use_colors(dbg.use_colors())
            kind = 'two-level' if dbg.is_two_level() else 'single-level'
            print_q.put((f'{args.file}: {kind} debug info', MsgLevel.SUCCESS))

            stores = [('', dbg.high_level_store())]
            if dbg.is_two_level():
                stores = [('High level: ', dbg.high_level_store()),
                          ('Low level: ', dbg.low_level_store())]

            for (label, store) in stores:
                if args.scopes or not args.lines:
                    print_q.put((f'{label}Scopes', MsgLevel.INFO))
                    for line in dump.format_scope_tree(store.tree):
                        print_q.put((line, MsgLevel.INFO))
                if args.lines:
                    print_q.put((f'{label}Lines', MsgLevel.INFO))
                    for line in dump.format_line_table(store.lines):
                        print_q.put((line, MsgLevel.INFO))

            api.release_debug_info(dbg)
            ret = 0
        console_printer.join_q()
    finally:
        console_printer.shutdown()

    sys.exit(ret)
