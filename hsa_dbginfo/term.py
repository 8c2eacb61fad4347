# (c) Copyright 2022 Aaron Kimball
#
# Methods and constants for working with the terminal and VT100 emulation.

import queue
import threading

COLOR_WHITE     = '\033[0m'
COLOR_BOLD      = '\033[1m' # High-intensity white on black
COLOR_UNDERLINE = '\033[4m'
COLOR_INVERSE   = '\033[7m' # black on white

COLOR_GRAY      = '\033[90m'
COLOR_RED       = '\033[91m'
COLOR_GREEN     = '\033[92m'
COLOR_YELLOW    = '\033[93m'
COLOR_BLUE      = '\033[94m'
COLOR_PURPLE    = '\033[95m'
COLOR_CYAN      = '\033[96m'

BOLD      = COLOR_BOLD

INFO      = COLOR_WHITE
SUCCESS   = COLOR_GREEN
WARN      = COLOR_YELLOW
ERR       = COLOR_RED

COLOR_OFF = COLOR_WHITE # Normal white on black


def fmt(text, color_code=None, use_colors=True):
    """
    Return a string wrapped in the codes to enable a certain color, if use_colors is set.
    """
    if use_colors and color_code is not None:
        return f'{color_code}{text}{COLOR_OFF}'
    else:
        return text


class MsgLevel(object):
    """
    Priority level codes for messages submitted to ConsolePrinter; used to colorize
    messages appropriately.
    """
    INFO        = 0         # Standard message
    WARN        = 2         # Warnings
    ERR         = 3         # Errors
    DEBUG       = 4         # verboseprint() info from a Session.
    SUCCESS     = 5         # Successful.

    @staticmethod
    def color_for_msg(msg_level):
        """
        Return a term color for the message level.
        """
        if msg_level is None:
            return INFO

        if msg_level == MsgLevel.INFO:
            return INFO
        elif msg_level == MsgLevel.WARN:
            return WARN
        elif msg_level == MsgLevel.ERR:
            return ERR
        elif msg_level == MsgLevel.DEBUG:
            return COLOR_GRAY
        elif msg_level == MsgLevel.SUCCESS:
            return SUCCESS
        else:
            return INFO


class ConsolePrinter(object):
    """
    Monitor that creates a queue of things to print to the console.
    Other threads may enqueue new text lines for printing.

    A Session given this object's print_q sends its log and verbose output here.
    """

    TIMEOUT = 0.250 # Blink when reading the queue every 250ms.

    def __init__(self, maxsize=16, use_colors=True):
        self.print_q = queue.Queue(maxsize=maxsize)
        self.use_colors = use_colors
        self._alive = True
        self._thread = threading.Thread(target=self.service, name='Console print thread')

    def start(self):
        self._thread.start()

    def shutdown(self):
        self._alive = False
        self._thread.join()

    def set_use_colors(self, do_use_colors):
        self.use_colors = bool(do_use_colors)

    def join_q(self):
        """
        Wait for any pending items to be printed and drained from the queue.
        """
        self.print_q.join()

    def service(self):
        """
        Main service loop for thread. Receive lines to print and print them to stdout.
        """
        while self._alive:
            try:
                (textline, prio) = self.print_q.get(block=True, timeout=ConsolePrinter.TIMEOUT)
            except queue.Empty:
                continue

            print(fmt(textline, MsgLevel.color_for_msg(prio), self.use_colors), flush=True)
            self.print_q.task_done()


class NullPrinter(ConsolePrinter):
    """
    ConsolePrinter implementation that just silently discards all text it receives.
    """

    def __init__(self, maxsize=16):
        super().__init__(maxsize, use_colors=False)

    def service(self):
        while self._alive:
            try:
                (textline, prio) = self.print_q.get(block=True, timeout=ConsolePrinter.TIMEOUT)
            except queue.Empty:
                continue

            self.print_q.task_done()


# Control codes for verboseprint() - if this sequence preceeds an int, provides instructions on
# how to format it when printed.
#
# n.b. that this is in-band signalling so theoretically could cause regular data we
# verboseprint() to be interpreted as a control code, but these are hopefully unlikely to appear
# in such debugging statements.
VDEC = b'\x00\xFF\x0a'  # Print base 10
VHEX = b'\x00\xFF\x10'  # Print base 16
VHEX4 = b'\x00\xFF\x10\x04'  # Print base 16, 0-pad to 4 places
VHEX8 = b'\x00\xFF\x10\x08'  # Print base 16, 0-pad to 8 places

_CONTROL_CODES = (VDEC, VHEX, VHEX4, VHEX8)


def format_verbose(*args):
    """
    Concatenate verboseprint() arguments into one string, applying any control codes.
    """
    s = ''
    next_ctrl = None
    for arg in args:
        if isinstance(arg, bytes):
            if arg in _CONTROL_CODES:
                next_ctrl = arg
                continue
            else:
                # Just a byte string to format.
                s += repr(arg)
        elif next_ctrl is not None and isinstance(arg, int):
            if next_ctrl == VDEC:
                s += f'{arg}'
            elif next_ctrl == VHEX:
                s += f'{arg:x}'
            elif next_ctrl == VHEX4:
                s += f'{arg:04x}'
            elif next_ctrl == VHEX8:
                s += f'{arg:08x}'
        elif isinstance(arg, str):
            s += arg
        else:
            s += repr(arg)

        next_ctrl = None

    return s
