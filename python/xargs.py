#!/usr/bin/env python3
"""
Name: xargs
Description: construct argument list(s) and execute utility
Author: Gurusamy Sarathy, gsar@umich.edu (Original Perl Author)
License: perl

Reads words from standard input and runs COMMAND with as many of them
appended as fit on one command line, over and over until the input runs
out. Words are separated by blanks and newlines, or with -0 each word is
a NUL terminated record taken as is.

If COMMAND exits with status 255, no further commands are launched even
if input remains, and xargs itself exits with status 124 (the POSIX
status for this case) rather than 255.
"""

import sys
import os
import argparse
import struct
import subprocess
from enum import Enum

# Exit statuses
EX_SUCCESS = 0
EX_FAILURE = 1
EX_STOPPED = 124
EX_NOEXEC = 126
EX_NOTFOUND = 127

# A child exiting with this status halts the run.
STOP_STATUS = 255

# POSIX wants this much of ARG_MAX left over for the invoked utility.
RESERVED_BYTES = 2048

POINTER_SIZE = struct.calcsize('P')
WHITESPACE = b' \t\n\v\f\r'
CHUNK_SIZE = 8192
TTY_PATH = '/dev/tty'
DEFAULT_COMMAND = [b'echo']


def environ_bytes(environ=None):
    """
    Returns how much of the exec() image the environment occupies: one
    pointer slot plus the NUL terminated KEY=VALUE string per variable.
    """
    if environ is None:
        environ = os.environb
    return sum(POINTER_SIZE + len(key) + len(value) + 2 for key, value in environ.items())


def command_size_limit(requested=0, environ=None):
    """
    Clamps a requested command line size to what exec() will accept.
    Zero means no preference, so the system ceiling is used.
    """
    ceiling = os.sysconf('SC_ARG_MAX') - environ_bytes(environ) - RESERVED_BYTES
    if not requested or requested > ceiling:
        return ceiling
    return requested


def read_records(stream, delim):
    """
    Yields the records of a binary stream split on 'delim', without the
    delimiter. Like getdelim(3), a last record missing its delimiter is
    still returned.
    """
    pending = b''
    while True:
        chunk = stream.read1(CHUNK_SIZE)
        if not chunk:
            break
        parts = chunk.split(delim)
        parts[0] = pending + parts[0]
        pending = parts.pop()
        yield from parts
    if pending:
        yield pending


class Outcome(Enum):
    MORE = 0      # record used up, batch still has room
    FULL = 1      # batch full, leftover holds what didn't fit
    CONSUMED = 2  # batch full, record used up
    STOP = 3      # hit the end-of-file string


class Verdict:
    """What classifying one record did to the current batch."""
    def __init__(self, outcome, leftover=None):
        self.outcome = outcome
        self.leftover = leftover

    def __eq__(self, other):
        return (isinstance(other, Verdict) and self.outcome is other.outcome
                and self.leftover == other.leftover)

    def __repr__(self):
        if self.leftover is None:
            return f"Verdict({self.outcome.name})"
        return f"Verdict({self.outcome.name}, {self.leftover!r})"


MORE = Verdict(Outcome.MORE)
CONSUMED = Verdict(Outcome.CONSUMED)
STOP = Verdict(Outcome.STOP)


class BatchState:
    """
    Running totals for the batch being built. 'entries' counts the words
    taken from input; 'bytes' starts from the size of the fixed command
    prefix so it always describes the whole command line.
    """
    def __init__(self, prefix):
        self.prefix_entries = len(prefix)
        self.prefix_bytes = sum(len(arg) + 1 for arg in prefix) - 1
        self.reset()

    def reset(self):
        self.entries = 0
        self.bytes = self.prefix_bytes


class Batcher:
    """
    Decides how much of each input record fits in the current batch.

    classify() only touches the BatchState counters and, when given one,
    the sink list that accepted words are appended to. Running it again
    over the same records from a reset state always gives the same result,
    so a batch can be sized first and filled afterwards.
    """
    def __init__(self, max_bytes=0, max_args=0, eof_str=None, null=False):
        self.max_bytes = max_bytes
        self.max_args = max_args
        self.eof_str = eof_str
        self.null = null

    def classify(self, record, state, sink=None):
        if self.null:
            return self._classify_record(record, state, sink)
        return self._classify_words(record, state, sink)

    def _classify_words(self, data, state, sink):
        """Splits a line on runs of blanks; words never straddle two batches."""
        # A NUL ends the line, as it would a C string.
        data = data.split(b"\0", 1)[0]
        pos, end = 0, len(data)
        while pos < end:
            while pos < end and data[pos] in WHITESPACE:
                pos += 1

            if self.max_args and state.entries >= self.max_args:
                return Verdict(Outcome.FULL, data[pos:]) if pos < end else CONSUMED
            if pos == end:
                break

            # Words are charged their length plus a terminator, but no
            # pointer slot, matching busybox and findutils.
            start = pos
            while True:
                state.bytes += 1
                if self.max_bytes and state.bytes >= self.max_bytes:
                    return Verdict(Outcome.FULL, data[start:])
                if pos == end or data[pos] in WHITESPACE:
                    break
                pos += 1

            word = data[start:pos]
            if self.eof_str is not None and word == self.eof_str:
                return STOP
            if sink is not None:
                sink.append(word)
            state.entries += 1
        return MORE

    def _classify_record(self, data, state, sink):
        """The whole record is one argument, charged a pointer slot too."""
        state.bytes += POINTER_SIZE + len(data) + 1
        if self.max_bytes and state.bytes >= self.max_bytes:
            return Verdict(Outcome.FULL, data)
        if self.max_args and state.entries >= self.max_args:
            return Verdict(Outcome.FULL, data)
        if sink is not None:
            sink.append(data)
        state.entries += 1
        return MORE


class Xargs:
    """
    Reads batches of words and runs the command once per batch, one child
    at a time, in input order.
    """
    def __init__(self, args, stdin=None, stderr=None):
        self.args = args
        self.stdin = stdin if stdin is not None else sys.stdin.buffer
        self.stderr = stderr if stderr is not None else sys.stderr.buffer
        self.tty_path = TTY_PATH
        self.tty = None
        self.status = EX_SUCCESS

        self.command = [os.fsencode(arg) for arg in args.command] or list(DEFAULT_COMMAND)
        self.delim = b'\0' if args.null else b'\n'
        eof_str = os.fsencode(args.eof_str) if args.eof_str is not None else None
        self.batcher = Batcher(args.max_chars, args.max_args, eof_str, args.null)
        self.state = BatchState(self.command)

    def warn(self, message):
        """Prints a diagnostic prefixed with the program name."""
        self.stderr.flush()
        program_name = os.path.basename(sys.argv[0])
        print(f"{program_name}: {message}", file=sys.stderr)

    def fatal(self, message, status=EX_FAILURE):
        """Reports an unrecoverable error and exits."""
        self.warn(message)
        sys.exit(status)

    def run(self):
        """Runs the command over all of the input and returns the exit status."""
        records = read_records(self.stdin, self.delim)
        leftover = None
        done = False
        ran = False

        try:
            while leftover is not None or not done:
                self.state.reset()
                retained = []

                # --- 1. Gather records until the batch is full ---
                while True:
                    if leftover is None:
                        record = next(records, None)
                        if record is None:
                            done = True
                            break
                    else:
                        record, leftover = leftover, None
                    retained.append(record)

                    verdict = self.batcher.classify(record, self.state)
                    if verdict.outcome is Outcome.MORE:
                        continue
                    if verdict.outcome is Outcome.STOP:
                        done = True
                    leftover = verdict.leftover
                    break

                if leftover is not None and not self.state.entries:
                    self.fatal("argument too long")
                # An empty batch only runs when nothing has run yet.
                if not self.state.entries and (ran or self.args.no_run_if_empty):
                    continue
                ran = True

                # --- 2. Build the command line and run it ---
                argv = self.build_argv(retained)
                if self.confirm(argv):
                    self.status = self.execute(argv)
                if self.status == STOP_STATUS:
                    break
        finally:
            self.close()

        if self.status == STOP_STATUS:
            return EX_STOPPED
        return self.status

    def build_argv(self, retained):
        """Replays the retained records into the command prefix."""
        argv = list(self.command)
        self.state.reset()
        for record in retained:
            self.batcher.classify(record, self.state, argv)
        return argv

    def confirm(self, argv):
        """
        Echoes the command line for -t and -p. With -p, asks on the
        terminal whether to run it and returns the answer.
        """
        if not (self.args.prompt or self.args.trace):
            return True

        self.stderr.write(b''.join(arg + b' ' for arg in argv))
        if not self.args.prompt:
            self.stderr.write(b'\n')
            self.stderr.flush()
            return True

        self.stderr.write(b'?')
        self.stderr.flush()
        answer = self.terminal().readline()
        return answer.lstrip()[:1] in (b'y', b'Y')

    def terminal(self):
        """Opens the controlling terminal the first time it is needed."""
        if self.tty is None:
            try:
                # Unbuffered, so reading an answer never eats a child's input.
                self.tty = open(self.tty_path, 'rb', buffering=0)
            except OSError as e:
                self.fatal(f"can't open {self.tty_path}: {e.strerror}")
        return self.tty

    def execute(self, argv):
        """Runs one batch and returns its exit status, 128+N for signal N."""
        child_stdin = self.terminal() if self.args.open_tty else subprocess.DEVNULL
        name = os.fsdecode(argv[0])
        try:
            proc = subprocess.run(argv, stdin=child_stdin)
        except FileNotFoundError:
            self.fatal(f"{name}: No such file or directory", EX_NOTFOUND)
        except PermissionError:
            self.fatal(f"{name}: Permission denied", EX_NOEXEC)
        except OSError as e:
            self.fatal(f"{name}: {e.strerror or e}")
        except ValueError as e:
            self.fatal(f"{name}: {e}")

        if proc.returncode < 0:
            signum = -proc.returncode
            self.warn(f"{name}: terminated by signal {signum}")
            return 128 + signum
        return proc.returncode

    def close(self):
        if self.tty is not None:
            self.tty.close()
            self.tty = None


def positive_int(value):
    try:
        number = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid number '{value}'")
    if number < 1:
        raise argparse.ArgumentTypeError(f"number must be > 0: '{value}'")
    return number


def non_negative_int(value):
    try:
        number = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid number '{value}'")
    if number < 0:
        raise argparse.ArgumentTypeError(f"number must be >= 0: '{value}'")
    return number


def parse_args(argv=None):
    """Parses the command line; -s is clamped to the system limit."""
    parser = argparse.ArgumentParser(
        description="Run command line one or more times, appending arguments from stdin.",
        usage="%(prog)s [-0oprt] [-s NUM] [-n NUM] [-E STR] COMMAND..."
    )
    # -E makes no sense without whitespace splitting.
    group = parser.add_mutually_exclusive_group()
    group.add_argument('-0', '--null', dest='null', action='store_true',
                       help='each argument is NUL terminated, no whitespace or quote processing')
    group.add_argument('-E', '--eof', dest='eof_str', metavar='STR',
                       help='stop at a word matching STR')
    parser.add_argument('-n', '--max-args', dest='max_args', type=positive_int, default=0,
                        metavar='NUM', help='max number of arguments per command')
    parser.add_argument('-o', '--open-tty', dest='open_tty', action='store_true',
                        help="open tty for COMMAND's stdin (default /dev/null)")
    parser.add_argument('-p', '--interactive', dest='prompt', action='store_true',
                        help='prompt for y/n from tty before running each command')
    parser.add_argument('-r', '--no-run-if-empty', dest='no_run_if_empty', action='store_true',
                        help="don't run command with empty input")
    parser.add_argument('-s', '--max-chars', dest='max_chars', type=non_negative_int, default=0,
                        metavar='NUM', help='size in bytes per command line')
    parser.add_argument('-t', '--verbose', dest='trace', action='store_true',
                        help='trace, print command line to stderr')
    parser.add_argument('command', nargs=argparse.REMAINDER,
                        help='command to run (default: echo)')

    args = parser.parse_args(argv)
    args.max_chars = command_size_limit(args.max_chars)
    return args


def main():
    """Main function to parse args and run the xargs logic."""
    args = parse_args()
    sys.exit(Xargs(args).run())


if __name__ == "__main__":
    main()
