"""Building the command line that starts the VMM process."""

from __future__ import annotations

import codecs
import dataclasses
import io
import subprocess
import sys
import threading
from dataclasses import dataclass, field
from functools import partial
from typing import IO, Any, Optional, Sequence

DEFAULT_FC_BIN = "firecracker"


def _has_fileno(stream: Any) -> bool:
    try:
        stream.fileno()
    except (AttributeError, OSError, ValueError):
        return False
    return True


def _pump_out(pipe: IO[bytes], target: Any) -> None:
    text = isinstance(target, io.TextIOBase)
    decoder = codecs.getincrementaldecoder("utf-8")(errors="replace") if text else None
    with pipe:
        for chunk in iter(partial(pipe.read1, 65536), b""):
            target.write(decoder.decode(chunk) if decoder else chunk)
        if decoder:
            tail = decoder.decode(b"", final=True)
            if tail:
                target.write(tail)


def _pump_in(source: Any, pipe: IO[bytes]) -> None:
    try:
        with pipe:
            data = source.read()
            if isinstance(data, str):
                data = data.encode("utf-8")
            if data:
                pipe.write(data)
    except BrokenPipeError:
        pass


@dataclass
class Command:
    """A prepared process: the argument vector and its standard streams."""

    args: list[str]
    stdin: Any = None
    stdout: Any = None
    stderr: Any = None
    _process: Optional[subprocess.Popen] = field(default=None, init=False, repr=False, compare=False)
    _threads: list[threading.Thread] = field(default_factory=list, init=False, repr=False, compare=False)

    @property
    def process(self) -> Optional[subprocess.Popen]:
        return self._process

    def start(self) -> subprocess.Popen:
        """Start the process; streams without a file descriptor are piped."""
        if self._process is not None:
            raise RuntimeError("command already started")

        pending_in = None
        stdin_arg: Any = None
        if self.stdin is not None:
            if _has_fileno(self.stdin):
                stdin_arg = self.stdin
            else:
                stdin_arg = subprocess.PIPE
                pending_in = self.stdin

        pending_out = []
        out_args: list[Any] = []
        for stream in (self.stdout, self.stderr):
            if stream is None or _has_fileno(stream):
                out_args.append(stream)
            else:
                out_args.append(subprocess.PIPE)

        process = subprocess.Popen(self.args, stdin=stdin_arg, stdout=out_args[0], stderr=out_args[1])
        self._process = process

        if out_args[0] is subprocess.PIPE:
            pending_out.append((process.stdout, self.stdout))
        if out_args[1] is subprocess.PIPE:
            pending_out.append((process.stderr, self.stderr))

        for pipe, target in pending_out:
            thread = threading.Thread(target=_pump_out, args=(pipe, target), daemon=True)
            thread.start()
            self._threads.append(thread)
        if pending_in is not None:
            thread = threading.Thread(target=_pump_in, args=(pending_in, process.stdin), daemon=True)
            thread.start()
            self._threads.append(thread)
        return process

    def wait(self, timeout: Optional[float] = None) -> int:
        """Wait for the started process and its stream copiers to finish."""
        if self._process is None:
            raise RuntimeError("command has not been started")
        code = self._process.wait(timeout)
        for thread in self._threads:
            thread.join()
        return code


@dataclass(frozen=True)
class VMCommandBuilder:
    """Immutable builder for the command that starts the VMM."""

    binary: str = ""
    args: Optional[tuple[str, ...]] = None
    socket_path: str = ""
    stdin: Any = None
    stdout: Any = None
    stderr: Any = None

    @property
    def bin(self) -> str:
        """The binary to run, falling back to the default."""
        return self.binary or DEFAULT_FC_BIN

    def with_bin(self, bin: str) -> "VMCommandBuilder":
        return dataclasses.replace(self, binary=bin)

    def with_args(self, args: Optional[Sequence[str]]) -> "VMCommandBuilder":
        return dataclasses.replace(self, args=None if args is None else tuple(args))

    def add_args(self, *args: str) -> "VMCommandBuilder":
        return dataclasses.replace(self, args=(self.args or ()) + tuple(args))

    def with_socket_path(self, path: str) -> "VMCommandBuilder":
        return dataclasses.replace(self, socket_path=path)

    def with_stdin(self, stdin: Any) -> "VMCommandBuilder":
        return dataclasses.replace(self, stdin=stdin)

    def with_stdout(self, stdout: Any) -> "VMCommandBuilder":
        return dataclasses.replace(self, stdout=stdout)

    def with_stderr(self, stderr: Any) -> "VMCommandBuilder":
        return dataclasses.replace(self, stderr=stderr)

    def socket_path_args(self) -> Optional[list[str]]:
        """The ``--api-sock`` arguments, or ``None`` when no socket is set."""
        if not self.socket_path:
            return None
        return ["--api-sock", self.socket_path]

    def build(self) -> Command:
        argv = [self.bin]
        argv.extend(self.socket_path_args() or ())
        argv.extend(self.args or ())
        return Command(args=argv, stdin=self.stdin, stdout=self.stdout, stderr=self.stderr)


DEFAULT_VM_COMMAND_BUILDER = (
    VMCommandBuilder()
    .with_bin(DEFAULT_FC_BIN)
    .with_stdin(sys.stdin)
    .with_stdout(sys.stdout)
    .with_stderr(sys.stderr)
)