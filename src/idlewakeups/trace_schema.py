"""Context-switch records as delivered by the upstream trace decoder.

The decoder (binary event log parsing, clock reconstruction and symbol
resolution) lives outside this package. It hands over one JSON object per
context switch, either as a JSON array or as JSON lines, optionally gzipped.
"""

import gzip
import json
import zlib

from dataclasses import dataclass
from typing import Iterator, Optional


# Frame addresses are unsigned 64-bit values.
MAX_ADDRESS = 2**64 - 1
# Line numbers and ids end up in signed 64-bit profile fields.
INT64_RANGE = (-2**63, 2**63 - 1)


class TraceFormatError(ValueError):
    pass


@dataclass(frozen=True)
class InlinedFrame:
    function: str
    source_file: Optional[str] = None
    line: Optional[int] = None

    @staticmethod
    def load(data: dict) -> "InlinedFrame":
        return InlinedFrame(function=_load_str(data['function']),
                            source_file=_load_str(data.get('source_file')),
                            line=_load_int(data.get('line')))


@dataclass(frozen=True)
class StackFrame:
    image: Optional[str]
    function: Optional[str] = None
    address: Optional[int] = None
    image_path: Optional[str] = None
    source_file: Optional[str] = None
    line: Optional[int] = None
    inlined: tuple[InlinedFrame, ...] = ()

    @property
    def is_resolved(self) -> bool:
        return self.function is not None

    def analyzer_string(self) -> str:
        image = self.image if self.image is not None else '<unknown>'
        function = self.function if self.function is not None else '<unknown>'
        if self.address is None:
            return f"{image}!{function}"
        return f"{image}!{function} 0x{self.address:x}"

    @staticmethod
    def load(data: dict) -> "StackFrame":
        return StackFrame(
            image=_load_str(data.get('image')),
            function=_load_str(data.get('function')),
            address=_load_address(data.get('address')),
            image_path=_load_str(data.get('image_path')),
            source_file=_load_str(data.get('source_file')),
            line=_load_int(data.get('line')),
            inlined=tuple(InlinedFrame.load(d) for d in data.get('inlined') or ()),
        )


Stack = tuple[StackFrame, ...]


@dataclass(frozen=True)
class ProcessInfo:
    image_name: str
    process_id: int = 0
    command_line: Optional[str] = None
    object_address: Optional[int] = None

    @staticmethod
    def load(data: Optional[dict]) -> Optional["ProcessInfo"]:
        if not data or data.get('image_name') is None:
            return None
        return ProcessInfo(image_name=_load_str(data['image_name']),
                           process_id=_load_int(data.get('process_id')) or 0,
                           command_line=_load_str(data.get('command_line')),
                           object_address=_load_address(
                               data.get('process_object_address')))


@dataclass(frozen=True)
class ThreadInfo:
    thread_id: int
    name: Optional[str] = None
    object_address: Optional[int] = None

    @staticmethod
    def load(data: Optional[dict]) -> Optional["ThreadInfo"]:
        if not data or data.get('thread_id') is None:
            return None
        return ThreadInfo(thread_id=_load_int(data['thread_id']),
                          name=_load_str(data.get('thread_name')) or None,
                          object_address=_load_address(
                              data.get('thread_object_address')))


@dataclass(frozen=True)
class ContextSwitchSample:
    timestamp: float
    switch_in_thread: Optional[ThreadInfo]
    switch_in_process: Optional[ProcessInfo]
    switch_out_process: Optional[ProcessInfo]
    previous_c_state: Optional[int] = None
    readying_process: Optional[ProcessInfo] = None
    readying_thread_in_dpc: bool = False
    new_thread_stack: Optional[Stack] = None
    ready_thread_stack: Optional[Stack] = None
    waiting_duration_us: Optional[float] = None
    ready_duration_us: Optional[float] = None

    @staticmethod
    def load(data: dict) -> "ContextSwitchSample":
        switch_in = data.get('switch_in') or {}
        return ContextSwitchSample(
            timestamp=float(data['timestamp']),
            switch_in_thread=ThreadInfo.load(switch_in),
            switch_in_process=ProcessInfo.load(switch_in),
            switch_out_process=ProcessInfo.load(data.get('switch_out')),
            previous_c_state=_load_int(data.get('previous_c_state')),
            readying_process=ProcessInfo.load(data.get('readying_process')),
            readying_thread_in_dpc=bool(data.get('readying_thread_in_dpc', False)),
            new_thread_stack=_load_stack(data.get('new_thread_stack')),
            ready_thread_stack=_load_stack(data.get('ready_thread_stack')),
            waiting_duration_us=data.get('waiting_duration_us'),
            ready_duration_us=data.get('ready_duration_us'),
        )


def _load_address(value) -> Optional[int]:
    # Addresses may come in as ints or as hex strings ("0x7ffa1234").
    if value is None:
        return None
    if isinstance(value, str):
        address = int(value, 0)
    else:
        address = int(value)
    if not 0 <= address <= MAX_ADDRESS:
        raise ValueError(f"address {value!r} out of range")
    return address


def _load_int(value) -> Optional[int]:
    if value is None:
        return None
    number = int(value)
    if not INT64_RANGE[0] <= number <= INT64_RANGE[1]:
        raise ValueError(f"integer {value!r} out of range")
    return number


def _load_str(value) -> Optional[str]:
    if value is None or isinstance(value, str):
        return value
    raise TypeError(f"expected a string, got {type(value).__name__}")


def _load_stack(frames: Optional[list]) -> Optional[Stack]:
    if frames is None:
        return None
    return tuple(StackFrame.load(frame) for frame in frames)


def _open(path: str):
    if path.endswith('.gz'):
        return gzip.open(path, 'rt', encoding='utf-8')
    return open(path, 'r', encoding='utf-8')


def _read(path: str, read, *args) -> str:
    try:
        return read(*args)
    except (gzip.BadGzipFile, EOFError, zlib.error, UnicodeDecodeError) as e:
        raise TraceFormatError(f"{path}: cannot read trace: {e}") from e


def _iter_records(path: str) -> Iterator[tuple[int, object]]:
    with _open(path) as f:
        first = ''
        leading_lines = 0
        while not first:
            first = _read(path, f.read, 1)
            if not first:
                return
            if first == '\n':
                leading_lines += 1
            if first.isspace():
                first = ''
        if first == '[':
            text = first + _read(path, f.read)
            try:
                records = json.loads(text)
            except json.JSONDecodeError as e:
                raise TraceFormatError(f"{path}: {e}") from e
            for index, record in enumerate(records):
                yield index + 1, record
            return
        # JSON lines; the first character was consumed above.
        lineno = leading_lines
        while True:
            line = _read(path, f.readline)
            if not line:
                return
            lineno += 1
            if lineno == leading_lines + 1:
                line = first + line
            line = line.strip()
            if not line:
                continue
            try:
                record = json.loads(line)
            except json.JSONDecodeError as e:
                raise TraceFormatError(f"{path}:{lineno}: {e}") from e
            yield lineno, record


def load_samples(path: str) -> Iterator[ContextSwitchSample]:
    """Yield the context-switch samples of a decoded trace, in file order."""
    for position, record in _iter_records(path):
        if not isinstance(record, dict):
            raise TraceFormatError(
                f"{path}:{position}: expected an object, got {type(record).__name__}")
        try:
            sample = ContextSwitchSample.load(record)
        except (AttributeError, KeyError, OverflowError, TypeError, ValueError) as e:
            raise TraceFormatError(
                f"{path}:{position}: malformed record: {e!r}") from e
        yield sample
