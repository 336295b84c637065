import re

from dataclasses import dataclass, field
from typing import Optional

from idlewakeups.configured_logger import new_logger
from idlewakeups.options import AnalyzerOptions
from idlewakeups.protos import profile_pb2
from idlewakeups.stack_signature import StackSignature
from idlewakeups.trace_schema import StackFrame, Stack
from idlewakeups.wakeup_schema import StackKind, ThreadIdentity

logger = new_logger('profile_schema', stderr=True)

UNKNOWN = '<unknown>'

# Upper bound on inlined lines attached to a single location.
MAX_INLINED_LINES = 4

# Sample value layout, one (all, dpc, non-dpc) triple per stack kind.
SAMPLE_TYPES = [
    ('woken', 'count'),
    ('woken_dpc', 'count'),
    ('woken_non_dpc', 'count'),
    ('waker', 'count'),
    ('waker_dpc', 'count'),
    ('waker_non_dpc', 'count'),
]
VALUE_OFFSETS = {
    StackKind.NEW_THREAD: 0,
    StackKind.READY_THREAD: 3,
}

FunctionKey = tuple[str, str]
LocationKey = tuple[int, str, Optional[int], str]
MappingKey = tuple[int, str]
SampleKey = tuple[int, StackKind, StackSignature]


@dataclass
class StringTableBuilder:
    strings: list[str] = field(default_factory=lambda: [''])
    existing: dict[str, int] = field(default_factory=lambda: {'': 0})

    def insert(self, string: Optional[str]) -> int:
        if not string:
            return 0
        index = self.existing.get(string)
        if index is not None:
            return index
        index = len(self.strings)
        self.strings.append(string)
        self.existing[string] = index
        return index

    def __len__(self):
        return len(self.strings)


@dataclass
class Function:
    id: int
    name: int
    system_name: int
    filename: int

    def proto(self):
        return profile_pb2.Function(id=self.id,
                                    name=self.name,
                                    system_name=self.system_name,
                                    filename=self.filename)


@dataclass
class Line:
    function_id: int
    line: int = 0

    def proto(self):
        return profile_pb2.Line(function_id=self.function_id, line=self.line)


@dataclass
class Location:
    id: int
    mapping_id: int
    address: int = 0
    lines: list[Line] = field(default_factory=list)

    def proto(self):
        return profile_pb2.Location(id=self.id,
                                    mapping_id=self.mapping_id,
                                    address=self.address,
                                    line=[line.proto() for line in self.lines])


@dataclass
class Mapping:
    id: int
    filename: int
    has_inline_frames: bool = False

    def proto(self):
        return profile_pb2.Mapping(id=self.id,
                                   filename=self.filename,
                                   has_functions=True,
                                   has_filenames=True,
                                   has_inline_frames=self.has_inline_frames)


@dataclass
class Sample:
    process_id: int
    thread_id: int
    location_ids: list[int]
    values: list[int] = field(default_factory=lambda: [0] * len(SAMPLE_TYPES))

    def add(self, kind: StackKind, dpc: bool):
        offset = VALUE_OFFSETS[kind]
        self.values[offset] += 1
        self.values[offset + (1 if dpc else 2)] += 1


class ProfileBuilder:
    """
    Interns everything that goes into a pprof profile.

    Strings, functions, mappings and locations get ids in first-seen order;
    equal keys always map back to the same id. Samples are merged per
    (thread, stack kind, stack signature) and only carry counts.
    """

    def __init__(self, options: Optional[AnalyzerOptions] = None):
        self.options = options if options is not None else AnalyzerOptions()
        self._strip_source_prefix = None
        if self.options.strip_source_prefix:
            self._strip_source_prefix = re.compile(self.options.strip_source_prefix)

        self.strings = StringTableBuilder()
        self.functions: list[Function] = []
        self.locations: list[Location] = []
        self.mappings: list[Mapping] = []
        self.samples: list[Sample] = []
        self._function_ids: dict[FunctionKey, int] = {}
        self._location_ids: dict[LocationKey, int] = {}
        self._mapping_ids: dict[MappingKey, int] = {}
        self._samples_by_key: dict[SampleKey, Sample] = {}
        self._warned_unknown_image: set[int] = set()
        self.unknown_image_frames = 0

    def get_string_id(self, string: Optional[str]) -> int:
        return self.strings.insert(string)

    def normalize_source_file(self, source_file: str) -> str:
        source_file = source_file.replace('\\', '/')
        if self._strip_source_prefix is not None:
            source_file = self._strip_source_prefix.sub('', source_file, count=1)
        return source_file

    def get_function_id(self,
                        image_name: str,
                        function_name: str,
                        source_file: Optional[str] = None) -> int:
        key = (image_name, function_name)
        function_id = self._function_ids.get(key)
        if function_id is not None:
            return function_id

        if source_file:
            filename = self.normalize_source_file(source_file)
        else:
            filename = image_name
        function_id = len(self.functions) + 1
        self.functions.append(Function(
            id=function_id,
            name=self.get_string_id(function_name),
            system_name=self.get_string_id(f"{image_name}!{function_name}"),
            filename=self.get_string_id(filename),
        ))
        self._function_ids[key] = function_id
        return function_id

    def get_mapping_id(self, process_id: int, image_path: str) -> int:
        key = (process_id, image_path)
        mapping_id = self._mapping_ids.get(key)
        if mapping_id is not None:
            return mapping_id
        mapping_id = len(self.mappings) + 1
        self.mappings.append(Mapping(id=mapping_id,
                                     filename=self.get_string_id(image_path)))
        self._mapping_ids[key] = mapping_id
        return mapping_id

    def _image_name(self, process_id: int, frame: StackFrame) -> str:
        if frame.image is not None:
            return frame.image
        self.unknown_image_frames += 1
        if process_id not in self._warned_unknown_image:
            self._warned_unknown_image.add(process_id)
            logger.warning("Stack frame without image in process %d, using %s",
                           process_id, UNKNOWN)
        return UNKNOWN

    def get_location_id(self, process_id: int, frame: StackFrame) -> int:
        image_name = self._image_name(process_id, frame)
        if not frame.is_resolved:
            return self.get_pseudo_location_id(process_id, image_name, None, UNKNOWN)

        image_path = frame.image_path or image_name
        key = (process_id, image_path, frame.address, frame.function)
        location_id = self._location_ids.get(key)
        if location_id is not None:
            return location_id

        mapping_id = self.get_mapping_id(process_id, image_path)
        lines = []
        if self.options.include_inlined and frame.inlined:
            self.mappings[mapping_id - 1].has_inline_frames = True
            # Inlined callees first, the caller they were inlined into last.
            for inlined in frame.inlined[:MAX_INLINED_LINES]:
                lines.append(Line(
                    function_id=self.get_function_id(image_name, inlined.function,
                                                     inlined.source_file),
                    line=inlined.line or 0))
        lines.append(Line(
            function_id=self.get_function_id(image_name, frame.function,
                                             frame.source_file),
            line=frame.line or 0))

        location_id = len(self.locations) + 1
        self.locations.append(Location(id=location_id,
                                       mapping_id=mapping_id,
                                       address=frame.address or 0,
                                       lines=lines))
        self._location_ids[key] = location_id
        return location_id

    def get_pseudo_location_id(self,
                               process_id: int,
                               image_name: str,
                               address: Optional[int],
                               label: str) -> int:
        """Location standing for a label rather than code, e.g. a thread name."""
        key = (process_id, image_name, address, label)
        location_id = self._location_ids.get(key)
        if location_id is not None:
            return location_id

        location_id = len(self.locations) + 1
        self.locations.append(Location(
            id=location_id,
            mapping_id=self.get_mapping_id(process_id, image_name),
            address=address or 0,
            lines=[Line(function_id=self.get_function_id(image_name, label))]))
        self._location_ids[key] = location_id
        return location_id

    def thread_label(self, thread_id: int, identity: ThreadIdentity) -> str:
        label = identity.thread_name or f"thread {thread_id}"
        if self.options.include_thread_ids:
            label = f"{label} (tid {thread_id})"
        return label

    def process_label(self, identity: ThreadIdentity) -> str:
        extras = []
        if self.options.split_chrome_processes and identity.process_type is not None:
            extras.append(str(identity.process_type))
        if self.options.include_process_ids:
            extras.append(f"pid {identity.process_id}")
        if extras:
            return f"{identity.process_name} ({', '.join(extras)})"
        return identity.process_name

    def _label_location_ids(self,
                            thread_id: int,
                            identity: ThreadIdentity,
                            thread_address: Optional[int],
                            process_address: Optional[int]) -> list[int]:
        if not self.options.include_thread_ids:
            thread_address = None
        if not self.options.include_process_ids:
            process_address = None
        return [
            self.get_pseudo_location_id(identity.process_id, identity.process_name,
                                        thread_address,
                                        self.thread_label(thread_id, identity)),
            self.get_pseudo_location_id(identity.process_id, identity.process_name,
                                        process_address,
                                        self.process_label(identity)),
        ]

    def add_sample(self,
                   thread_id: int,
                   identity: ThreadIdentity,
                   kind: StackKind,
                   signature: Optional[StackSignature],
                   stack: Optional[Stack],
                   dpc: bool,
                   thread_address: Optional[int] = None,
                   process_address: Optional[int] = None) -> Optional[Sample]:
        """
        Count one idle wakeup against the sample for this thread and stack.

        Locations are only interned the first time a (thread, kind, signature)
        combination shows up. Empty stacks are not sampled.
        """
        if signature is None or not stack:
            return None
        key = (thread_id, kind, signature)
        sample = self._samples_by_key.get(key)
        if sample is None:
            location_ids = [self.get_location_id(identity.process_id, frame)
                            for frame in stack]
            location_ids.extend(self._label_location_ids(
                thread_id, identity, thread_address, process_address))
            sample = Sample(process_id=identity.process_id,
                            thread_id=thread_id,
                            location_ids=location_ids)
            self.samples.append(sample)
            self._samples_by_key[key] = sample
        sample.add(kind, dpc)
        return sample
