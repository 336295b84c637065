import math
import re

from dataclasses import dataclass, field
from typing import Optional

ALL_PROCESSES = '*'
DEFAULT_PROCESS_FILTER = 'chrome.exe'

# Strips build-machine roots such as "c:/b/s/w/ir/cache/builder/src/".
DEFAULT_STRIP_SOURCE_PREFIX = r'^([a-zA-Z]:)?/.*?/src/'


def parse_process_filter(value: Optional[str]) -> Optional[frozenset[str]]:
    """
    Turn a comma-separated list of image names into a filter set.

    None stands for "analyze all processes" and is returned for '*' and for an
    empty filter.
    """
    if value is None:
        return None
    names = frozenset(name.strip() for name in value.split(',') if name.strip())
    if not names or ALL_PROCESSES in names:
        return None
    return names


@dataclass
class AnalyzerOptions:
    trace_file_name: str = ''
    time_start: float = 0.0
    time_end: float = math.inf
    process_filter: Optional[frozenset[str]] = field(
        default_factory=lambda: parse_process_filter(DEFAULT_PROCESS_FILTER))
    include_inlined: bool = False
    strip_source_prefix: Optional[str] = DEFAULT_STRIP_SOURCE_PREFIX
    include_process_ids: bool = False
    include_thread_ids: bool = False
    include_process_and_thread_ids: bool = False
    split_chrome_processes: bool = False
    tabbed: bool = False
    verbose: bool = False

    def __post_init__(self):
        if self.time_start > self.time_end:
            raise ValueError(
                f"time_start ({self.time_start}) is after time_end ({self.time_end})")
        if self.include_process_and_thread_ids:
            self.include_process_ids = True
            self.include_thread_ids = True
        # Fail on a bad pattern now rather than halfway through a trace.
        if self.strip_source_prefix:
            try:
                re.compile(self.strip_source_prefix)
            except re.error as e:
                raise ValueError(
                    f"invalid source prefix pattern {self.strip_source_prefix!r}: {e}") from e

    def analyze_all_processes(self) -> bool:
        return self.process_filter is None

    def process_filter_string(self) -> str:
        if self.process_filter is None:
            return ALL_PROCESSES
        return ' '.join(sorted(self.process_filter))

    def accepts_process(self, image_name: str) -> bool:
        return self.process_filter is None or image_name in self.process_filter

    def in_time_window(self, timestamp: float) -> bool:
        return self.time_start <= timestamp <= self.time_end
