from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from idlewakeups.chrome import ChromeProcessType
from idlewakeups.stack_signature import StackSignature, stack_signature
from idlewakeups.trace_schema import Stack


class StackKind(Enum):
    # Stack of the thread switching in: where it resumes, i.e. where it waited.
    NEW_THREAD = 'new'
    # Stack of the thread (or DPC) that readied the new thread.
    READY_THREAD = 'ready'


@dataclass
class StackAggregate:
    stack: Stack
    stack_count: int = 0
    stack_dpc_count: int = 0

    def add(self, dpc: bool):
        self.stack_count += 1
        if dpc:
            self.stack_dpc_count += 1


StackAggregates = dict[StackSignature, StackAggregate]


def _add_stack(stacks: StackAggregates, signature: StackSignature, stack: Stack, dpc: bool):
    aggregate = stacks.get(signature)
    if aggregate is None:
        aggregate = StackAggregate(stack=stack)
        stacks[signature] = aggregate
    aggregate.add(dpc)


@dataclass(frozen=True)
class ThreadIdentity:
    process_id: int
    process_name: str
    thread_name: Optional[str] = None
    process_type: Optional[ChromeProcessType] = None


@dataclass
class IdleWakeupRecord:
    identity: ThreadIdentity
    context_switch_count: int = 0
    context_switch_dpc_count: int = 0
    new_thread_stacks: StackAggregates = field(default_factory=dict)
    ready_thread_stacks: StackAggregates = field(default_factory=dict)

    def stacks(self, kind: StackKind) -> StackAggregates:
        if kind is StackKind.NEW_THREAD:
            return self.new_thread_stacks
        return self.ready_thread_stacks


def rate(numerator: float, denominator: float) -> Optional[float]:
    """numerator / denominator, or None when there is nothing to divide by."""
    if not denominator:
        return None
    return numerator / denominator


class IdleWakeupStore:
    """
    Counters accumulated over every context switch of one run.

    Per thread id, an IdleWakeupRecord holds the idle-wakeup counts and the
    distinct new/ready stacks seen for that thread. The global stack maps hold
    the same stacks across all threads, so a stack reached from many threads
    is one entry with the combined count.
    """

    def __init__(self):
        self.filtered_context_switches = 0
        self.idle_wakeups = 0
        self.idle_wakeups_dpc = 0
        self.wall_time_start: Optional[float] = None
        self.wall_time_end: Optional[float] = None
        self.records: dict[int, IdleWakeupRecord] = {}
        self.readying_processes: dict[str, int] = {}
        self.previous_c_states: dict[int, int] = {}
        self.new_thread_stacks: StackAggregates = {}
        self.ready_thread_stacks: StackAggregates = {}

    def count_context_switch(self, readying_process_name: str):
        self.filtered_context_switches += 1
        self.readying_processes[readying_process_name] = \
            self.readying_processes.get(readying_process_name, 0) + 1

    def count_c_state(self, c_state: int):
        self.previous_c_states[c_state] = self.previous_c_states.get(c_state, 0) + 1

    def update_wall_time(self, timestamp: float):
        if self.wall_time_start is None or timestamp < self.wall_time_start:
            self.wall_time_start = timestamp
        if self.wall_time_end is None or timestamp > self.wall_time_end:
            self.wall_time_end = timestamp

    def duration(self) -> float:
        if self.wall_time_start is None or self.wall_time_end is None:
            return 0.0
        return self.wall_time_end - self.wall_time_start

    def record(self,
               thread_id: int,
               identity: ThreadIdentity,
               dpc: bool,
               new_stack: Optional[Stack],
               ready_stack: Optional[Stack]) -> IdleWakeupRecord:
        """Account one idle wakeup of thread_id.

        identity is only used the first time thread_id is seen.
        """
        wakeup = self.records.get(thread_id)
        if wakeup is None:
            wakeup = IdleWakeupRecord(identity=identity)
            self.records[thread_id] = wakeup

        self.idle_wakeups += 1
        wakeup.context_switch_count += 1
        if dpc:
            self.idle_wakeups_dpc += 1
            wakeup.context_switch_dpc_count += 1

        for kind, stack, global_stacks in (
                (StackKind.NEW_THREAD, new_stack, self.new_thread_stacks),
                (StackKind.READY_THREAD, ready_stack, self.ready_thread_stacks)):
            signature = stack_signature(stack)
            if signature is None:
                continue
            _add_stack(wakeup.stacks(kind), signature, stack, dpc)
            _add_stack(global_stacks, signature, stack, dpc)
        return wakeup

    def stacks(self, kind: StackKind) -> StackAggregates:
        if kind is StackKind.NEW_THREAD:
            return self.new_thread_stacks
        return self.ready_thread_stacks

    def sorted_records(self) -> list[tuple[int, IdleWakeupRecord]]:
        return sorted(self.records.items(),
                      key=lambda item: (-item[1].context_switch_count, item[0]))

    def sorted_readying_processes(self) -> list[tuple[str, int]]:
        return sorted(self.readying_processes.items(),
                      key=lambda item: (-item[1], item[0]))

    def sorted_c_states(self) -> list[tuple[int, int]]:
        return sorted(self.previous_c_states.items())

    def top_stacks(self, kind: StackKind, n: Optional[int] = None) -> list[tuple[StackSignature, StackAggregate]]:
        ordered = sorted(self.stacks(kind).items(),
                         key=lambda item: (-item[1].stack_count, item[0]))
        if n is None:
            return ordered
        return ordered[:n]

    def idle_wakeup_percentage(self) -> Optional[float]:
        r = rate(self.idle_wakeups, self.filtered_context_switches)
        return None if r is None else 100 * r
