import os

from dataclasses import dataclass
from typing import Iterable, Optional

from idlewakeups import profile_generator
from idlewakeups.chrome import CHROME_IMAGE_NAME, chrome_process_type
from idlewakeups.configured_logger import new_logger
from idlewakeups.options import AnalyzerOptions
from idlewakeups.profile_schema import ProfileBuilder
from idlewakeups.stack_signature import stack_signature
from idlewakeups.trace_schema import ContextSwitchSample, Stack
from idlewakeups.wakeup_schema import IdleWakeupStore, StackKind, ThreadIdentity

logger = new_logger('analyzer', stderr=True)

IDLE_PROCESS_NAME = 'Idle'
DPC_PROCESS_NAME = 'DPC'
UNKNOWN_PROCESS_NAME = 'Unknown'


@dataclass(frozen=True)
class IdleWakeupFact:
    timestamp: float
    thread_id: int
    identity: ThreadIdentity
    readying_process_name: str
    dpc: bool
    previous_c_state: Optional[int]
    new_thread_stack: Optional[Stack]
    ready_thread_stack: Optional[Stack]


class ProfileAnalyzer:
    """
    Single pass over context switches, looking for idle wakeups.

    A context switch moves the new thread from Ready to Running and the old
    thread from Running to some other state on one CPU. An idle wakeup is a
    context switch where the old thread is the idle thread, i.e. the CPU was
    woken up to run the new thread.
    """

    def __init__(self, options: Optional[AnalyzerOptions] = None):
        self.options = options if options is not None else AnalyzerOptions()
        self.store = IdleWakeupStore()
        self.builder = ProfileBuilder(self.options)
        self.skipped_samples = 0

    def add_samples(self, samples: Iterable[ContextSwitchSample]) -> int:
        count = 0
        for sample in samples:
            self.add_sample(sample)
            count += 1
        return count

    def add_sample(self, sample: ContextSwitchSample) -> Optional[IdleWakeupFact]:
        """Account one context switch; returns the fact when it is an idle wakeup."""
        if (sample.switch_in_process is None or sample.switch_in_thread is None
                or sample.switch_out_process is None):
            self.skipped_samples += 1
            logger.debug("Skipping context switch at %.6f without switch-in/out process",
                         sample.timestamp)
            return None

        if not self.options.in_time_window(sample.timestamp):
            return None

        switch_in_process = sample.switch_in_process
        if not self.options.accepts_process(switch_in_process.image_name):
            return None

        # The process that made the new thread eligible to run, if known. A
        # readying thread executing a DPC was hijacked by an interrupt, so the
        # wakeup is charged to the DPC rather than to that thread's process.
        dpc = sample.readying_thread_in_dpc
        if dpc:
            readying_process_name = DPC_PROCESS_NAME
        elif sample.readying_process is not None:
            readying_process_name = sample.readying_process.image_name
        else:
            readying_process_name = UNKNOWN_PROCESS_NAME
        self.store.count_context_switch(readying_process_name)

        if sample.switch_out_process.image_name != IDLE_PROCESS_NAME:
            return None

        thread = sample.switch_in_thread
        process_type = None
        if switch_in_process.image_name == CHROME_IMAGE_NAME:
            process_type = chrome_process_type(switch_in_process.command_line)
        fact = IdleWakeupFact(
            timestamp=sample.timestamp,
            thread_id=thread.thread_id,
            identity=ThreadIdentity(process_id=switch_in_process.process_id,
                                    process_name=switch_in_process.image_name,
                                    thread_name=thread.name,
                                    process_type=process_type),
            readying_process_name=readying_process_name,
            dpc=dpc,
            previous_c_state=sample.previous_c_state,
            new_thread_stack=sample.new_thread_stack,
            ready_thread_stack=sample.ready_thread_stack,
        )

        self.store.update_wall_time(fact.timestamp)
        if fact.previous_c_state is not None:
            self.store.count_c_state(fact.previous_c_state)
        record = self.store.record(fact.thread_id, fact.identity, fact.dpc,
                                   fact.new_thread_stack, fact.ready_thread_stack)

        # The first identity recorded for a thread id wins, in the profile too.
        for kind, stack in ((StackKind.NEW_THREAD, fact.new_thread_stack),
                            (StackKind.READY_THREAD, fact.ready_thread_stack)):
            self.builder.add_sample(fact.thread_id, record.identity, kind,
                                    stack_signature(stack), stack, fact.dpc,
                                    thread_address=thread.object_address,
                                    process_address=switch_in_process.object_address)
        return fact

    def comments(self) -> list[str]:
        store = self.store
        comments = []
        if self.options.trace_file_name:
            comments.append(f"Trace: {os.path.basename(self.options.trace_file_name)}")
        duration = store.duration()
        if duration > 0:
            comments.append(f"Duration (msec): {duration * 1000:.2f}")
        comments.append(f"Process filter: {self.options.process_filter_string()}")
        comments.append(f"Context switches (On-CPU): {store.filtered_context_switches}")
        comments.append(f"Idle wakeups: {store.idle_wakeups}")
        comments.append(f"Idle wakeups (DPC): {store.idle_wakeups_dpc}")
        return comments

    def generate_profile(self):
        return profile_generator.generate_profile(self.builder,
                                                  comments=self.comments(),
                                                  duration_seconds=self.store.duration())

    def write_pprof(self, output: profile_generator.OutputSink) -> int:
        size = profile_generator.write_profile(self.generate_profile(), output)
        logger.debug("Profile has %d samples, %d locations, %d functions, %d strings",
                     len(self.builder.samples), len(self.builder.locations),
                     len(self.builder.functions), len(self.builder.strings))
        return size
