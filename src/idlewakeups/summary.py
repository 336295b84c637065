"""Plain-text report of the idle wakeups collected by a ProfileAnalyzer."""

import sys

from typing import Optional, TextIO

from idlewakeups.analyzer import ProfileAnalyzer
from idlewakeups.wakeup_schema import StackKind, rate


def _fmt(value: Optional[float], spec: str = '.2f') -> str:
    return '' if value is None else format(value, spec)


def _per_second(count: int, duration: float) -> str:
    r = rate(count, duration)
    return '' if r is None else str(int(r + 0.5))


class SummaryWriter:

    def __init__(self, analyzer: ProfileAnalyzer, out: TextIO = None, tabbed: bool = False):
        self.analyzer = analyzer
        self.store = analyzer.store
        self.out = out if out is not None else sys.stdout
        self.tabbed = tabbed

    def _print(self, line: str = ''):
        print(line, file=self.out)

    def _header(self, title: str):
        self._print(title)
        self._print()

    def _rule(self, length: int):
        if not self.tabbed:
            self._print('-' * length)

    def _row(self, cells: list[tuple[object, str]], sep: str) -> str:
        return sep.join(format('' if value is None else value, spec)
                        for value, spec in cells)

    def write_overview(self):
        self._header("High level summary:")
        sep = '\t' if self.tabbed else ' : '
        store = self.store
        rows = []
        if store.duration() > 0:
            rows.append(("Duration (msec)", f"{store.duration() * 1000:.2f}"))
        rows.append(("Process filter", self.analyzer.options.process_filter_string()))
        rows.append(("Context switches (On-CPU)", store.filtered_context_switches))
        rows.append(("Idle wakeups", store.idle_wakeups))
        rows.append(("Idle wakeups (%)", _fmt(store.idle_wakeup_percentage())))
        for name, value in rows:
            self._print(f"{name:<25}{sep}{value}")
        self._print()

    def write_readying_processes(self):
        self._header("Readying processes:")
        sep = '\t' if self.tabbed else ' : '
        total = 0
        for name, count in self.store.sorted_readying_processes():
            self._print(f"{name[:25]:<25}{sep}{count:>6}")
            total += count
        self._print(f"{'':<25}{sep}{total:>6}")
        self._print()

    def write_c_states(self):
        process_filter = self.analyzer.options.process_filter_string()
        self._header(f"Previous C-State (Idle -> {process_filter}) distribution with C-states as keys:")
        sep = '\t' if self.tabbed else ' '
        header = sep.join([f"{'C-State':>7}", f"{'Count':>7}", f"{'Count (%)':>9}"])
        self._print(header)
        self._rule(len(header) + 1)
        total = 0
        for c_state, count in self.store.sorted_c_states():
            percentage = rate(100 * count, self.store.filtered_context_switches)
            self._print(sep.join([f"{c_state:>7}", f"{count:>7}", f"{_fmt(percentage):>9}"]))
            total += count
        self._rule(len(header) + 1)
        self._print(sep.join([f"{'':>7}", f"{total:>7}", f"{'':>9}"]))
        self._print()

    def write_threads(self):
        process_filter = self.analyzer.options.process_filter_string()
        self._header(f"Idle-wakeup (Idle -> {process_filter}) distribution with thread IDs (TIDs) as keys:")
        self._print("Context switches where the readying thread is executing a deferred "
                    "procedure call (DPC) are included in Count.")
        self._print()

        sep = '\t' if self.tabbed else ' '
        specs = ['>6', '>6', '<12', '<12', '<20', '<55', '>6', '>9', '>6', '>7', '>7', '>10', '>12']
        header = self._row(list(zip(
            ["TID", "PID", "Process", "Chrome Type", "Chrome Subtype", "Thread Name",
             "Count", "Count/sec", "DPC", "DPC (%)", "DPC/sec", "New Stacks", "Ready Stacks"],
            specs)), sep)
        self._print(header)
        self._rule(len(header) + 1)

        duration = self.store.duration()
        totals = [0, 0, 0, 0]
        for thread_id, wakeup in self.store.sorted_records():
            identity = wakeup.identity
            process_type = identity.process_type
            dpc_percentage = rate(100 * wakeup.context_switch_dpc_count,
                                  wakeup.context_switch_count)
            dpc_count = wakeup.context_switch_dpc_count
            self._print(self._row(list(zip([
                thread_id,
                identity.process_id,
                identity.process_name,
                process_type.type if process_type is not None else '',
                (process_type.sub_type or '') if process_type is not None else '',
                identity.thread_name or '',
                wakeup.context_switch_count,
                _per_second(wakeup.context_switch_count, duration),
                dpc_count if dpc_count else '',
                _fmt(dpc_percentage) if dpc_count else '',
                _per_second(dpc_count, duration) if dpc_count else '',
                len(wakeup.new_thread_stacks),
                len(wakeup.ready_thread_stacks),
            ], specs)), sep))
            totals[0] += wakeup.context_switch_count
            totals[1] += dpc_count
            totals[2] += len(wakeup.new_thread_stacks)
            totals[3] += len(wakeup.ready_thread_stacks)
        self._rule(len(header) + 1)
        self._print(self._row(list(zip(
            ['', '', '', '', '', '', totals[0], '', totals[1], '', '', totals[2], totals[3]],
            specs)), sep))
        self._print()

    def write_top_stacks(self, n: int):
        for kind, title in ((StackKind.NEW_THREAD, "New Thread Stacks"),
                            (StackKind.READY_THREAD, "Ready Thread Stacks")):
            stacks = self.store.top_stacks(kind, n)
            self._header(f"{title} (top {len(stacks)} of {len(self.store.stacks(kind))}):")
            for _, aggregate in stacks:
                self._print("iwakeup:")
                for frame in aggregate.stack:
                    self._print(f"        {frame.analyzer_string()}")
                self._print(f"        count={aggregate.stack_count} dpc={aggregate.stack_dpc_count}")
            self._print()

    def write(self, top_stacks: int = 0):
        self.write_overview()
        self.write_readying_processes()
        self.write_c_states()
        self.write_threads()
        if top_stacks > 0:
            self.write_top_stacks(top_stacks)


def write_summary(analyzer: ProfileAnalyzer,
                  out: TextIO = None,
                  tabbed: bool = False,
                  top_stacks: int = 0):
    SummaryWriter(analyzer, out, tabbed).write(top_stacks)
