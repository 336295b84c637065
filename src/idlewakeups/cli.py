#!/usr/bin/env python3
import argparse
import logging
import os
import sys
import time

from idlewakeups import configured_logger
from idlewakeups.analyzer import ProfileAnalyzer
from idlewakeups.configured_logger import logger
from idlewakeups.options import (AnalyzerOptions, DEFAULT_PROCESS_FILTER,
                                 DEFAULT_STRIP_SOURCE_PREFIX, parse_process_filter)
from idlewakeups.summary import write_summary
from idlewakeups.trace_schema import load_samples


def _get_parser():
    parser = argparse.ArgumentParser(
        prog='idlewakeups',
        description='Detect idle wakeups in a decoded context-switch trace and '
        'export their callstacks as a gzipped pprof profile.',
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
        epilog="""examples:
  idlewakeups trace.json -o profile.pb.gz
  idlewakeups trace.json -p '*' --time-start 20 --time-end 30 -s""",
    )
    parser.add_argument('trace_file',
                        help='decoded trace (JSON array or JSON lines, optionally .gz)')
    parser.add_argument('-o', '--output-file', default='profile.pb.gz',
                        help='output file name for the gzipped pprof profile')
    parser.add_argument('--list-processes', action='store_true', default=False,
                        help='print the unique process names in the trace and exit')
    parser.add_argument('-p', '--process-filter', default=DEFAULT_PROCESS_FILTER,
                        help='comma-separated process names to analyze, * for all')
    parser.add_argument('--time-start', type=float, default=None,
                        help='start of time range to analyze in seconds')
    parser.add_argument('--time-end', type=float, default=None,
                        help='end of time range to analyze in seconds')
    parser.add_argument('-s', '--print-summary', action='store_true', default=False,
                        help='print a summary once the analysis is done')
    parser.add_argument('-t', '--tabbed', action='store_true', default=False,
                        help='print the summary as a tab-separated grid')
    parser.add_argument('--top-stacks', type=int, default=0,
                        help='with --print-summary, also print the N most common stacks')
    parser.add_argument('--include-inlined', action='store_true', default=False,
                        help='attach inlined function lines to locations')
    parser.add_argument('--strip-source-prefix', default=DEFAULT_STRIP_SOURCE_PREFIX,
                        help='regex removed from the start of source file names')
    parser.add_argument('--pid', action='store_true', default=False,
                        help='add process ids to the process labels')
    parser.add_argument('--tid', action='store_true', default=False,
                        help='add thread ids to the thread labels')
    parser.add_argument('--pid-and-tid', action='store_true', default=False,
                        help='same as --pid --tid')
    parser.add_argument('--split-chrome-processes', action='store_true', default=False,
                        help='label chrome.exe processes with their process type')
    parser.add_argument('-v', '--verbose', action='store_true', default=False,
                        help='set to emit debug logs')
    return parser


def _options(args) -> AnalyzerOptions:
    return AnalyzerOptions(
        trace_file_name=args.trace_file,
        time_start=args.time_start if args.time_start is not None else 0.0,
        time_end=args.time_end if args.time_end is not None else float('inf'),
        process_filter=parse_process_filter(args.process_filter),
        include_inlined=args.include_inlined,
        strip_source_prefix=args.strip_source_prefix or None,
        include_process_ids=args.pid,
        include_thread_ids=args.tid,
        include_process_and_thread_ids=args.pid_and_tid,
        split_chrome_processes=args.split_chrome_processes,
        tabbed=args.tabbed,
        verbose=args.verbose,
    )


def list_processes(trace_file: str):
    names = set()
    for sample in load_samples(trace_file):
        for process in (sample.switch_in_process, sample.switch_out_process,
                        sample.readying_process):
            if process is not None:
                names.add(process.image_name)
    print(f"{len(names)} unique process names found in {os.path.basename(trace_file)}:")
    print()
    for name in sorted(names):
        print(name)
    print()


def main(args) -> int:
    if args.verbose:
        configured_logger.set_level(logging.DEBUG)

    if not os.path.isfile(args.trace_file):
        print(f"ERROR: File {args.trace_file} does not exist.", file=sys.stderr)
        return 1

    start = time.monotonic()
    try:
        if args.list_processes:
            list_processes(args.trace_file)
            return 0

        options = _options(args)
        analyzer = ProfileAnalyzer(options)
        count = analyzer.add_samples(load_samples(args.trace_file))
    except ValueError as e:  # TraceFormatError or inconsistent options
        print(f"ERROR: {e}", file=sys.stderr)
        return 1
    logger.debug("Processed %d context switches, skipped %d", count,
                 analyzer.skipped_samples)

    if args.print_summary:
        write_summary(analyzer, tabbed=options.tabbed, top_stacks=args.top_stacks)

    try:
        size = analyzer.write_pprof(args.output_file)
    except OSError as e:
        print(f"ERROR: cannot write {args.output_file}: {e}", file=sys.stderr)
        return 1
    print(f"Wrote {size:,} bytes to {args.output_file}")

    logger.debug("Execution time: %d ms", (time.monotonic() - start) * 1000)
    return 0


def run():
    sys.exit(main(_get_parser().parse_args()))


if __name__ == '__main__':
    run()
