import gzip
import io
import os

import pytest

from idlewakeups.analyzer import ProfileAnalyzer
from idlewakeups.options import AnalyzerOptions, parse_process_filter
from idlewakeups.profile_generator import generate_profile, read_profile, write_profile
from idlewakeups.profile_schema import SAMPLE_TYPES
from idlewakeups.protos.profile_pb2 import Profile
from idlewakeups.test_utils.fixtures import chrome_stack, make_sample


def wakeup_samples():
    wait = chrome_stack('WaitForSingleObject', 'RunLoop', 'main')
    timer = chrome_stack('SleepEx', 'TimerThread', 'main')
    set_event = chrome_stack('SetEvent', 'PostTask', image='kernelbase.dll')
    return [
        make_sample(timestamp=1.0, thread_id=100, new_stack=wait, ready_stack=set_event),
        make_sample(timestamp=1.1, thread_id=100, new_stack=wait, dpc=True),
        make_sample(timestamp=1.2, thread_id=200, thread_name='Timer', new_stack=timer,
                    ready_stack=set_event, dpc=True),
        make_sample(timestamp=1.3, thread_id=300, thread_name='Empty'),
        make_sample(timestamp=1.4, thread_id=100, new_stack=wait, switch_out='dwm.exe'),
    ]


def analyze(samples, **kwargs):
    analyzer = ProfileAnalyzer(AnalyzerOptions(process_filter=parse_process_filter('*'),
                                               trace_file_name='trace.etl', **kwargs))
    analyzer.add_samples(samples)
    return analyzer


def semantic_view(profile):
    """Profile content with numeric ids replaced by what they point to."""
    strings = list(profile.string_table)
    functions = {f.id: (strings[f.system_name], strings[f.filename]) for f in profile.function}
    locations = {l.id: tuple(functions[line.function_id] for line in l.line)
                 for l in profile.location}
    samples = sorted(
        (tuple(locations[i] for i in s.location_id), tuple(s.value)) for s in profile.sample)
    return set(functions.values()), samples


def test_profile_structure():
    profile = analyze(wakeup_samples()).generate_profile()
    strings = list(profile.string_table)
    assert strings[0] == ''
    assert len(strings) == len(set(strings))
    assert [(strings[t.type], strings[t.unit]) for t in profile.sample_type] == SAMPLE_TYPES
    assert strings[profile.default_sample_type] == 'woken'
    assert profile.period == 1
    assert profile.duration_nanos == 300000000
    assert [strings[c] for c in profile.comment] == [
        'Trace: trace.etl',
        'Duration (msec): 300.00',
        'Process filter: *',
        'Context switches (On-CPU): 5',
        'Idle wakeups: 4',
        'Idle wakeups (DPC): 2',
    ]
    assert [l.id for l in profile.location] == list(range(1, len(profile.location) + 1))
    assert [f.id for f in profile.function] == list(range(1, len(profile.function) + 1))
    assert [m.id for m in profile.mapping] == list(range(1, len(profile.mapping) + 1))
    location_ids = {l.id for l in profile.location}
    function_ids = {f.id for f in profile.function}
    mapping_ids = {m.id for m in profile.mapping}
    for location in profile.location:
        assert location.mapping_id in mapping_ids
        assert all(line.function_id in function_ids for line in location.line)
    for sample in profile.sample:
        assert all(i in location_ids for i in sample.location_id)
        assert len(sample.value) == len(SAMPLE_TYPES)


def test_samples_values_and_labels():
    profile = analyze(wakeup_samples()).generate_profile()
    strings = list(profile.string_table)
    by_thread = {}
    for sample in profile.sample:
        labels = {strings[label.key]: label.num for label in sample.label}
        assert labels['pid'] == 10
        by_thread.setdefault(labels['tid'], []).append(list(sample.value))
    assert sorted(by_thread[100]) == [[0, 0, 0, 1, 0, 1], [2, 1, 1, 0, 0, 0]]
    assert sorted(by_thread[200]) == [[0, 0, 0, 1, 1, 0], [1, 1, 0, 0, 0, 0]]
    # Thread 300 had no stacks.
    assert 300 not in by_thread


def test_wakeups_without_stacks_have_no_samples():
    analyzer = analyze([make_sample(thread_id=300, thread_name='Empty')])
    assert analyzer.store.idle_wakeups == 1
    profile = generate_profile(analyzer.builder)
    assert len(profile.sample) == 0
    assert len(profile.location) == 0


def test_round_trip(tmp_path):
    analyzer = analyze(wakeup_samples())
    path = str(tmp_path / 'profile.pb.gz')
    size = analyzer.write_pprof(path)
    assert size == os.path.getsize(path)
    with open(path, 'rb') as f:
        assert f.read(2) == b'\x1f\x8b'

    loaded = read_profile(path)
    assert semantic_view(loaded) == semantic_view(analyzer.generate_profile())
    functions, _ = semantic_view(loaded)
    assert ('chrome.dll!WaitForSingleObject', 'base/WaitForSingleObject.cc') in functions
    assert ('chrome.exe!CrBrowserMain', 'chrome.exe') in functions


def test_reordered_input_gives_equivalent_profile():
    samples = wakeup_samples()
    forward = analyze(samples).generate_profile()
    backward = analyze(list(reversed(samples))).generate_profile()
    assert semantic_view(forward) == semantic_view(backward)


def test_output_is_deterministic():
    first = analyze(wakeup_samples())
    second = analyze(wakeup_samples())
    a, b = io.BytesIO(), io.BytesIO()
    assert first.write_pprof(a) == len(a.getvalue())
    second.write_pprof(b)
    assert a.getvalue() == b.getvalue()


def test_write_to_stream():
    profile = analyze(wakeup_samples()).generate_profile()
    out = io.BytesIO()
    size = write_profile(profile, out)
    assert size == len(out.getvalue())
    parsed = Profile()
    parsed.ParseFromString(gzip.decompress(out.getvalue()))
    assert parsed == profile


def test_failed_write_leaves_no_file(tmp_path):
    profile = analyze(wakeup_samples()).generate_profile()
    path = tmp_path / 'missing' / 'profile.pb.gz'
    with pytest.raises(OSError):
        write_profile(profile, str(path))
    assert not path.exists()


def test_failed_replace_cleans_up(tmp_path):
    profile = analyze(wakeup_samples()).generate_profile()
    # Replacing a directory with a file fails after the payload was written.
    target = tmp_path / 'profile.pb.gz'
    target.mkdir()
    with pytest.raises(OSError):
        write_profile(profile, str(target))
    assert sorted(p.name for p in tmp_path.iterdir()) == ['profile.pb.gz']
    assert target.is_dir()
