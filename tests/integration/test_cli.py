import os

from idlewakeups.profile_generator import read_profile
from idlewakeups.test_utils.cli import CliHelpers
from idlewakeups.test_utils.fixtures import sample_record


def records():
    return [
        sample_record(timestamp=1.0),
        sample_record(timestamp=1.5, dpc=True),
        sample_record(timestamp=2.0, thread_id=200, new_stack=('SleepEx',), ready_stack=None),
        sample_record(timestamp=2.5, switch_out='dwm.exe'),
        sample_record(timestamp=3.0, image_name='explorer.exe', thread_id=300),
    ]


def test_export_profile(trace_file, tmp_path):
    path = trace_file(records())
    output = str(tmp_path / 'profile.pb.gz')
    out = CliHelpers(str(tmp_path)).export(path, output)
    size = os.path.getsize(output)
    assert "Wrote {:,} bytes to {}".format(size, output) in out

    profile = read_profile(output)
    strings = list(profile.string_table)
    comments = [strings[c] for c in profile.comment]
    assert 'Idle wakeups: 3' in comments
    assert 'Context switches (On-CPU): 4' in comments
    assert 'Trace: trace.json' in comments
    assert sum(s.value[0] for s in profile.sample) == 3


def test_summary_and_filters(trace_file, tmp_path):
    path = trace_file(records())
    output = str(tmp_path / 'profile.pb.gz')
    out = CliHelpers(str(tmp_path)).export(
        path, output, '-p', "'*'", '--time-start', '1.5', '--time-end', '3', '-s',
        '--pid-and-tid', '--split-chrome-processes')
    assert 'Idle wakeups              : 3' in out
    assert 'explorer.exe' in out

    profile = read_profile(output)
    strings = set(profile.string_table)
    assert 'CrBrowserMain (tid 100)' in strings
    assert 'chrome.exe (browser, pid 10)' in strings


def test_list_processes(trace_file, tmp_path):
    path = trace_file(records())
    names = CliHelpers(str(tmp_path)).list_processes(path)
    assert names == ['Idle', 'audiodg.exe', 'chrome.exe', 'dwm.exe', 'explorer.exe']


def test_missing_trace_file(tmp_path):
    process = CliHelpers(str(tmp_path)).run(str(tmp_path / 'missing.json'))
    assert process.return_code == 1
    assert 'does not exist' in process.err
    assert not os.path.exists(str(tmp_path / 'profile.pb.gz'))


def test_malformed_trace(tmp_path):
    path = tmp_path / 'trace.json'
    path.write_text('{"timestamp": 1}\n{broken\n')
    process = CliHelpers(str(tmp_path)).run(str(path))
    assert process.return_code == 1
    assert 'ERROR' in process.err
    assert not os.path.exists(str(tmp_path / 'profile.pb.gz'))


def test_corrupt_gzip_trace(tmp_path):
    path = tmp_path / 'trace.json.gz'
    path.write_bytes(b'not gzip at all')
    process = CliHelpers(str(tmp_path)).run(str(path))
    assert process.return_code == 1
    assert 'ERROR: ' in process.err
    assert 'Traceback' not in process.err
    assert not os.path.exists(str(tmp_path / 'profile.pb.gz'))


def test_out_of_range_address(trace_file, tmp_path):
    record = sample_record()
    record['new_thread_stack'][0]['address'] = -16
    path = trace_file([record])
    process = CliHelpers(str(tmp_path)).run('{} -s'.format(path))
    assert process.return_code == 1
    assert 'ERROR: ' in process.err
    assert 'Traceback' not in process.err
    # Rejected while loading, before any summary is printed.
    assert 'Idle wakeups' not in process.out
    assert not os.path.exists(str(tmp_path / 'profile.pb.gz'))
