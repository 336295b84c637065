import json

import pytest

from idlewakeups.trace_schema import (ContextSwitchSample, InlinedFrame, ProcessInfo,
                                      StackFrame, ThreadInfo)

CHROME_BROWSER_COMMAND_LINE = '"C:\\Program Files\\Google\\Chrome\\Application\\chrome.exe"'
CHROME_RENDERER_COMMAND_LINE = CHROME_BROWSER_COMMAND_LINE + ' --type=renderer --renderer-client-id=7'


def frame(image, function=None, address=None, **kwargs):
    return StackFrame(image=image, function=function, address=address, **kwargs)


def chrome_stack(*functions, image='chrome.dll'):
    """Resolved stack, innermost function first, with made-up addresses."""
    return tuple(frame(image, name, 0x1000 + 0x10 * i,
                       source_file=f'C:\\b\\s\\w\\ir\\cache\\builder\\src\\base\\{name}.cc',
                       line=10 + i)
                 for i, name in enumerate(functions))


def make_sample(timestamp=1.0,
                thread_id=100,
                thread_name='CrBrowserMain',
                process_id=10,
                image_name='chrome.exe',
                command_line=CHROME_BROWSER_COMMAND_LINE,
                switch_out='Idle',
                readying_process='System',
                dpc=False,
                c_state=None,
                new_stack=None,
                ready_stack=None,
                thread_object_address=None,
                process_object_address=None):
    return ContextSwitchSample(
        timestamp=timestamp,
        switch_in_thread=ThreadInfo(thread_id=thread_id, name=thread_name,
                                    object_address=thread_object_address),
        switch_in_process=ProcessInfo(image_name=image_name, process_id=process_id,
                                      command_line=command_line,
                                      object_address=process_object_address),
        switch_out_process=ProcessInfo(image_name=switch_out) if switch_out else None,
        previous_c_state=c_state,
        readying_process=ProcessInfo(image_name=readying_process) if readying_process else None,
        readying_thread_in_dpc=dpc,
        new_thread_stack=new_stack,
        ready_thread_stack=ready_stack,
    )


def sample_record(timestamp=1.0,
                  thread_id=100,
                  image_name='chrome.exe',
                  switch_out='Idle',
                  dpc=False,
                  c_state=1,
                  new_stack=('WaitForSingleObject', 'RunLoop'),
                  ready_stack=('SetEvent', 'PostTask')):
    """One context switch in the JSON form the trace loader reads."""
    def stack_json(functions, image):
        return [{'image': image, 'image_path': f'C:\\Windows\\System32\\{image}',
                 'function': name, 'address': hex(0x2000 + 0x10 * i),
                 'source_file': f'C:\\b\\s\\w\\ir\\cache\\builder\\src\\base\\{name}.cc',
                 'line': 20 + i}
                for i, name in enumerate(functions)]

    return {
        'timestamp': timestamp,
        'switch_in': {
            'thread_id': thread_id,
            'thread_name': 'CrBrowserMain',
            'process_id': 10,
            'image_name': image_name,
            'command_line': CHROME_BROWSER_COMMAND_LINE,
        },
        'switch_out': {'image_name': switch_out},
        'previous_c_state': c_state,
        'readying_process': {'image_name': 'audiodg.exe'},
        'readying_thread_in_dpc': dpc,
        'new_thread_stack': stack_json(new_stack, 'ntdll.dll') if new_stack else None,
        'ready_thread_stack': stack_json(ready_stack, 'kernelbase.dll') if ready_stack else None,
        'waiting_duration_us': 1500.0,
        'ready_duration_us': 12.5,
    }


@pytest.fixture
def inlined_frame():
    return frame('chrome.dll', 'base::RunLoop::Run', 0x4000,
                 source_file='C:\\b\\s\\w\\ir\\cache\\builder\\src\\base\\run_loop.cc',
                 line=140,
                 inlined=(InlinedFrame('base::Inner', 'base\\inner.h', 12),
                          InlinedFrame('base::Outer', 'base\\outer.h', 30)))


@pytest.fixture
def trace_file(tmp_path):
    """Write records as JSON lines and return the file path."""

    def _trace_file(records, name='trace.json'):
        path = tmp_path / name
        with open(path, 'w') as f:
            for record in records:
                f.write(json.dumps(record) + '\n')
        return str(path)

    return _trace_file
