from idlewakeups.test_utils.fixtures import inlined_frame, trace_file  # noqa: F401
