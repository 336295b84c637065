import gzip
import os
import tempfile

from typing import BinaryIO, Sequence, Union

from idlewakeups.configured_logger import new_logger
from idlewakeups.profile_schema import ProfileBuilder, SAMPLE_TYPES
from idlewakeups.protos import profile_pb2

logger = new_logger('profile_generator', stderr=True)

PERIOD_TYPE = ('wakeups', 'count')
DEFAULT_SAMPLE_TYPE = 'woken'

OutputSink = Union[str, os.PathLike, BinaryIO]


def generate_profile(builder: ProfileBuilder,
                     comments: Sequence[str] = (),
                     duration_seconds: float = 0.0):
    """Assemble the pprof Profile message from everything the builder interned."""
    strings = builder.strings
    profile = profile_pb2.Profile()

    # Everything referencing the string table is interned before it is copied.
    for type_name, unit in SAMPLE_TYPES:
        profile.sample_type.add(type=strings.insert(type_name),
                                unit=strings.insert(unit))
    profile.period_type.type = strings.insert(PERIOD_TYPE[0])
    profile.period_type.unit = strings.insert(PERIOD_TYPE[1])
    profile.period = 1
    profile.default_sample_type = strings.insert(DEFAULT_SAMPLE_TYPE)
    profile.comment.extend(strings.insert(comment) for comment in comments)
    if duration_seconds > 0:
        profile.duration_nanos = int(round(duration_seconds * 1e9))

    pid_key = strings.insert('pid')
    tid_key = strings.insert('tid')
    for sample in builder.samples:
        message = profile.sample.add()
        message.location_id.extend(sample.location_ids)
        message.value.extend(sample.values)
        message.label.add(key=pid_key, num=sample.process_id)
        message.label.add(key=tid_key, num=sample.thread_id)

    profile.mapping.extend(m.proto() for m in builder.mappings)
    profile.location.extend(l.proto() for l in builder.locations)
    profile.function.extend(f.proto() for f in builder.functions)
    profile.string_table.extend(strings.strings)
    return profile


def _write_file(path, payload: bytes) -> int:
    directory = os.path.dirname(os.path.abspath(path))
    fd, tmp_path = tempfile.mkstemp(prefix='.profile-', dir=directory)
    try:
        with os.fdopen(fd, 'wb') as f:
            f.write(payload)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, path)
    except BaseException:
        if os.path.exists(tmp_path):
            os.unlink(tmp_path)
        raise
    return os.path.getsize(path)


def write_profile(profile, output: OutputSink) -> int:
    """
    Write a gzip-compressed profile and return the number of bytes written.

    output is either a path, replaced atomically once the whole payload is on
    disk, or a binary stream.
    """
    serialized = profile.SerializeToString()
    payload = gzip.compress(serialized, mtime=0)
    logger.debug("Compressed profile from %d to %d bytes", len(serialized), len(payload))
    if hasattr(output, 'write'):
        output.write(payload)
        output.flush()
        return len(payload)
    return _write_file(output, payload)


def read_profile(path: Union[str, os.PathLike]):
    with gzip.open(path, 'rb') as f:
        data = f.read()
    profile = profile_pb2.Profile()
    profile.ParseFromString(data)
    return profile
