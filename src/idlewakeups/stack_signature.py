import json

from typing import Optional, Sequence

from idlewakeups.trace_schema import StackFrame

StackSignature = str


def stack_signature(frames: Optional[Sequence[StackFrame]]) -> Optional[StackSignature]:
    """
    Key identifying an ordered list of frames by (image, function, address).

    The key is the full JSON text of the frame triples rather than a hash, so
    two stacks share a signature exactly when every frame matches. Empty or
    missing stacks have no signature.
    """
    if not frames:
        return None
    return json.dumps([[f.image, f.function, f.address] for f in frames],
                      separators=(',', ':'))


def parse_signature(signature: StackSignature) -> list[tuple[Optional[str], Optional[str], Optional[int]]]:
    return [tuple(triple) for triple in json.loads(signature)]
