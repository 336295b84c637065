from idlewakeups.stack_signature import parse_signature, stack_signature
from idlewakeups.test_utils.fixtures import chrome_stack, frame


def test_empty_stacks_have_no_signature():
    assert stack_signature(None) is None
    assert stack_signature(()) is None


def test_equal_frames_give_equal_signatures():
    a = chrome_stack('Wait', 'RunLoop', 'main')
    b = chrome_stack('Wait', 'RunLoop', 'main')
    assert a is not b
    assert stack_signature(a) == stack_signature(b)


def test_source_details_do_not_change_signature():
    a = (frame('ntdll.dll', 'NtWait', 0x10, source_file='a.cc', line=1),)
    b = (frame('ntdll.dll', 'NtWait', 0x10, source_file='b.cc', line=99),)
    assert stack_signature(a) == stack_signature(b)


def test_any_differing_frame_changes_signature():
    base = chrome_stack('Wait', 'RunLoop', 'main')
    other_function = chrome_stack('Wait', 'RunLoop2', 'main')
    assert stack_signature(base) != stack_signature(other_function)

    other_address = base[:1] + (frame('chrome.dll', 'RunLoop', 0x9999),) + base[2:]
    assert stack_signature(base) != stack_signature(other_address)

    other_image = (frame('chrome_elf.dll', 'Wait', 0x1000),) + base[1:]
    assert stack_signature(base) != stack_signature(other_image)


def test_order_matters():
    stack = chrome_stack('a', 'b')
    assert stack_signature(stack) != stack_signature(tuple(reversed(stack)))


def test_separators_in_names_do_not_collide():
    a = (frame('x', 'f,g'), frame('y', 'h'))
    b = (frame('x', 'f'), frame('g,y', 'h'))
    assert stack_signature(a) != stack_signature(b)


def test_signature_is_reversible():
    stack = (frame('chrome.dll', 'Wait', 0x1000), frame('ntdll.dll'))
    assert parse_signature(stack_signature(stack)) == [
        ('chrome.dll', 'Wait', 0x1000),
        ('ntdll.dll', None, None),
    ]
