from symlog.stacktrace import get_stack_trace


def _inner(max_depth=10, skip_count=0):
    return get_stack_trace(max_depth, skip_count)


def _recurse(n, max_depth):
    if n == 0:
        return get_stack_trace(max_depth)
    return _recurse(n - 1, max_depth)


def test_first_frame_is_caller():
    frames = _inner()
    assert frames[0].function == "_inner"
    assert frames[1].function == "test_first_frame_is_caller"


def test_skip_count_skips_frames():
    frames = _inner(10, 1)
    assert frames[0].function == "test_skip_count_skips_frames"


def test_zero_depth_is_empty():
    assert get_stack_trace(0) == []


def test_huge_skip_is_empty():
    assert get_stack_trace(10, 10_000) == []


def test_max_depth_limits_result():
    assert len(_inner(2)) == 2


def test_at_most_sixty_three_frames_returned():
    frames = _recurse(100, 1000)
    assert len(frames) == 63
    assert all(f.function == "_recurse" for f in frames)


def test_frame_fields():
    frame = _inner(1)[0]
    assert frame.filename == __file__
    assert frame.lineno > 0


def test_skip_shifts_frames():
    full = _inner(10, 0)
    shifted = _inner(10, 1)
    assert shifted[0].function == full[1].function
    assert shifted[0].filename == full[1].filename