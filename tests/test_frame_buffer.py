from palaver.services.frame_buffer import FrameBuffer


def test_next_line_returns_none_without_terminator():
    buffer = FrameBuffer()
    buffer.append(b"data: {\"partial\"")
    assert buffer.next_line() is None
    assert buffer.pending == 'data: {"partial"'


def test_lines_drain_in_order_and_strip_carriage_return():
    buffer = FrameBuffer()
    buffer.append(b"first\r\nsecond\nthi")
    assert buffer.next_line() == "first"
    assert buffer.next_line() == "second"
    assert buffer.next_line() is None
    buffer.append(b"rd\n")
    assert buffer.next_line() == "third"
    assert len(buffer) == 0


def test_multibyte_character_split_across_chunks():
    encoded = "héllo ☃\n".encode("utf-8")
    buffer = FrameBuffer()
    for i in range(len(encoded)):
        buffer.append(encoded[i : i + 1])
    assert buffer.next_line() == "héllo ☃"


def test_requeue_puts_line_ahead_of_newer_text():
    buffer = FrameBuffer()
    buffer.append("tail")
    buffer.requeue("data: {broken")
    assert buffer.next_line() == "data: {broken"
    assert buffer.pending == "tail"


def test_finish_flushes_incomplete_sequence_and_clear_empties():
    buffer = FrameBuffer()
    buffer.append("ok".encode("utf-8") + "é".encode("utf-8")[:1])
    assert buffer.pending == "ok"
    buffer.finish()
    assert buffer.pending == "ok\ufffd"
    buffer.clear()
    assert buffer.pending == ""
