from fabric_core.providers.sse import ServerSentEvent, iter_sse_events


def test_iter_sse_events_basic():
    lines = [
        "event: message_start",
        'data: {"type": "message_start"}',
        "",
        ": keep-alive comment",
        "event: ping",
        "data: {}",
        "",
    ]
    events = list(iter_sse_events(lines))
    assert events == [
        ServerSentEvent(event="message_start", data='{"type": "message_start"}'),
        ServerSentEvent(event="ping", data="{}"),
    ]


def test_iter_sse_events_multiline_data_and_default_type():
    lines = ["data: first", "data:second", "id: 7", "retry: 1500", ""]
    events = list(iter_sse_events(lines))
    assert len(events) == 1
    ev = events[0]
    assert ev.event == "message"
    assert ev.data == "first\nsecond"
    assert ev.id == "7"
    assert ev.retry == 1500


def test_iter_sse_events_skips_empty_and_trailing_partial():
    lines = ["event: ping", "", "event: message_stop", "data: {}"]
    # 第一个事件没有 data，最后一个事件没有以空行结束
    assert list(iter_sse_events(lines)) == []
