import pytest

from fabric_core.domain.exceptions import SessionLoadError
from fabric_core.domain.session import (
    QueryEntry,
    ReplyEntry,
    UnknownEntry,
    entries_from_list,
    entry_from_dict,
    entry_to_dict,
    to_chat_messages,
)


def test_entry_from_dict_roles_and_aliases():
    assert entry_from_dict({"role": "user", "content": "hi"}) == QueryEntry(content="hi")
    assert entry_from_dict({"role": "query", "pattern": "p", "content": "hi"}) == QueryEntry(content="hi", pattern="p")
    assert entry_from_dict({"role": "assistant", "content": "ok"}) == ReplyEntry(content="ok")
    assert entry_from_dict({"role": "reply", "content": "ok"}) == ReplyEntry(content="ok")


def test_unknown_role_is_not_an_error():
    entry = entry_from_dict({"role": "cow", "content": "Moo? Moo!"})
    assert isinstance(entry, UnknownEntry)
    assert entry_to_dict(entry) is None


def test_known_role_without_content_fails():
    with pytest.raises(SessionLoadError):
        entry_from_dict({"role": "user"})
    with pytest.raises(SessionLoadError):
        entries_from_list({"role": "user", "content": "x"})


def test_entry_to_dict_omits_missing_pattern():
    assert entry_to_dict(QueryEntry(content="hi")) == {"role": "user", "content": "hi"}
    assert entry_to_dict(QueryEntry(content="hi", pattern="p")) == {"role": "user", "pattern": "p", "content": "hi"}


def test_to_chat_messages_merges_and_limits():
    entries = [
        QueryEntry(content="a", pattern="p"),
        QueryEntry(content="b", pattern="p"),
        UnknownEntry(role="cow"),
        ReplyEntry(content="c"),
        QueryEntry(content="d"),
    ]
    msgs = to_chat_messages(entries)
    assert [(m.role, m.content) for m in msgs] == [("user", "a\n\nb"), ("assistant", "c"), ("user", "d")]

    limited = to_chat_messages(entries, limit=2)
    # 截断后以 assistant 开头的消息会被丢弃
    assert [(m.role, m.content) for m in limited] == [("user", "d")]
