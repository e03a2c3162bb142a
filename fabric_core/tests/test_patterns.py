import pytest

from fabric_core.domain.exceptions import NotFoundError
from fabric_core.prompts import DirectoryPatternRegistry, PatternDispatcher


def _pattern(root, name, system):
    d = root / name
    d.mkdir(parents=True)
    (d / "system.md").write_text(system, encoding="utf-8")


def test_directory_registry(tmp_path):
    _pattern(tmp_path, "summarize", "Summarize.")
    _pattern(tmp_path, "explain", "Explain.")
    (tmp_path / "README.md").write_text("not a pattern", encoding="utf-8")
    reg = DirectoryPatternRegistry(tmp_path)
    assert reg.list_patterns() == ["explain", "summarize"]
    pattern = reg.get_pattern("summarize")
    assert pattern.name == "summarize"
    assert pattern.system == "Summarize."
    with pytest.raises(NotFoundError):
        reg.get_pattern("missing")
    with pytest.raises(NotFoundError):
        reg.get_pattern("../summarize")


def test_dispatcher_chains_registries(tmp_path):
    base = tmp_path / "base"
    extra = tmp_path / "extra"
    _pattern(base, "summarize", "base summarize")
    _pattern(extra, "summarize", "extra summarize")
    _pattern(extra, "translate", "Translate.")
    dispatcher = PatternDispatcher.from_dirs(base, [extra, tmp_path / "missing"])
    assert dispatcher.list_patterns() == ["summarize", "summarize", "translate"]
    assert dispatcher.get_pattern("summarize").system == "base summarize"
    assert dispatcher.get_pattern("translate").system == "Translate."
    with pytest.raises(NotFoundError):
        dispatcher.get_pattern("nope")


def test_empty_dispatcher():
    with pytest.raises(NotFoundError):
        PatternDispatcher().get_pattern("anything")
    assert PatternDispatcher().list_patterns() == []
