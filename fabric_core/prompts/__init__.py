"""Pattern（系统提示词模板）加载工具。

每个 pattern 是 pattern 目录下的一个子目录，system prompt 保存在
<pattern_dir>/<name>/system.md 中。PatternDispatcher 按顺序串联多个目录，
先命中者优先。
"""

from pathlib import Path
from typing import Iterable, List, Optional, Protocol, Union

from fabric_core.domain.exceptions import NotFoundError
from fabric_core.domain.models import Pattern
from fabric_core.infrastructure.logging.logger import logger

SYSTEM_PROMPT_FILE = "system.md"


class PatternRegistry(Protocol):
    def list_patterns(self) -> List[str]:
        ...

    def get_pattern(self, name: str) -> Pattern:
        ...


class DirectoryPatternRegistry:
    """基于目录的 pattern 来源。"""

    def __init__(self, pattern_dir: Union[str, Path]):
        self.pattern_dir = Path(pattern_dir)

    def list_patterns(self) -> List[str]:
        logger.debug("patterns dir", extra={"extra": {"path": str(self.pattern_dir)}})
        return sorted(p.name for p in self.pattern_dir.iterdir() if p.is_dir())

    def get_pattern(self, name: str) -> Pattern:
        if not name or Path(name).name != name or name in {".", ".."}:
            raise NotFoundError(code="PATTERN_NOT_FOUND", message=f"invalid pattern name: {name!r}")
        path = self.pattern_dir / name / SYSTEM_PROMPT_FILE
        logger.debug("Reading pattern file", extra={"extra": {"path": str(path)}})
        try:
            system = path.read_text(encoding="utf-8")
        except OSError as e:
            raise NotFoundError(code="PATTERN_NOT_FOUND", message=f"{name}: {e}", pattern=name)
        return Pattern(name=name, system=system)


class PatternDispatcher:
    """串联多个 PatternRegistry。"""

    def __init__(self, registries: Optional[Iterable[PatternRegistry]] = None):
        self.registries: List[PatternRegistry] = list(registries or [])

    @classmethod
    def from_dirs(cls, pattern_dir: Union[str, Path], extra_dirs: Iterable[Union[str, Path]] = ()) -> "PatternDispatcher":
        dirs = [pattern_dir, *extra_dirs]
        return cls(DirectoryPatternRegistry(d) for d in dirs)

    def with_patterns(self, registry: PatternRegistry) -> "PatternDispatcher":
        self.registries.append(registry)
        return self

    def list_patterns(self) -> List[str]:
        names: List[str] = []
        for registry in self.registries:
            try:
                names.extend(registry.list_patterns())
            except OSError as e:
                logger.debug("Failed to get patterns from registry", extra={"extra": {"error": str(e)}})
        return names

    def get_pattern(self, name: str) -> Pattern:
        error: NotFoundError = NotFoundError(code="PATTERN_NOT_FOUND", message="No pattern registries configured")
        for registry in self.registries:
            try:
                return registry.get_pattern(name)
            except NotFoundError as e:
                error = e
        raise error
