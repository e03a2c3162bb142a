import os
import shutil
from pathlib import Path
from typing import IO, List, Optional, Union
from uuid import uuid4

import yaml

from fabric_core.domain.exceptions import SessionLoadError, StorageError, ValidationError
from fabric_core.domain.session import ChatEntry, ChatSession, UnknownEntry, entries_from_list, entry_to_dict
from fabric_core.infrastructure.logging.logger import logger

SESSION_SUFFIX = ".yml"


# YAML 把这些字符也当作换行，只有双引号转义才能原样保留
_EXTRA_LINE_BREAKS = ("\x85", "\u2028", "\u2029")


class _TranscriptDumper(yaml.SafeDumper):
    """多行文本使用 `|` 块样式输出，便于人工阅读会话文件。"""


def _scalar_style(data: str) -> Optional[str]:
    """选择字符串的输出样式。

    以空行结尾的文本需要 `|+`，PyYAML 会在片段末尾补上 `...` 文档结束标记，
    之后追加的片段就无法再解析，因此这类文本改用双引号。
    """

    if any(ch in data for ch in _EXTRA_LINE_BREAKS):
        return '"'
    if "\n" not in data:
        return None
    if data == "\n" or data.endswith("\n\n"):
        return '"'
    return "|"


def _represent_str(dumper: yaml.SafeDumper, data: str):
    return dumper.represent_scalar("tag:yaml.org,2002:str", data, style=_scalar_style(data))


_TranscriptDumper.add_representer(str, _represent_str)


def _dump_entries(entries: List[ChatEntry]) -> str:
    """序列化为块序列片段；每个片段都能直接拼接到已有文档之后。"""

    payload = [p for p in (entry_to_dict(e) for e in entries) if p is not None]
    if not payload:
        return ""
    return yaml.dump(
        payload,
        Dumper=_TranscriptDumper,
        sort_keys=False,
        allow_unicode=True,
        default_flow_style=False,
    )


class DummyChatSession:
    """未指定会话名时使用的临时会话，只存在于内存中。"""

    name = None

    def __init__(self):
        self._messages: List[ChatEntry] = []

    @property
    def is_dummy(self) -> bool:
        return True

    @property
    def messages(self) -> List[ChatEntry]:
        return self._messages

    def append(self, entry: ChatEntry) -> None:
        self._messages.append(entry)

    def prune(self, limit: int) -> List[ChatEntry]:
        return []

    def clear(self) -> None:
        pass

    def close(self) -> None:
        pass

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()
        return False


class StoredChatSession:
    """绑定到会话文件的持久化会话。

    append 以增量方式写入单条记录并 flush/fsync 后才更新内存列表；
    prune 是唯一的整体重写操作。同一会话文件只支持单个写入者。
    """

    def __init__(self, name: str, path: Path, handle: Optional[IO[str]], messages: List[ChatEntry]):
        self.name = name
        self.path = path
        self._handle = handle
        self._messages = messages

    @property
    def is_dummy(self) -> bool:
        return False

    @property
    def messages(self) -> List[ChatEntry]:
        return self._messages

    def append(self, entry: ChatEntry) -> None:
        fragment = _dump_entries([entry])
        if not fragment:
            raise ValidationError(code="UNSUPPORTED_ENTRY", message=f"cannot persist entry {entry!r}")
        try:
            handle = self._ensure_handle()
            handle.flush()
            size = os.fstat(handle.fileno()).st_size
        except OSError as e:
            raise StorageError(code="STORE_WRITE_ERROR", message=str(e), session=self.name)
        try:
            handle.write(fragment)
            handle.flush()
            os.fsync(handle.fileno())
        except OSError as e:
            self._rollback(size)
            raise StorageError(code="STORE_WRITE_ERROR", message=str(e), session=self.name)
        self._messages.append(entry)

    def prune(self, limit: int) -> List[ChatEntry]:
        """保留最近 limit 条记录，返回被丢弃的旧记录并重写整个文件。

        保留下来的 UnknownEntry 无法写回文件，重写后也会从内存中移除。
        """

        if limit < 0:
            raise ValidationError(code="INVALID_LIMIT", message=f"limit must be >= 0, got {limit}")
        start = len(self._messages) - limit
        if start <= 0:
            return []
        discard = self._messages[:start]
        remaining = [e for e in self._messages[start:] if not isinstance(e, UnknownEntry)]
        self._rewrite(remaining)
        self._messages = remaining
        logger.debug("Pruned session", extra={"extra": {"session": self.name, "discarded": len(discard)}})
        return discard

    def clear(self) -> None:
        """删除会话文件。"""

        self.close()
        try:
            self.path.unlink(missing_ok=True)
        except OSError as e:
            raise StorageError(code="STORE_DELETE_ERROR", message=str(e), session=self.name)
        self._messages = []

    def close(self) -> None:
        handle, self._handle = self._handle, None
        if handle is not None:
            handle.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()
        return False

    def _ensure_handle(self) -> IO[str]:
        if self._handle is None:
            self._handle = self.path.open("a", encoding="utf-8")
        return self._handle

    def _rollback(self, size: int) -> None:
        """写入失败后把文件截回写入前的长度，下次 append 重新打开文件。"""

        try:
            self.close()
        except OSError as e:
            logger.warning(
                "Failed to close session file after write error",
                extra={"extra": {"session": self.name, "error": str(e)}},
            )
        try:
            os.truncate(self.path, size)
        except OSError as e:
            logger.warning(
                "Failed to roll back partial append",
                extra={"extra": {"session": self.name, "error": str(e)}},
            )

    def _rewrite(self, entries: List[ChatEntry]) -> None:
        tmp_path = self.path.with_name(f".{self.path.stem}.{uuid4().hex}.tmp")
        try:
            with tmp_path.open("w", encoding="utf-8") as f:
                f.write(_dump_entries(entries))
                f.flush()
                os.fsync(f.fileno())
            self.close()
            os.replace(tmp_path, self.path)
            self._ensure_handle()
        except OSError as e:
            tmp_path.unlink(missing_ok=True)
            raise StorageError(code="STORE_WRITE_ERROR", message=str(e), session=self.name)


class SessionManager:
    """会话目录管理：按名称查找、加载或创建会话文件。"""

    def __init__(self, store: Union[str, Path]):
        self.store = Path(store).expanduser()

    def path_for(self, name: str) -> Path:
        if not name or name in {".", ".."} or "/" in name or "\\" in name or name.startswith("."):
            raise ValidationError(code="INVALID_SESSION_NAME", message=f"invalid session name: {name!r}")
        return self.store / f"{name}{SESSION_SUFFIX}"

    def list_sessions(self) -> List[str]:
        if not self.store.is_dir():
            return []
        return sorted(p.stem for p in self.store.glob(f"*{SESSION_SUFFIX}") if p.is_file())

    def get_session(self, name: Optional[str]) -> ChatSession:
        if name is None:
            return self.dummy_session()
        return self.load_or_create(name)

    def dummy_session(self) -> DummyChatSession:
        return DummyChatSession()

    def load_or_create(self, name: str) -> StoredChatSession:
        """加载会话，失败时（不存在或无法解析）创建一个新的空会话。

        只有新建文件失败才会抛出异常。
        """

        path = self.path_for(name)
        try:
            return self.load_session(name)
        except SessionLoadError as e:
            logger.info(
                "Failed to load session, creating new one",
                extra={"extra": {"session": name, "code": e.code, "error": e.message}},
            )
        try:
            self.store.mkdir(parents=True, exist_ok=True)
            if path.exists():
                # 无法解析的旧文件先备份，避免直接丢失
                shutil.copy2(path, path.with_name(path.name + ".bak"))
            path.write_text("", encoding="utf-8")
            handle = path.open("a", encoding="utf-8")
        except OSError as e:
            raise StorageError(code="STORE_CREATE_ERROR", message=str(e), session=name)
        return StoredChatSession(name, path, handle, [])

    def load_session(self, name: str) -> StoredChatSession:
        path = self.path_for(name)
        if not path.is_file():
            raise SessionLoadError(code="SESSION_NOT_FOUND", message=str(path), session=name)
        try:
            handle = path.open("a+", encoding="utf-8")
        except OSError as e:
            raise SessionLoadError(code="STORE_READ_ERROR", message=str(e), session=name)
        try:
            handle.seek(0)
            text = handle.read()
            messages = entries_from_list(yaml.safe_load(text))
            if text.strip() and not messages:
                # 例如 "[]"：清空后再追加的块序列片段才能保持合法
                handle.truncate(0)
            elif text and not text.endswith("\n"):
                handle.write("\n")
                handle.flush()
        except (OSError, UnicodeDecodeError, yaml.YAMLError) as e:
            handle.close()
            raise SessionLoadError(code="SESSION_PARSE_ERROR", message=str(e), session=name)
        except SessionLoadError:
            handle.close()
            raise
        return StoredChatSession(name, path, handle, messages)
