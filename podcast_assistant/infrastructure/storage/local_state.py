"""本地持久化键值存储。

用一个 JSON 文件保存少量客户端状态（API 密钥、会话历史的本地副本），
写入时先写临时文件再 os.replace，避免进程中断留下半个文件。
"""

import json
import os
from pathlib import Path
from typing import Any, Dict, Optional
from uuid import uuid4

from podcast_assistant.config.settings import settings
from podcast_assistant.domain.exceptions import PersistenceError
from podcast_assistant.infrastructure.logging.logger import logger


API_KEY_KEY = "gemini_api_key"
HISTORY_KEY = "conversation_history"


class LocalStateStore:
    def __init__(self, path: str | Path | None = None):
        self._path = Path(path or settings.local_state_path).resolve()

    @property
    def path(self) -> Path:
        return self._path

    def get(self, key: str, default: Any = None) -> Any:
        return self._read().get(key, default)

    def set(self, key: str, value: Any) -> None:
        data = self._read()
        data[key] = value
        self._write(data)

    def delete(self, key: str) -> None:
        data = self._read()
        if key in data:
            del data[key]
            self._write(data)

    def _read(self) -> Dict[str, Any]:
        if not self._path.exists():
            return {}
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            logger.warning("Local state unreadable, starting empty", extra={"extra": {"path": str(self._path), "error": str(e)}})
            return {}
        return data if isinstance(data, dict) else {}

    def _write(self, data: Dict[str, Any]) -> None:
        tmp_path: Optional[Path] = None
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path = self._path.with_name(f"{self._path.name}.{uuid4().hex}.tmp")
            tmp_path.write_text(json.dumps(data, ensure_ascii=False), encoding="utf-8")
            os.replace(tmp_path, self._path)
        except OSError as e:
            if tmp_path is not None and tmp_path.exists():
                tmp_path.unlink()
            raise PersistenceError(code="LOCAL_STATE_WRITE_ERROR", message=str(e))
