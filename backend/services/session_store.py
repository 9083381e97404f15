"""
Session 儲存層
以使用者為單位保存對話訊息與檔案片段，並提供即時變更通知
"""

import asyncio
import json
import os
import threading
import time
import uuid
from abc import ABC, abstractmethod
from typing import Callable, Dict, List

import config
from backend.models.business_models import FileSnippet, TerminalMessage
from backend.utils.exceptions import PersistenceError
from backend.utils.logger import get_logger
from backend.utils.security import sanitize_filename, sanitize_user_id

logger = get_logger(__name__)

HistoryCallback = Callable[[List[TerminalMessage]], None]
FilesCallback = Callable[[Dict[str, str]], None]


class Subscription:
    """訂閱控制代碼，呼叫 unsubscribe() 後不再收到通知"""

    def __init__(self, registry: Dict[str, list], user_id: str, callback: Callable):
        self._registry = registry
        self._user_id = user_id
        self._callback = callback
        self.active = True

    def unsubscribe(self):
        if not self.active:
            return
        listeners = self._registry.get(self._user_id, [])
        if self._callback in listeners:
            listeners.remove(self._callback)
        self.active = False


class SessionStore(ABC):
    """
    儲存層介面

    子類別只需實作底層的讀寫；訊息 id、排序鍵與訂閱通知由這裡統一處理。
    """

    def __init__(self):
        self._history_listeners: Dict[str, List[HistoryCallback]] = {}
        self._file_listeners: Dict[str, List[FilesCallback]] = {}
        self._sequence_lock = threading.Lock()
        self._last_sequence = 0

    # --- 底層讀寫 (由子類別實作) ---

    @abstractmethod
    def _load_messages(self, user_id: str) -> List[dict]: ...

    @abstractmethod
    def _append_message(self, user_id: str, record: dict) -> None: ...

    @abstractmethod
    def _load_files(self, user_id: str) -> Dict[str, dict]: ...

    @abstractmethod
    def _write_file(self, user_id: str, name: str, record: dict) -> None: ...

    @abstractmethod
    def _remove_file(self, user_id: str, name: str) -> None: ...

    @abstractmethod
    def _clear_messages(self, user_id: str) -> None: ...

    # --- 公開操作 ---

    def _next_sequence(self) -> int:
        with self._sequence_lock:
            self._last_sequence = max(time.time_ns(), self._last_sequence + 1)
            return self._last_sequence

    async def put(self, user_id: str, message: TerminalMessage) -> TerminalMessage:
        """新增一則訊息 (id 與排序鍵由儲存層指派)"""
        user_id = sanitize_user_id(user_id)
        stored = message.model_copy(
            update={"id": uuid.uuid4().hex, "created_at": self._next_sequence()}
        )
        await self._run(self._append_message, user_id, stored.to_record())
        logger.debug(f"💾 已儲存訊息 {stored.id} ({stored.sender.value})")
        await self._notify_history(user_id)
        return stored

    async def put_file(
        self, user_id: str, name: str, content: str, true_row_count: int = None
    ):
        """以名稱 upsert 一個檔案片段"""
        user_id = sanitize_user_id(user_id)
        name = sanitize_filename(name)
        record = {"fileName": name, "content": content, "updatedAt": time.time()}
        if true_row_count is not None:
            record["trueRowCount"] = int(true_row_count)
        await self._run(self._write_file, user_id, name, record)
        logger.info(f"💾 已儲存檔案 \"{name}\"")
        await self._notify_files(user_id)

    async def delete_file(self, user_id: str, name: str):
        user_id = sanitize_user_id(user_id)
        name = sanitize_filename(name)
        await self._run(self._remove_file, user_id, name)
        logger.info(f"🗑️ 已刪除檔案 \"{name}\"")
        await self._notify_files(user_id)

    async def delete_all_files(self, user_id: str) -> List[str]:
        """刪除使用者的所有檔案，回傳被刪除的檔名"""
        user_id = sanitize_user_id(user_id)
        names = list((await self._run(self._load_files, user_id)).keys())
        for name in names:
            await self._run(self._remove_file, user_id, name)
        if names:
            await self._notify_files(user_id)
        return names

    async def clear_history(self, user_id: str):
        user_id = sanitize_user_id(user_id)
        await self._run(self._clear_messages, user_id)
        await self._notify_history(user_id)

    async def list_messages(self, user_id: str) -> List[TerminalMessage]:
        user_id = sanitize_user_id(user_id)
        return self._to_messages(await self._run(self._load_messages, user_id))

    async def get_files(self, user_id: str) -> Dict[str, str]:
        user_id = sanitize_user_id(user_id)
        return self._to_file_map(await self._run(self._load_files, user_id))

    async def get_snippets(self, user_id: str) -> List[FileSnippet]:
        """取得檔案片段 (含真實筆數)"""
        user_id = sanitize_user_id(user_id)
        records = await self._run(self._load_files, user_id)
        return [
            FileSnippet(
                name=name,
                content=record.get("content", ""),
                true_row_count=record.get("trueRowCount", 0),
            )
            for name, record in sorted(records.items())
        ]

    def subscribe_history(
        self, user_id: str, on_change: HistoryCallback
    ) -> Subscription:
        """訂閱對話歷史：立即回呼一次目前內容，之後每次變更都回呼"""
        user_id = sanitize_user_id(user_id)
        self._history_listeners.setdefault(user_id, []).append(on_change)
        self._safe_call(
            on_change, self._to_messages(self._load_sync(self._load_messages, user_id))
        )
        return Subscription(self._history_listeners, user_id, on_change)

    def subscribe_files(self, user_id: str, on_change: FilesCallback) -> Subscription:
        """訂閱檔案清單 (檔名 -> 內容)"""
        user_id = sanitize_user_id(user_id)
        self._file_listeners.setdefault(user_id, []).append(on_change)
        self._safe_call(
            on_change, self._to_file_map(self._load_sync(self._load_files, user_id))
        )
        return Subscription(self._file_listeners, user_id, on_change)

    # --- 內部工具 ---

    async def _run(self, func, *args):
        try:
            return await asyncio.to_thread(func, *args)
        except PersistenceError:
            raise
        except (OSError, ValueError) as e:
            logger.error(f"❌ 儲存層操作失敗 ({func.__name__}): {e}")
            raise PersistenceError(
                f"Storage operation failed: {e}", details={"operation": func.__name__}
            )

    def _load_sync(self, func, user_id: str):
        try:
            return func(user_id)
        except (OSError, ValueError) as e:
            logger.error(f"❌ 儲存層讀取失敗 ({func.__name__}): {e}")
            raise PersistenceError(
                f"Storage read failed: {e}", details={"operation": func.__name__}
            )

    @staticmethod
    def _to_messages(records: List[dict]) -> List[TerminalMessage]:
        ordered = sorted(records, key=lambda r: r.get("createdAt") or 0)
        return [TerminalMessage.model_validate(r) for r in ordered]

    @staticmethod
    def _to_file_map(records: Dict[str, dict]) -> Dict[str, str]:
        return {name: record.get("content", "") for name, record in records.items()}

    @staticmethod
    def _safe_call(callback: Callable, payload):
        try:
            callback(payload)
        except Exception as e:
            # 訂閱者的錯誤不影響寫入端
            logger.error(f"訂閱回呼失敗: {e}")

    async def _notify_history(self, user_id: str):
        listeners = list(self._history_listeners.get(user_id, []))
        if not listeners:
            return
        try:
            messages = self._to_messages(await self._run(self._load_messages, user_id))
        except PersistenceError as e:
            # 寫入已完成，通知失敗只記錄
            logger.error(f"對話歷史通知失敗 ({user_id}): {e.message}")
            return
        for callback in listeners:
            self._safe_call(callback, list(messages))

    async def _notify_files(self, user_id: str):
        listeners = list(self._file_listeners.get(user_id, []))
        if not listeners:
            return
        try:
            files = self._to_file_map(await self._run(self._load_files, user_id))
        except PersistenceError as e:
            logger.error(f"檔案清單通知失敗 ({user_id}): {e.message}")
            return
        for callback in listeners:
            self._safe_call(callback, dict(files))


class InMemorySessionStore(SessionStore):
    """行程內儲存 (本機模式，重啟即清空)"""

    def __init__(self):
        super().__init__()
        self._chats: Dict[str, List[dict]] = {}
        self._files: Dict[str, Dict[str, dict]] = {}
        self._lock = threading.Lock()

    def _load_messages(self, user_id: str) -> List[dict]:
        with self._lock:
            return [dict(r) for r in self._chats.get(user_id, [])]

    def _append_message(self, user_id: str, record: dict) -> None:
        with self._lock:
            self._chats.setdefault(user_id, []).append(record)

    def _clear_messages(self, user_id: str) -> None:
        with self._lock:
            self._chats.pop(user_id, None)

    def _load_files(self, user_id: str) -> Dict[str, dict]:
        with self._lock:
            return {k: dict(v) for k, v in self._files.get(user_id, {}).items()}

    def _write_file(self, user_id: str, name: str, record: dict) -> None:
        with self._lock:
            self._files.setdefault(user_id, {})[name] = record

    def _remove_file(self, user_id: str, name: str) -> None:
        with self._lock:
            self._files.get(user_id, {}).pop(name, None)


class JsonFileSessionStore(SessionStore):
    """
    檔案系統儲存，實作多租戶隔離

    目錄結構: <base_dir>/<user_id>/chats.json 與 <base_dir>/<user_id>/files/<name>.json
    """

    def __init__(self, base_dir: str = None):
        super().__init__()
        self.base_dir = base_dir or config.BASE_STORAGE_DIR
        os.makedirs(self.base_dir, exist_ok=True)
        self._lock = threading.Lock()

    def get_user_path(self, user_id: str, category: str = "") -> str:
        user_dir = os.path.join(self.base_dir, user_id, category)
        os.makedirs(user_dir, exist_ok=True)
        return user_dir

    def _chats_path(self, user_id: str) -> str:
        return os.path.join(self.get_user_path(user_id), "chats.json")

    def _file_path(self, user_id: str, name: str) -> str:
        return os.path.join(self.get_user_path(user_id, "files"), f"{name}.json")

    def _load_messages(self, user_id: str) -> List[dict]:
        path = self._chats_path(user_id)
        with self._lock:
            if not os.path.exists(path):
                return []
            with open(path, "r", encoding="utf-8") as f:
                return json.load(f)

    def _append_message(self, user_id: str, record: dict) -> None:
        path = self._chats_path(user_id)
        with self._lock:
            records = []
            if os.path.exists(path):
                with open(path, "r", encoding="utf-8") as f:
                    records = json.load(f)
            records.append(record)
            self._atomic_write(path, records)

    def _clear_messages(self, user_id: str) -> None:
        path = self._chats_path(user_id)
        with self._lock:
            if os.path.exists(path):
                os.remove(path)

    def _load_files(self, user_id: str) -> Dict[str, dict]:
        files_dir = self.get_user_path(user_id, "files")
        files = {}
        with self._lock:
            for entry in sorted(os.listdir(files_dir)):
                if not entry.endswith(".json"):
                    continue
                with open(os.path.join(files_dir, entry), "r", encoding="utf-8") as f:
                    record = json.load(f)
                files[record.get("fileName", entry[: -len(".json")])] = record
        return files

    def _write_file(self, user_id: str, name: str, record: dict) -> None:
        with self._lock:
            self._atomic_write(self._file_path(user_id, name), record)

    def _remove_file(self, user_id: str, name: str) -> None:
        path = self._file_path(user_id, name)
        with self._lock:
            if os.path.exists(path):
                os.remove(path)

    @staticmethod
    def _atomic_write(path: str, payload):
        tmp_path = f"{path}.tmp"
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(payload, f, ensure_ascii=False)
        os.replace(tmp_path, path)


def create_session_store(backend: str = None) -> SessionStore:
    """依設定建立儲存層"""
    backend = (backend or config.STORE_BACKEND).lower()
    if backend == "memory":
        return InMemorySessionStore()
    if backend == "json":
        return JsonFileSessionStore()
    raise ValueError(f"Unknown STORE_BACKEND: {backend}")
