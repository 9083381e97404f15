"""
檔案上傳與管理服務
負責：批次匯入、上傳摘要訊息、刪除單一檔案與清空工作區
"""

import asyncio
import os
from typing import List

from backend.models.business_models import FileSnippet, Sender, TerminalMessage
from backend.services.ingestion_service import IngestionResult, IngestionService, RawUpload
from backend.services.orchestrator_service import ConversationOrchestrator
from backend.services.session_store import SessionStore
from backend.utils.exceptions import PersistenceError
from backend.utils.logger import get_logger

logger = get_logger(__name__)

NO_VALID_DATA_TEXT = "⚠️ No valid data was found in the upload."
WORKSPACE_CLEARED_TEXT = "🗑️ Workspace cleared"


def display_name(name: str) -> str:
    """顯示用名稱 (去掉副檔名)"""
    return os.path.splitext(name)[0]


def compose_upload_summary(snippets: List[FileSnippet]) -> str:
    """
    一批上傳只產生一則摘要

    0 個 -> 無有效資料警告；1 個 -> 檔名與真實筆數；多個 -> 數量與各檔名
    """
    if not snippets:
        return NO_VALID_DATA_TEXT
    if len(snippets) == 1:
        snippet = snippets[0]
        return f"📊 Data loaded: {snippet.name} \n({snippet.true_row_count} rows tracked)"

    names = ", ".join(display_name(s.name) for s in snippets)
    return (
        f"📊 Data loaded: {len(snippets)} items collected\n"
        f"Items: {names}\n"
        "Total rows tracked across all data sources."
    )


class UploadService:
    """上傳流程：解析 -> 寫入儲存層 -> 一則摘要訊息 -> 同步資料筆數"""

    def __init__(
        self,
        store: SessionStore,
        orchestrator: ConversationOrchestrator,
        ingestion: IngestionService = None,
    ):
        self.store = store
        self.orchestrator = orchestrator
        self.ingestion = ingestion or IngestionService()

    async def _system_message(self, user_id: str, text: str) -> TerminalMessage:
        return await self.store.put(
            user_id, TerminalMessage(sender=Sender.SYSTEM, text=text)
        )

    async def upload_batch(self, user_id: str, uploads: List[RawUpload]) -> dict:
        """
        處理一批上傳

        Raises:
            PersistenceError: 寫入失敗 (不自動重試，由呼叫端決定如何呈現)
        """
        logger.info(f"🔄 {user_id} 上傳 {len(uploads)} 個檔案")
        result: IngestionResult = await self.ingestion.normalize(uploads)

        try:
            await asyncio.gather(
                *(
                    self.store.put_file(
                        user_id, s.name, s.content, true_row_count=s.true_row_count
                    )
                    for s in result.snippets
                )
            )
            summary = await self._system_message(
                user_id, compose_upload_summary(result.snippets)
            )
        except PersistenceError as e:
            logger.error(f"❌ 上傳失敗: {e.message}")
            raise

        state = await self.orchestrator.sync_records(user_id)
        return {
            "files": [
                {"name": s.name, "trueRowCount": s.true_row_count}
                for s in result.snippets
            ],
            "discarded": result.discarded,
            "summary": summary.text,
            "state": state.to_public(),
        }

    async def remove_file(self, user_id: str, name: str) -> dict:
        await self.store.delete_file(user_id, name)
        await self._system_message(user_id, f"File removed: {name}")
        state = await self.orchestrator.sync_records(user_id)
        return {"removed": [name], "state": state.to_public()}

    async def remove_all_files(self, user_id: str) -> dict:
        """刪除所有檔案；沒有檔案時不做任何事"""
        if not await self.store.get_files(user_id):
            return {"removed": [], "state": self.orchestrator.get_state(user_id).to_public()}

        removed = await self.store.delete_all_files(user_id)
        await self._system_message(user_id, WORKSPACE_CLEARED_TEXT)
        logger.info(f"✅ {user_id} 的工作區已清空 ({len(removed)} 個檔案)")
        state = await self.orchestrator.sync_records(user_id)
        return {"removed": removed, "state": state.to_public()}
