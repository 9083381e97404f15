"""
對話協調服務
負責：儲存使用者訊息 -> 呼叫 AI -> 校正狀態 -> 儲存系統訊息
"""

from dataclasses import dataclass
from typing import Dict, List, Tuple

import config
from backend.models.business_models import (
    INITIAL_BUSINESS_STATE,
    AIAnalysis,
    BusinessState,
    FileSnippet,
    InsightType,
    Sender,
    Status,
    TerminalMessage,
)
from backend.services.ingestion_service import count_rows
from backend.services.session_store import SessionStore
from backend.utils.exceptions import (
    CommandInProgressError,
    InsightDeskException,
    PersistenceError,
    ValidationError,
)
from backend.utils.logger import get_logger
from core_logic.llm_analyst import LLMAnalyst

logger = get_logger(__name__)

FALLBACK_MESSAGE = "System Error: Unable to process business logic at this time."
DEFAULT_SYSTEM_TEXT = "Analysis complete."
NO_FILES_CONTEXT = "No files uploaded."


@dataclass
class CommandOutcome:
    """一次指令的結果"""

    state: BusinessState
    celebrate: bool = False
    failed: bool = False


def reconcile_records(ai_count: int, previous_count: int, file_count: int) -> int:
    """
    校正 AI 回報的資料筆數

    - 沒有載入檔案: 一律為 0
    - AI 回報 0 但先前有正數: 沿用先前的值
    - 其餘情況接受 AI 的值
    """
    if file_count == 0:
        return 0
    if ai_count == 0 and previous_count > 0:
        return previous_count
    return ai_count


def build_context_bundle(snippets: List[FileSnippet]) -> str:
    """將已載入的檔案片段組成 AI 的文字上下文 (筆數以解析 content 為準)"""
    if not snippets:
        return NO_FILES_CONTEXT

    parts = []
    for snippet in snippets:
        parts.append(f"\n--- SOURCE FILE: {snippet.name} ---\n")
        parts.append(f"Rows Available: {count_rows(snippet.content)}\n")
        parts.append(f"Data Preview:\n{snippet.content}\n")
    return "".join(parts)


def _file_bookkeeping(snippets: List[FileSnippet]) -> List[Tuple[str, int]]:
    return sorted((s.name, s.true_row_count) for s in snippets)


def fallback_state(current_state: BusinessState) -> BusinessState:
    """失敗時的本地狀態：保留其他欄位，只覆寫 status / insightType / message"""
    return current_state.model_copy(
        update={
            "status": Status.IDLE,
            "insight_type": InsightType.ALERT,
            "message": FALLBACK_MESSAGE,
        }
    )


def should_celebrate(state: BusinessState) -> bool:
    return (
        state.insight_type == InsightType.FINANCIAL
        and state.confidence_score > config.CELEBRATION_THRESHOLD
    )


def state_from_analysis(analysis: AIAnalysis, records_loaded: int) -> BusinessState:
    return BusinessState(
        status=analysis.status,
        insight_type=analysis.insight_type,
        confidence_score=analysis.confidence_score,
        records_loaded=records_loaded,
        message=analysis.message,
        chart_data=analysis.chart_data,
        table_data=analysis.table_data,
    )


class ConversationOrchestrator:
    """
    對話協調器

    每位使用者一份 BusinessState；同一位使用者同時只允許一個指令在處理中。
    """

    def __init__(self, store: SessionStore, analyst: LLMAnalyst = None):
        self.store = store
        self.analyst = analyst or LLMAnalyst()
        self._states: Dict[str, BusinessState] = {}
        self._in_flight = set()

    def get_state(self, user_id: str) -> BusinessState:
        return self._states.get(user_id, INITIAL_BUSINESS_STATE)

    def reset_state(self, user_id: str) -> BusinessState:
        """登出或沒有檔案時回到初始狀態"""
        self._states.pop(user_id, None)
        return INITIAL_BUSINESS_STATE

    def is_processing(self, user_id: str) -> bool:
        return user_id in self._in_flight

    async def sync_records(self, user_id: str) -> BusinessState:
        """檔案集合變動後，以各檔案真實筆數的總和更新 recordsLoaded"""
        snippets = await self.store.get_snippets(user_id)
        if not snippets:
            return self.reset_state(user_id)

        total = sum(s.true_row_count for s in snippets)
        state = self.get_state(user_id).model_copy(update={"records_loaded": total})
        self._states[user_id] = state
        logger.info(f"📊 {user_id} 的資料筆數已同步: {len(snippets)} 個檔案, {total} 筆")
        return state

    async def handle_command(
        self,
        user_id: str,
        command_text: str,
        current_state: BusinessState,
        snippets: List[FileSnippet],
    ) -> BusinessState:
        state, _ = await self._process(user_id, command_text, current_state, snippets)
        return state

    async def _process(
        self,
        user_id: str,
        command_text: str,
        current_state: BusinessState,
        snippets: List[FileSnippet],
    ) -> Tuple[BusinessState, bool]:
        """
        處理一個指令並回傳下一個狀態

        1. 儲存使用者訊息 (在呼叫 AI 之前)
        2. 以檔案片段組成上下文並呼叫 AI
        3. 校正 recordsLoaded
        4. 儲存系統訊息 (失敗只記錄，不回滾狀態)

        任何失敗都轉成 fallback_state，不會拋出例外；fallback 不寫入歷史。
        """
        try:
            await self.store.put(
                user_id, TerminalMessage(sender=Sender.USER, text=command_text)
            )

            context_bundle = build_context_bundle(snippets)
            analysis = await self.analyst.analyze(
                command_text, context_bundle, current_state.records_loaded
            )

            records = reconcile_records(
                analysis.records_loaded, current_state.records_loaded, len(snippets)
            )
            if records != analysis.records_loaded:
                logger.info(
                    f"recordsLoaded 已校正: AI 回報 {analysis.records_loaded} -> {records}"
                )
            next_state = state_from_analysis(analysis, records)
        except InsightDeskException as e:
            logger.error(f"❌ 指令處理失敗 [{e.code}]: {e.message}")
            return fallback_state(current_state), True
        except Exception as e:
            logger.exception(f"❌ 指令處理發生未預期錯誤: {e}")
            return fallback_state(current_state), True

        try:
            await self.store.put(
                user_id,
                TerminalMessage(
                    sender=Sender.SYSTEM,
                    text=next_state.message or DEFAULT_SYSTEM_TEXT,
                    chart_data=next_state.chart_data,
                    table_data=next_state.table_data,
                ),
            )
        except PersistenceError as e:
            logger.error(f"❌ 系統訊息儲存失敗 (狀態已更新): {e.message}")

        return next_state, False

    async def _apply_file_changes(
        self, user_id: str, snippets_before: List[FileSnippet], state: BusinessState
    ) -> BusinessState:
        """指令處理期間檔案集合有變動時，recordsLoaded 以目前檔案的真實筆數為準"""
        try:
            snippets_now = await self.store.get_snippets(user_id)
        except PersistenceError as e:
            logger.error(f"❌ 無法重新讀取檔案片段: {e.message}")
            return state

        if _file_bookkeeping(snippets_now) == _file_bookkeeping(snippets_before):
            return state

        total = sum(s.true_row_count for s in snippets_now)
        logger.info(f"📊 {user_id} 的檔案在指令處理期間有變動，recordsLoaded -> {total}")
        return state.model_copy(update={"records_loaded": total})

    async def submit_command(self, user_id: str, command_text: str) -> CommandOutcome:
        """
        帶有重入保護的指令入口

        Raises:
            ValidationError: 空白指令
            CommandInProgressError: 前一個指令尚未完成
        """
        if not command_text or not command_text.strip():
            raise ValidationError("Command must not be empty")
        if user_id in self._in_flight:
            logger.warning(f"⚠️ {user_id} 的前一個指令仍在處理中，已拒絕新指令")
            raise CommandInProgressError(user_id)

        self._in_flight.add(user_id)
        previous = self.get_state(user_id)
        self._states[user_id] = previous.model_copy(update={"status": Status.ANALYZING})
        try:
            try:
                snippets = await self.store.get_snippets(user_id)
            except PersistenceError as e:
                logger.error(f"❌ 無法讀取檔案片段: {e.message}")
                next_state, failed = fallback_state(previous), True
            else:
                next_state, failed = await self._process(
                    user_id, command_text.strip(), previous, snippets
                )
                next_state = await self._apply_file_changes(user_id, snippets, next_state)
            self._states[user_id] = next_state
        finally:
            self._in_flight.discard(user_id)
            if self._states.get(user_id, previous).status == Status.ANALYZING:
                self._states[user_id] = previous

        return CommandOutcome(
            state=next_state,
            celebrate=not failed and should_celebrate(next_state),
            failed=failed,
        )
