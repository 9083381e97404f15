import asyncio
import os
import sys
from unittest.mock import AsyncMock, MagicMock

import pytest

sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from backend.models.business_models import (
    AIAnalysis,
    BusinessState,
    ChartType,
    FileSnippet,
    InsightType,
    Sender,
    Status,
)
from backend.services.orchestrator_service import (
    FALLBACK_MESSAGE,
    ConversationOrchestrator,
    build_context_bundle,
    reconcile_records,
)
from backend.services.ingestion_service import RawUpload
from backend.services.session_store import InMemorySessionStore
from backend.services.upload_service import UploadService
from backend.utils.exceptions import (
    AIResponseError,
    CommandInProgressError,
    PersistenceError,
    ValidationError,
)

USER = "user_alice"

SNIPPET = FileSnippet(name="sales.csv", content="month,total\nJan,10\nFeb,20\n", true_row_count=900)


def make_analysis(**overrides) -> AIAnalysis:
    payload = {
        "status": "IDLE",
        "insightType": "GENERAL",
        "confidenceScore": 70,
        "recordsLoaded": 0,
        "message": "Sales look healthy.",
    }
    payload.update(overrides)
    return AIAnalysis.model_validate(payload)


def make_orchestrator(analysis=None, side_effect=None):
    store = InMemorySessionStore()
    analyst = MagicMock()
    analyst.analyze = AsyncMock(return_value=analysis, side_effect=side_effect)
    return ConversationOrchestrator(store, analyst), store, analyst


@pytest.mark.parametrize(
    "ai_count, previous, files, expected",
    [
        (0, 500, 0, 0),  # 沒有檔案一律為 0
        (120, 500, 0, 0),
        (0, 500, 1, 500),  # AI 回報 0 時沿用先前的值
        (0, 0, 1, 0),
        (42, 500, 2, 42),  # 其餘接受 AI 的值
    ],
)
def test_reconcile_records(ai_count, previous, files, expected):
    assert reconcile_records(ai_count, previous, files) == expected


def test_context_bundle_uses_parsed_row_count():
    """上下文的筆數以解析 content 為準，而不是 trueRowCount"""
    bundle = build_context_bundle([SNIPPET])
    assert "--- SOURCE FILE: sales.csv ---" in bundle
    assert "Rows Available: 2" in bundle
    assert "Jan,10" in bundle


def test_context_bundle_without_files():
    assert build_context_bundle([]) == "No files uploaded."


@pytest.mark.asyncio
async def test_no_files_forces_zero_records():
    orchestrator, _, _ = make_orchestrator(make_analysis(recordsLoaded=0))
    current = BusinessState(records_loaded=500)

    state = await orchestrator.handle_command(USER, "how many rows?", current, [])

    assert state.records_loaded == 0


@pytest.mark.asyncio
async def test_zero_from_ai_carries_previous_count_forward():
    orchestrator, _, _ = make_orchestrator(make_analysis(recordsLoaded=0))
    current = BusinessState(records_loaded=500)

    state = await orchestrator.handle_command(USER, "summarize", current, [SNIPPET])

    assert state.records_loaded == 500


@pytest.mark.asyncio
async def test_success_persists_user_then_system_message():
    chart = {"type": "bar", "title": "Sales by month", "data": [{"name": "Jan", "value": 10}]}
    orchestrator, store, analyst = make_orchestrator(make_analysis(chartData=chart))

    state = await orchestrator.handle_command(
        USER, "show me a chart of sales by month", BusinessState(), [SNIPPET]
    )

    messages = await store.list_messages(USER)
    assert [m.sender for m in messages] == [Sender.USER, Sender.SYSTEM]
    assert messages[0].text == "show me a chart of sales by month"
    assert messages[1].text == "Sales look healthy."
    assert messages[1].chart_data.title == "Sales by month"
    assert state.chart_data.type in set(ChartType)
    assert len(state.chart_data.data) > 0

    command, bundle, records = analyst.analyze.call_args.args
    assert command == "show me a chart of sales by month"
    assert "sales.csv" in bundle
    assert records == 0


@pytest.mark.asyncio
async def test_ai_failure_returns_fallback_state():
    """AI 失敗時回傳 IDLE / ALERT，且不拋出例外"""
    orchestrator, store, _ = make_orchestrator(
        side_effect=AIResponseError("LLM connection failed")
    )
    current = BusinessState(
        status=Status.ANALYZING, insight_type=InsightType.INVENTORY, confidence_score=55, records_loaded=300
    )

    state = await orchestrator.handle_command(USER, "hello", current, [SNIPPET])

    assert state.status == Status.IDLE
    assert state.insight_type == InsightType.ALERT
    assert state.message == FALLBACK_MESSAGE
    assert state.records_loaded == 300
    assert state.confidence_score == 55

    # fallback 不寫入系統訊息
    messages = await store.list_messages(USER)
    assert [m.sender for m in messages] == [Sender.USER]


@pytest.mark.asyncio
async def test_unexpected_error_is_also_normalized():
    orchestrator, _, _ = make_orchestrator(side_effect=ConnectionError("boom"))
    state = await orchestrator.handle_command(USER, "hello", BusinessState(), [])
    assert state.insight_type == InsightType.ALERT
    assert state.message


@pytest.mark.asyncio
async def test_system_message_persistence_failure_keeps_state():
    """系統訊息寫入失敗只記錄，不回滾狀態"""
    orchestrator, store, _ = make_orchestrator(make_analysis(recordsLoaded=7))
    original_put = store.put
    calls = []

    async def flaky_put(user_id, message):
        calls.append(message.sender)
        if message.sender == Sender.SYSTEM:
            raise PersistenceError("store offline")
        return await original_put(user_id, message)

    store.put = flaky_put

    state = await orchestrator.handle_command(USER, "hi", BusinessState(), [SNIPPET])

    assert calls == [Sender.USER, Sender.SYSTEM]
    assert state.message == "Sales look healthy."
    assert state.records_loaded == 7


@pytest.mark.asyncio
async def test_submit_command_sets_state_and_celebrates():
    orchestrator, store, _ = make_orchestrator(
        make_analysis(insightType="FINANCIAL", confidenceScore=92, recordsLoaded=600)
    )
    await store.put_file(USER, "sales.csv", SNIPPET.content, true_row_count=600)

    outcome = await orchestrator.submit_command(USER, "  revenue trend?  ")

    assert outcome.celebrate is True
    assert outcome.failed is False
    assert orchestrator.get_state(USER).records_loaded == 600
    assert not orchestrator.is_processing(USER)


@pytest.mark.asyncio
async def test_submit_command_failure_is_flagged():
    orchestrator, _, _ = make_orchestrator(side_effect=AIResponseError("bad payload"))
    outcome = await orchestrator.submit_command(USER, "hello")
    assert outcome.failed is True
    assert outcome.celebrate is False
    assert orchestrator.get_state(USER).status == Status.IDLE


@pytest.mark.asyncio
async def test_empty_command_is_rejected():
    orchestrator, _, _ = make_orchestrator(make_analysis())
    with pytest.raises(ValidationError):
        await orchestrator.submit_command(USER, "   ")


@pytest.mark.asyncio
async def test_second_command_is_rejected_while_first_in_flight():
    """前一個指令未完成時，新的指令會被拒絕"""
    release = asyncio.Event()
    started = asyncio.Event()

    async def slow_analyze(command, bundle, records):
        started.set()
        await release.wait()
        return make_analysis()

    orchestrator, _, analyst = make_orchestrator()
    analyst.analyze = AsyncMock(side_effect=slow_analyze)

    first = asyncio.create_task(orchestrator.submit_command(USER, "first"))
    await started.wait()

    assert orchestrator.is_processing(USER)
    assert orchestrator.get_state(USER).status == Status.ANALYZING
    with pytest.raises(CommandInProgressError):
        await orchestrator.submit_command(USER, "second")

    release.set()
    outcome = await first
    assert outcome.state.message == "Sales look healthy."
    assert not orchestrator.is_processing(USER)
    assert analyst.analyze.await_count == 1


@pytest.mark.asyncio
async def test_sync_records_sums_true_row_counts_and_resets_when_empty():
    orchestrator, store, _ = make_orchestrator(make_analysis())
    await store.put_file(USER, "a.csv", "x\n1\n", true_row_count=600)
    await store.put_file(USER, "b.csv", "x\n1\n", true_row_count=40)

    state = await orchestrator.sync_records(USER)
    assert state.records_loaded == 640

    await store.delete_all_files(USER)
    state = await orchestrator.sync_records(USER)
    assert state == BusinessState()


@pytest.mark.asyncio
async def test_upload_during_command_keeps_loaded_record_count():
    """指令處理期間上傳檔案，完成後 recordsLoaded 仍等於已載入的筆數"""
    release = asyncio.Event()
    started = asyncio.Event()

    async def slow_analyze(command, bundle, records):
        started.set()
        await release.wait()
        return make_analysis(recordsLoaded=0)

    orchestrator, store, analyst = make_orchestrator()
    analyst.analyze = AsyncMock(side_effect=slow_analyze)
    uploads = UploadService(store, orchestrator)

    command = asyncio.create_task(orchestrator.submit_command(USER, "summarize"))
    await started.wait()

    csv = "a,b\n" + "".join(f"{i},{i}\n" for i in range(600))
    await uploads.upload_batch(USER, [RawUpload("sales.csv", csv.encode("utf-8"))])
    assert orchestrator.get_state(USER).records_loaded == 600

    release.set()
    outcome = await command

    assert outcome.state.records_loaded == 600
    assert orchestrator.get_state(USER).records_loaded == 600
    assert len(await store.get_snippets(USER)) == 1
