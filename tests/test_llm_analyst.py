import json
import os
import sys
from unittest.mock import MagicMock, patch

import pytest
import requests

sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from backend.models.business_models import InsightType, Status
from core_logic.llm_analyst import LLMAnalyst, build_prompt, parse_analysis
from backend.utils.exceptions import AIResponseError

VALID_PAYLOAD = {
    "status": "VISUALIZING",
    "insightType": "FINANCIAL",
    "confidenceScore": 87.6,
    "recordsLoaded": 600,
    "message": "Revenue grew 12% month over month.",
    "chartData": {
        "type": "line",
        "title": "Revenue",
        "data": [{"name": "Jan", "value": 10}, {"name": "Feb", "value": 11.2}],
    },
    "tableData": {"title": "Top rows", "columns": ["month", "total"], "rows": [{"data": ["Jan", 10]}]},
}


def ollama_response(content: str, status_code: int = 200):
    response = MagicMock()
    response.status_code = status_code
    response.json.return_value = {"message": {"role": "assistant", "content": content}}
    if status_code >= 400:
        response.raise_for_status.side_effect = requests.exceptions.HTTPError(f"{status_code} error")
    return response


def test_parse_valid_payload():
    analysis = parse_analysis(json.dumps(VALID_PAYLOAD))

    assert analysis.status == Status.VISUALIZING
    assert analysis.insight_type == InsightType.FINANCIAL
    assert analysis.confidence_score == 88
    assert analysis.chart_data.data[1].value == 11.2
    # 表格值一律轉成字串
    assert analysis.table_data.rows[0].data == ["Jan", "10"]


def test_parse_strips_code_fence():
    raw = "```json\n" + json.dumps(VALID_PAYLOAD) + "\n```"
    assert parse_analysis(raw).records_loaded == 600


@pytest.mark.parametrize(
    "raw",
    [
        "",
        "not json at all",
        "[1, 2, 3]",
        json.dumps({k: v for k, v in VALID_PAYLOAD.items() if k != "message"}),
        json.dumps({**VALID_PAYLOAD, "message": "   "}),
        json.dumps({**VALID_PAYLOAD, "insightType": "GOSSIP"}),
        json.dumps({**VALID_PAYLOAD, "chartData": {"type": "radar", "title": "x", "data": []}}),
    ],
)
def test_parse_rejects_malformed_payloads(raw):
    with pytest.raises(AIResponseError):
        parse_analysis(raw)


def test_prompt_contains_context_and_record_count():
    prompt = build_prompt("top products?", "--- SOURCE FILE: sales.csv ---", 600)
    assert "Current Records Loaded (Total): 600" in prompt
    assert "sales.csv" in prompt
    assert 'USER QUERY: "top products?"' in prompt


@pytest.mark.asyncio
async def test_analyze_sends_schema_and_parses_reply():
    analyst = LLMAnalyst(api_url="http://llm.local/api/chat", model="test-model", timeout=5)

    with patch("core_logic.llm_analyst.requests.post", return_value=ollama_response(json.dumps(VALID_PAYLOAD))) as mock_post:
        analysis = await analyst.analyze("chart revenue", "ctx", 600)

    assert analysis.message.startswith("Revenue grew")
    url = mock_post.call_args.args[0]
    body = mock_post.call_args.kwargs["json"]
    assert url == "http://llm.local/api/chat"
    assert body["model"] == "test-model"
    assert body["stream"] is False
    assert "message" in body["format"]["required"]
    assert mock_post.call_args.kwargs["timeout"] == 5


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "side_effect",
    [
        requests.exceptions.Timeout("slow"),
        requests.exceptions.ConnectionError("down"),
    ],
)
async def test_analyze_network_errors_raise_ai_response_error(side_effect):
    analyst = LLMAnalyst(api_url="http://llm.local/api/chat")
    with patch("core_logic.llm_analyst.requests.post", side_effect=side_effect):
        with pytest.raises(AIResponseError):
            await analyst.analyze("hi", "ctx", 0)


@pytest.mark.asyncio
async def test_analyze_http_error_status():
    analyst = LLMAnalyst(api_url="http://llm.local/api/chat")
    with patch("core_logic.llm_analyst.requests.post", return_value=ollama_response("", 500)):
        with pytest.raises(AIResponseError):
            await analyst.analyze("hi", "ctx", 0)


@pytest.mark.asyncio
async def test_analyze_empty_content():
    analyst = LLMAnalyst(api_url="http://llm.local/api/chat")
    with patch("core_logic.llm_analyst.requests.post", return_value=ollama_response("")):
        with pytest.raises(AIResponseError):
            await analyst.analyze("hi", "ctx", 0)
