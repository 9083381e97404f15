import asyncio
import json

import requests
from pydantic import ValidationError as SchemaValidationError

import config
from backend.models.business_models import AIAnalysis
from backend.utils.exceptions import AIResponseError
from backend.utils.logger import get_logger

logger = get_logger(__name__)

SYSTEM_INSTRUCTION = (
    "You are a bilingual Business Analytics AI. Output structured JSON."
)

# 以 JSON schema 限制 LLM 的輸出結構 (Ollama 的 format 參數)
BUSINESS_STATE_SCHEMA = {
    "type": "object",
    "properties": {
        "status": {
            "type": "string",
            "enum": ["IDLE", "ANALYZING", "VISUALIZING"],
            "description": "Current processing state of the BI engine.",
        },
        "insightType": {
            "type": "string",
            "enum": ["FINANCIAL", "INVENTORY", "ALERT", "GENERAL"],
            "description": "The category of the business insight detected.",
        },
        "confidenceScore": {
            "type": "number",
            "description": "AI confidence level in the analysis (0-100).",
        },
        "recordsLoaded": {
            "type": "integer",
            "description": "Number of records currently being considered in context.",
        },
        "message": {
            "type": "string",
            "description": "The natural language response (Hindi or English) explaining the insight.",
        },
        "chartData": {
            "type": "object",
            "description": "Optional. Only populate if user asks to 'visualize', 'graph', or 'chart' something.",
            "properties": {
                "type": {"type": "string", "enum": ["bar", "pie", "line"]},
                "title": {"type": "string"},
                "data": {
                    "type": "array",
                    "items": {
                        "type": "object",
                        "properties": {
                            "name": {"type": "string"},
                            "value": {"type": "number"},
                        },
                        "required": ["name", "value"],
                    },
                },
            },
            "required": ["type", "title", "data"],
        },
        "tableData": {
            "type": "object",
            "description": "Optional. Only populate if user asks for 'table', 'list', 'raw data', or 'show me data'.",
            "properties": {
                "title": {"type": "string"},
                "columns": {"type": "array", "items": {"type": "string"}},
                "rows": {
                    "type": "array",
                    "items": {
                        "type": "object",
                        "properties": {
                            "data": {"type": "array", "items": {"type": "string"}}
                        },
                        "required": ["data"],
                    },
                },
            },
            "required": ["title", "columns", "rows"],
        },
    },
    "required": ["status", "insightType", "confidenceScore", "message"],
}


def build_prompt(command: str, context_bundle: str, records_loaded: int) -> str:
    return f"""
You are "Insight Desk", an advanced Business Intelligence AI.

ROLE:
- You act as a bridge between a business owner and their data.
- You are bilingual: speak fluent English and Hinglish (Hindi + English mix).
- You translate human questions into data insights, visual charts, and data tables.
- You can compare data across multiple files if provided.

CONTEXT:
- Current Records Loaded (Total): {records_loaded}
- Loaded Data Sources:
\"\"\"
{context_bundle}
\"\"\"

USER QUERY: "{command}"

INSTRUCTIONS:
1. Analyze the Data Sources to answer the query. If comparing files, reference them by name.
2. VISUALS: If user asks to "visualize", "show graph", "chart", or "plot", generate 'chartData'.
3. TABLES: If user asks to "show data", "table", "list", "rows", or "details", generate 'tableData'.
   - Populate 'columns' with relevant headers.
   - Populate 'rows' as objects containing a 'data' array with values matching the column order.
4. Categorize the query into FINANCIAL, INVENTORY, ALERT, or GENERAL.
5. Tone: Professional Business Analyst.

Output JSON only matching the schema.
"""


def parse_analysis(raw_text: str) -> AIAnalysis:
    """
    驗證 LLM 回覆並轉成 AIAnalysis

    Raises:
        AIResponseError: 不是合法 JSON 或不符合結構
    """
    if not raw_text or not raw_text.strip():
        raise AIResponseError("Empty response from AI analyst")

    text = raw_text.strip()
    # 部分模型會包上 ```json ... ``` 區塊
    if text.startswith("```"):
        text = text.strip("`")
        if text.lower().startswith("json"):
            text = text[4:]

    try:
        payload = json.loads(text)
    except json.JSONDecodeError as e:
        raise AIResponseError(
            f"AI response is not valid JSON: {e}", details={"raw": raw_text[:200]}
        )

    if not isinstance(payload, dict):
        raise AIResponseError("AI response must be a JSON object")

    try:
        return AIAnalysis.model_validate(payload)
    except SchemaValidationError as e:
        raise AIResponseError(
            "AI response does not match the business state schema",
            details={"errors": e.errors(include_url=False, include_context=False)},
        )


class LLMAnalyst:
    """對外部 LLM 服務的呼叫 (Ollama 相容的 /api/chat)"""

    def __init__(self, api_url: str = None, model: str = None, timeout: float = None):
        self.api_url = api_url or config.LLM_API_URL
        self.model = model or config.LLM_MODEL
        self.timeout = timeout or config.LLM_TIMEOUT

    def _request(self, prompt: str) -> str:
        """在線程池中執行的同步 HTTP 請求"""
        payload = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": SYSTEM_INSTRUCTION},
                {"role": "user", "content": prompt},
            ],
            "format": BUSINESS_STATE_SCHEMA,
            "stream": False,
        }
        try:
            response = requests.post(self.api_url, json=payload, timeout=self.timeout)
            response.raise_for_status()
            result = response.json()
        except requests.exceptions.Timeout:
            raise AIResponseError(
                f"LLM request timed out ({self.timeout}s)",
                details={"url": self.api_url},
            )
        except requests.exceptions.ConnectionError:
            raise AIResponseError(
                "LLM connection failed", details={"url": self.api_url}
            )
        except requests.exceptions.HTTPError as e:
            raise AIResponseError(
                f"LLM returned an error status: {e}", details={"url": self.api_url}
            )
        except requests.exceptions.RequestException as e:
            raise AIResponseError(f"LLM request failed: {e}", details={"url": self.api_url})
        except ValueError as e:
            raise AIResponseError(f"LLM returned a non-JSON body: {e}")

        content = (result.get("message") or {}).get("content")
        if not content:
            raise AIResponseError("No response from AI analyst")
        return content

    async def analyze(
        self, command: str, context_bundle: str, records_loaded: int
    ) -> AIAnalysis:
        """
        送出指令與資料上下文，取得結構化的分析結果

        Args:
            command: 使用者指令
            context_bundle: 已載入檔案的文字上下文
            records_loaded: 目前的資料筆數

        Raises:
            AIResponseError: 任何網路或結構錯誤
        """
        prompt = build_prompt(command, context_bundle, records_loaded)
        loop = asyncio.get_running_loop()
        raw = await loop.run_in_executor(None, self._request, prompt)
        logger.debug(f"LLM raw response: {raw[:200]}")
        return parse_analysis(raw)
