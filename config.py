# config.py
import os


# --- LLM 配置 ---
LLM_API_URL = os.getenv("LLM_API_URL", "http://localhost:11434/api/chat")
LLM_MODEL = os.getenv("LLM_MODEL", "gemma3:27b-it-qat")
LLM_TIMEOUT = float(os.getenv("LLM_TIMEOUT", "60"))

# --- 檔案匯入 ---
SNIPPET_MAX_ROWS = int(os.getenv("SNIPPET_MAX_ROWS", "500"))
SPREADSHEET_EXTENSIONS = (".xlsx", ".xls")
DELIMITED_EXTENSIONS = (".csv", ".tsv", ".txt")

# --- 儲存 ---
# memory: 行程內儲存 (本機模式) / json: 寫入 BASE_STORAGE_DIR
STORE_BACKEND = os.getenv("STORE_BACKEND", "memory")
BASE_STORAGE_DIR = os.getenv("BASE_STORAGE_DIR", "workspace")

# --- 帳號 ---
MIN_PASSWORD_LENGTH = 6

# --- 對話 ---
# FINANCIAL 且信心分數超過此值時，前端觸發慶祝特效
CELEBRATION_THRESHOLD = 80

API_PORT = int(os.getenv("API_PORT", "8001"))

# --- 日誌 ---
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_DIR = os.getenv("LOG_DIR", "logs")
