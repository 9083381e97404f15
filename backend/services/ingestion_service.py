"""
檔案匯入正規化服務
將 CSV / Excel 上傳轉成統一的 FileSnippet (名稱 + 最多 500 筆的 CSV 片段 + 真實筆數)
"""

import asyncio
import csv
import io
import os
from dataclasses import dataclass, field
from typing import List, Optional

import pandas as pd

import config
from backend.models.business_models import FileSnippet
from backend.utils.exceptions import IngestionDiscard
from backend.utils.logger import get_logger

logger = get_logger(__name__)


@dataclass
class RawUpload:
    """一個尚未解析的上傳檔案"""

    name: str
    data: bytes


@dataclass
class IngestionResult:
    """一批上傳的解析結果"""

    snippets: List[FileSnippet] = field(default_factory=list)
    discarded: List[str] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.snippets


def decode_text(data: bytes) -> str:
    """先以 UTF-8 (含 BOM) 解碼，失敗則退回 latin-1"""
    try:
        return data.decode("utf-8-sig")
    except UnicodeDecodeError:
        return data.decode("latin-1")


def count_rows(content: str) -> int:
    """解析 CSV 片段並回傳資料列數 (不含標題)"""
    if not content or not content.strip():
        return 0
    try:
        df = pd.read_csv(io.StringIO(content), dtype=str, keep_default_na=False)
    except (pd.errors.EmptyDataError, pd.errors.ParserError):
        return 0
    return len(df)


def _to_csv(df: pd.DataFrame) -> str:
    return df.to_csv(index=False, lineterminator="\n")


def _is_blank_frame(df: pd.DataFrame) -> bool:
    """沒有資料列，或唯一一列全為空值"""
    if len(df) == 0:
        return True
    if len(df) == 1:
        return all(str(v).strip() == "" for v in df.iloc[0].tolist())
    return False


def _promote_header(df: pd.DataFrame) -> pd.DataFrame:
    """以第一列作為欄名，保留原始標題 (重複欄名不會被改成 a.1)"""
    if len(df) == 0:
        return df
    body = df.iloc[1:].reset_index(drop=True)
    body.columns = ["" if pd.isna(v) else str(v) for v in df.iloc[0].tolist()]
    return body


def _delimiter_for(name: str) -> Optional[str]:
    ext = os.path.splitext(name)[1].lower()
    if ext == ".tsv":
        return "\t"
    if ext == ".txt":
        return None  # 交給 pandas 的 python engine 自動判斷
    return ","


class IngestionService:
    """上傳檔案的解析與正規化"""

    def __init__(self, max_rows: int = None):
        self.max_rows = max_rows or config.SNIPPET_MAX_ROWS

    @staticmethod
    def is_spreadsheet(name: str) -> bool:
        return name.lower().endswith(config.SPREADSHEET_EXTENSIONS)

    def parse_delimited(self, name: str, data: bytes) -> FileSnippet:
        """
        解析純文字分隔檔

        真實筆數 = 非空白行數 - 1 (標題)；content 只保留前 max_rows 筆。

        Raises:
            IngestionDiscard: 沒有可用資料
        """
        text = decode_text(data)
        non_blank = [line for line in text.splitlines() if line.strip()]
        true_rows = max(0, len(non_blank) - 1)

        sep = _delimiter_for(name)
        read_kwargs = dict(
            header=None,
            dtype=str,
            keep_default_na=False,
            skip_blank_lines=True,
            nrows=self.max_rows + 1,
        )
        if sep is None:
            read_kwargs.update(sep=None, engine="python")
        else:
            read_kwargs.update(sep=sep)

        try:
            df = pd.read_csv(io.StringIO(text), **read_kwargs)
        except pd.errors.EmptyDataError:
            raise IngestionDiscard(name, "empty file")
        except (pd.errors.ParserError, ValueError, csv.Error) as e:
            raise IngestionDiscard(name, f"parse error: {e}")

        df = _promote_header(df)
        if _is_blank_frame(df):
            raise IngestionDiscard(name, "no data rows")

        logger.info(
            f"✂️ 已建立 {name} 的片段: 共 {true_rows} 筆，保留前 {min(len(df), self.max_rows)} 筆"
        )
        return FileSnippet(name=name, content=_to_csv(df), true_row_count=true_rows)

    def parse_spreadsheet(self, name: str, data: bytes) -> List[FileSnippet]:
        """
        解析活頁簿，每個工作表視為獨立的表格

        單一工作表時以活頁簿檔名命名，多個工作表時以工作表名稱命名。
        單一工作表解析失敗只略過該表。
        """
        try:
            workbook = pd.ExcelFile(io.BytesIO(data))
        except Exception as e:
            # openpyxl / xlrd 會拋出各自的例外型別
            raise IngestionDiscard(name, f"unreadable workbook: {e}")

        sheet_names = workbook.sheet_names
        stem = os.path.splitext(name)[0]
        snippets = []

        for sheet_name in sheet_names:
            snippet_name = (
                f"{sheet_name}.csv" if len(sheet_names) > 1 else f"{stem}.csv"
            )
            try:
                df = workbook.parse(sheet_name, header=None, dtype=str)
            except Exception as e:
                logger.warning(f"工作表 {name}/{sheet_name} 解析失敗，已略過: {e}")
                continue

            df = df.fillna("")
            if len(df.columns) > 0:
                # 全空的列不算資料
                df = df[~(df.apply(lambda col: col.str.strip()) == "").all(axis=1)]
            df = _promote_header(df)

            if _is_blank_frame(df):
                logger.info(f"工作表 {name}/{sheet_name} 沒有資料列，已略過")
                continue

            snippets.append(
                FileSnippet(
                    name=snippet_name,
                    content=_to_csv(df.head(self.max_rows)),
                    true_row_count=len(df),
                )
            )

        if not snippets:
            raise IngestionDiscard(name, "no usable sheets")
        return snippets

    def parse_file(self, upload: RawUpload) -> List[FileSnippet]:
        """依副檔名分派解析"""
        if self.is_spreadsheet(upload.name):
            return self.parse_spreadsheet(upload.name, upload.data)
        return [self.parse_delimited(upload.name, upload.data)]

    async def _parse_one(self, upload: RawUpload, result_slot: dict):
        try:
            result_slot["snippets"] = await asyncio.to_thread(self.parse_file, upload)
        except IngestionDiscard as e:
            logger.info(f"略過上傳檔案: {e.message}")
            result_slot["discarded"] = [upload.name]
        except Exception as e:
            logger.warning(f"解析 {upload.name} 失敗，已略過: {e}")
            result_slot["discarded"] = [upload.name]

    async def normalize(self, uploads: List[RawUpload]) -> IngestionResult:
        """
        解析一批上傳檔案

        每個檔案在獨立的執行緒解析，全部完成後才回傳；
        單一檔案失敗不影響同批次的其他檔案。
        """
        slots = [{} for _ in uploads]
        await asyncio.gather(
            *(self._parse_one(upload, slot) for upload, slot in zip(uploads, slots))
        )

        result = IngestionResult()
        for upload, slot in zip(uploads, slots):
            result.snippets.extend(slot.get("snippets", []))
            result.discarded.extend(slot.get("discarded", []))

        logger.info(
            f"📁 批次解析完成: {len(uploads)} 個檔案 -> {len(result.snippets)} 個表格"
            f"，略過 {len(result.discarded)} 個"
        )
        return result
