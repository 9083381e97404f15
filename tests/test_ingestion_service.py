import io
import os
import sys

import pandas as pd
import pytest

sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from backend.services.ingestion_service import (
    IngestionService,
    RawUpload,
    count_rows,
    decode_text,
)
from backend.utils.exceptions import IngestionDiscard


def make_csv(rows: int) -> bytes:
    lines = ["a,b"] + [f"{i},{i * 2}" for i in range(rows)]
    return ("\n".join(lines) + "\n").encode("utf-8")


def make_workbook(sheets: dict) -> bytes:
    buffer = io.BytesIO()
    with pd.ExcelWriter(buffer, engine="openpyxl") as writer:
        for sheet_name, df in sheets.items():
            df.to_excel(writer, sheet_name=sheet_name, index=False)
    return buffer.getvalue()


def test_csv_snippet_is_capped_at_500_rows():
    """600 筆的 CSV 只保留 500 筆，但真實筆數為 600"""
    snippet = IngestionService().parse_delimited("sales.csv", make_csv(600))

    assert snippet.name == "sales.csv"
    assert snippet.true_row_count == 600
    assert count_rows(snippet.content) == 500

    df = pd.read_csv(io.StringIO(snippet.content))
    assert list(df.columns) == ["a", "b"]
    assert df.iloc[0].tolist() == [0, 0]


def test_true_row_count_ignores_blank_lines():
    data = b"a,b\n1,2\n\n   \n3,4\n"
    snippet = IngestionService().parse_delimited("x.csv", data)
    assert snippet.true_row_count == 2
    assert count_rows(snippet.content) == 2


def test_header_only_file_is_discarded():
    with pytest.raises(IngestionDiscard):
        IngestionService().parse_delimited("empty.csv", b"a,b\n")


def test_single_blank_row_is_discarded():
    with pytest.raises(IngestionDiscard):
        IngestionService().parse_delimited("blank.csv", b"a,b\n,\n")


def test_empty_file_is_discarded():
    with pytest.raises(IngestionDiscard):
        IngestionService().parse_delimited("nothing.csv", b"")


def test_tsv_uses_tab_delimiter():
    snippet = IngestionService().parse_delimited("stock.tsv", b"item\tqty\nbolt\t10\n")
    df = pd.read_csv(io.StringIO(snippet.content))
    assert list(df.columns) == ["item", "qty"]
    assert df.iloc[0]["item"] == "bolt"


def test_decode_text_falls_back_to_latin1():
    assert decode_text("café".encode("latin-1")) == "café"
    assert decode_text("\ufeffa,b".encode("utf-8")) == "a,b"


def test_single_sheet_workbook_is_named_after_file():
    data = make_workbook({"Sheet1": pd.DataFrame({"month": ["Jan", "Feb"], "sales": [10, 20]})})
    snippets = IngestionService().parse_spreadsheet("report.xlsx", data)

    assert [s.name for s in snippets] == ["report.csv"]
    assert snippets[0].true_row_count == 2


def test_multi_sheet_workbook_names_each_sheet_and_skips_empty():
    data = make_workbook(
        {
            "Sales": pd.DataFrame({"month": ["Jan"], "total": [5]}),
            "Stock": pd.DataFrame({"item": ["a", "b", "c"], "qty": [1, 2, 3]}),
            "Notes": pd.DataFrame(columns=["text"]),
        }
    )
    snippets = IngestionService().parse_spreadsheet("book.xlsx", data)

    assert [s.name for s in snippets] == ["Sales.csv", "Stock.csv"]
    assert [s.true_row_count for s in snippets] == [1, 3]


def test_workbook_sheet_is_capped():
    df = pd.DataFrame({"n": list(range(700))})
    snippets = IngestionService(max_rows=500).parse_spreadsheet("big.xlsx", make_workbook({"S": df}))
    assert snippets[0].true_row_count == 700
    assert count_rows(snippets[0].content) == 500


@pytest.mark.asyncio
async def test_batch_failure_does_not_abort_siblings():
    """單一檔案解析失敗不影響同批次的其他檔案"""
    uploads = [
        RawUpload("good.csv", make_csv(3)),
        RawUpload("broken.xlsx", b"this is not a workbook"),
        RawUpload("empty.csv", b"a,b\n"),
    ]
    result = await IngestionService().normalize(uploads)

    assert [s.name for s in result.snippets] == ["good.csv"]
    assert sorted(result.discarded) == ["broken.xlsx", "empty.csv"]


@pytest.mark.asyncio
async def test_batch_with_no_usable_rows_is_empty():
    result = await IngestionService().normalize([RawUpload("empty.csv", b"a,b\n")])
    assert result.is_empty
    assert result.snippets == []


def test_count_rows_of_empty_content():
    assert count_rows("") == 0
    assert count_rows("a,b\n") == 0


def test_duplicate_headers_are_kept_verbatim():
    """重複欄名照原樣保存，不會變成 a.1"""
    snippet = IngestionService().parse_delimited("dup.csv", b"a,a,b\n1,2,3\n4,5,6\n")

    assert snippet.content.splitlines()[0] == "a,a,b"
    assert snippet.content.splitlines()[1] == "1,2,3"
    assert snippet.true_row_count == 2


def test_duplicate_headers_in_workbook_are_kept():
    buffer = io.BytesIO()
    with pd.ExcelWriter(buffer, engine="openpyxl") as writer:
        pd.DataFrame([["qty", "qty"], ["1", "2"]]).to_excel(writer, header=False, index=False)
    snippets = IngestionService().parse_spreadsheet("dup.xlsx", buffer.getvalue())

    assert snippets[0].content.splitlines()[0] == "qty,qty"
    assert snippets[0].true_row_count == 1
