import os
import sys

import pytest

sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from backend.utils.exceptions import SecurityError
from backend.utils.security import sanitize_filename


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("Q1..Q2.csv", "Q1..Q2.csv"),
        ("../../etc/passwd", "passwd"),
        ("C:\\Users\\dana\\sales.csv", "sales.csv"),
        ("  report.xlsx ", "report.xlsx"),
    ],
)
def test_filename_keeps_only_base_name(raw, expected):
    assert sanitize_filename(raw) == expected


@pytest.mark.parametrize("raw", ["", ".", "..", "reports/..", "dir/"])
def test_filename_rejects_directory_names(raw):
    with pytest.raises(SecurityError):
        sanitize_filename(raw)
