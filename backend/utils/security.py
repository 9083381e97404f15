"""
安全性工具
提供使用者 ID 與檔案名稱的清理與驗證
"""

import os
import re
from backend.utils.exceptions import SecurityError, ValidationError
from backend.utils.logger import get_logger

logger = get_logger(__name__)

MAX_ID_LENGTH = 100
MAX_FILENAME_LENGTH = 200


def sanitize_user_id(user_id: str) -> str:
    """
    清理並驗證使用者 ID

    Args:
        user_id: 原始使用者 ID

    Returns:
        清理後的使用者 ID

    Raises:
        ValidationError: 如果使用者 ID 無效
    """
    if not user_id or not isinstance(user_id, str):
        raise ValidationError("User ID must not be empty")

    # 只保留字母數字、底線、中線
    safe_id = re.sub(r"[^a-zA-Z0-9_-]", "", user_id)

    if not safe_id:
        logger.warning(f"無效的使用者 ID 被過濾: {user_id}")
        raise ValidationError(f"Invalid user ID: {user_id}")

    if len(safe_id) > MAX_ID_LENGTH:
        logger.warning(f"使用者 ID 過長 ({len(safe_id)} 字元): {safe_id[:50]}...")
        raise ValidationError(f"User ID too long (max {MAX_ID_LENGTH} characters)")

    if safe_id != user_id:
        logger.debug(f"使用者 ID 已清理: '{user_id}' -> '{safe_id}'")

    return safe_id


def sanitize_filename(filename: str) -> str:
    """
    清理並驗證檔案名稱

    Args:
        filename: 原始檔案名稱

    Returns:
        清理後的檔案名稱 (不含路徑)

    Raises:
        SecurityError: 如果檔案名稱無效
    """
    if not filename or not isinstance(filename, str):
        raise SecurityError("File name must not be empty")

    # 移除路徑部分，只保留檔案名稱 (同時處理 Windows 分隔符號)
    filename = os.path.basename(filename.replace("\\", "/")).strip()

    if not filename:
        raise SecurityError("File name must not be empty")

    # basename 已去掉路徑，只剩 . 與 .. 會指向目錄本身
    if filename in (".", ".."):
        logger.warning(f"偵測到檔案名稱路徑穿越嘗試: {filename}")
        raise SecurityError(f"File name contains illegal characters: {filename}")

    if len(filename) > MAX_FILENAME_LENGTH:
        raise SecurityError(
            f"File name too long (max {MAX_FILENAME_LENGTH} characters)",
            details={"filename": filename[:50]},
        )

    return filename
