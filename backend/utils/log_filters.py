import logging


class EndpointFilter(logging.Filter):
    """
    過濾特定路徑的 Uvicorn 訪問日誌 (前端輪詢用的路由)
    """

    def __init__(self, path: str, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.path = path

    def filter(self, record: logging.LogRecord) -> bool:
        # uvicorn.access 的 args: (remote_addr, method, path, http_version, status_code)
        args = record.args
        if isinstance(args, tuple) and len(args) >= 3:
            request_path = str(args[2])
            if self.path in request_path:  # 使用 in 支援 query params
                return False

        return self.path not in record.getMessage()


def add_log_filter(logger_name: str, path: str):
    logger = logging.getLogger(logger_name)
    logger.addFilter(EndpointFilter(path))
