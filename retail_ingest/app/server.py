"""HTTP 服务启动入口。

使用方式：
    python -m retail_ingest.app.server
    retail-ingest-server
"""

from __future__ import annotations

import logging

import uvicorn
from dotenv import load_dotenv

from retail_ingest.app.api import create_app
from retail_ingest.core.config import get_api_host, get_api_port, get_log_level


def run() -> None:
    """加载 .env、配置日志并启动 uvicorn。"""
    load_dotenv()
    logging.basicConfig(level=get_log_level(), format="%(asctime)s %(levelname)s %(name)s - %(message)s")
    uvicorn.run(create_app(), host=get_api_host(), port=get_api_port())


if __name__ == "__main__":
    run()
