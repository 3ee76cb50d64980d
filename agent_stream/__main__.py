"""python -m agent_stream：启动 HTTP 服务。"""

import uvicorn

from agent_stream.api.app import create_app
from agent_stream.config.settings import settings
from agent_stream.infrastructure.logging.logger import logger


def main() -> None:
    logger.info(
        "Starting server",
        extra={"extra": {"host": settings.server_host, "port": settings.server_port}},
    )
    uvicorn.run(create_app(), host=settings.server_host, port=settings.server_port)


if __name__ == "__main__":
    main()
