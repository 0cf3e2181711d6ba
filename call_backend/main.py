import logging

import uvicorn

from call_backend import config


def main() -> None:
    logging.basicConfig(
        level=getattr(logging, str(config.LOG_LEVEL).upper(), logging.INFO),
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    )
    logging.getLogger("httpx").setLevel(logging.WARNING)
    uvicorn.run("call_backend.server:create_app", factory=True, host=config.HOST, port=config.PORT)


if __name__ == "__main__":
    main()
