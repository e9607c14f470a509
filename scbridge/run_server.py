import logging

import uvicorn

from . import config


def configure_logging(level: str = config.LOG_LEVEL) -> None:
    # uvicorn only sets up its own loggers; scbridge.* go through the root one
    logging.basicConfig(
        level=level.upper(),
        format="%(levelname)s:     [%(name)s] %(message)s",
    )


def main():
    configure_logging()
    uvicorn.run(
        "scbridge.main:app",
        host=config.HOST,
        port=config.PORT,
        reload=False,  # reload would spawn a second sclang
        log_level=config.LOG_LEVEL,
    )


if __name__ == "__main__":
    main()
