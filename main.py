import sys
import uvicorn

from core.logger import setup_logging, logger


def main():
    setup_logging()

    host = "0.0.0.0"
    port = 8000
    if len(sys.argv) > 1:
        port = int(sys.argv[1])

    logger.info("Starting API...", host=host, port=port)
    uvicorn.run("api.main:app", host=host, port=port, log_level="info")


if __name__ == "__main__":
    try:
        main()
    except (KeyboardInterrupt, SystemExit):
        logger.info("Application stopped.")
