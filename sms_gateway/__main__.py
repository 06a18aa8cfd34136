import uvicorn

from sms_gateway.config import get_settings


def main() -> None:
    settings = get_settings()
    # uvicorn turns SIGTERM into a lifespan shutdown and exits with status 0
    uvicorn.run("sms_gateway.main:app", host=settings.host, port=settings.port, log_config=None)


if __name__ == "__main__":
    main()
