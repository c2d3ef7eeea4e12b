"""Run the API server: python -m shopbridge"""
import uvicorn

from shopbridge.config import settings


def main() -> None:
    uvicorn.run(
        "shopbridge.api.main:app",
        host=settings.api_host,
        port=settings.api_port,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()
