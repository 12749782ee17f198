import uvicorn

from blobsink.settings import load_settings


def main():
    settings = load_settings()
    uvicorn.run(
        "blobsink.ingest_app:create_app",
        factory=True,
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
    )
