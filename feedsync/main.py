# feedsync/main.py

import os

from fastapi import FastAPI

from feedsync.core.logging_config import configure_logging
from feedsync.routes import feed_items, health, sync

configure_logging()

app = FastAPI(title="Feed Sync")

app.include_router(health.router)
app.include_router(feed_items.router)
app.include_router(sync.router)


def run():
    import uvicorn

    port = int(os.environ.get("PORT", 8000))
    uvicorn.run("feedsync.main:app", host="0.0.0.0", port=port, log_level="info")


if __name__ == "__main__":
    run()
