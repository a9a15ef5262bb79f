import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI

from yoink.fastapi import api, captures, tasks
from yoink.fastapi.logging import AccessLogMiddleware


@asynccontextmanager
async def lifespan(app: FastAPI):  # pragma: no cover - startup path
    """Initialize globals (DB, services) in each worker process.

    Configuration is passed via the YOINK_CONFIG JSON env variable (set by the
    CLI entrypoint) so that uvicorn reload and multiprocess workers inherit it.
    """
    from yoink import globals
    from yoink.config import YoinkConfig

    try:
        config = YoinkConfig.from_json(os.environ["YOINK_CONFIG"])
        await globals.init(config)
    except (KeyError, ValueError) as e:
        logging.error(f"⚠️ Invalid configuration: {e}")
        raise

    yield

    await globals.tokens.instance.wait_background()


app = FastAPI(lifespan=lifespan, docs_url=None, redoc_url=None, openapi_url=None)
app.add_middleware(AccessLogMiddleware)

app.mount("/api/auth/", api.app)
app.mount("/api/captures/", captures.app)
app.mount("/api/tasks/", tasks.app)


@app.get("/api/health")
async def health():
    return {"status": "ok"}
