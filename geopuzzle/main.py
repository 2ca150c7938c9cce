import logging
from pathlib import Path

from fastapi import FastAPI

from geopuzzle.api.routes import router
from geopuzzle.catalog.registry import load_catalog
from geopuzzle.settings import settings_from_env

app = FastAPI(title="geopuzzle", version="0.1.0")
app.include_router(router)

logger = logging.getLogger(__name__)

# Use an absolute path so running from a different CWD (e.g., `pytest` from tests/) works.
_project_root = Path(__file__).resolve().parents[1]


@app.on_event("startup")
async def _startup() -> None:
    settings = settings_from_env()
    logging.basicConfig(level=settings.log_level)

    app.state.settings = settings
    app.state.catalog = load_catalog(root=_project_root, strict=settings.strict_catalog)
    logger.info(
        "Catalog loaded: %d items in %d regions",
        len(app.state.catalog),
        len(app.state.catalog.groups),
    )


@app.get("/info")
async def info() -> dict[str, str]:
    return {"name": "geopuzzle", "version": "0.1.0"}
