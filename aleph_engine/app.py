from fastapi import FastAPI

from aleph_engine.assets import AssetSource
from aleph_engine.config import (
    EngineConfig,
    build_assets,
    build_gateway,
    build_speech,
    load_config,
)
from aleph_engine.gateway import GenerationGateway
from aleph_engine.narration import Speech
from aleph_engine.routes import new_session, router
from aleph_engine.storage import Storage


def create_app(
    config: EngineConfig | None = None,
    gateway: GenerationGateway | None = None,
    assets: AssetSource | None = None,
    speech: Speech | None = None,
) -> FastAPI:
    """Build the app. Collaborators not passed in are built from config."""
    config = config or load_config()

    app = FastAPI(title="Aleph Engine")
    app.state.config = config
    app.state.storage = Storage(config.data_dir)
    app.state.gateway = gateway or build_gateway(config)
    app.state.assets = assets or build_assets(config)
    app.state.speech = speech or build_speech(config)
    app.state.session = new_session(app)
    app.include_router(router, prefix="/api")
    return app
