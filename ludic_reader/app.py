from fastapi import FastAPI

from ludic_reader.config import Settings, build_embedder, load_settings
from ludic_reader.embeddings import Embedder
from ludic_reader.index import IndexRegistry
from ludic_reader.pipeline.orchestrator import ReaderSession
from ludic_reader.routes import router
from ludic_reader.storage import Storage
from ludic_reader.validation import AnswerValidator


def create_app(settings: Settings | None = None, embedder: Embedder | None = None) -> FastAPI:
    settings = settings or load_settings()
    embedder = embedder or build_embedder(settings)

    storage = Storage(settings.data_dir)
    registry = IndexRegistry(settings.data_dir, embedder)

    app = FastAPI(title="Ludic Reader")
    app.state.settings = settings
    app.state.storage = storage
    app.state.registry = registry
    app.state.session = ReaderSession(storage, AnswerValidator(embedder, registry), registry)
    app.include_router(router, prefix="/api")
    return app
