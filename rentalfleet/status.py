from threading import Thread

import uvicorn
from fastapi import FastAPI

from .coordinator import Coordinator
from .logs import get_logger

logger = get_logger("STATUS")


def create_app(coordinator: Coordinator) -> FastAPI:
    app = FastAPI(title="rentalfleet coordinator")

    @app.get("/status")
    async def status():
        return coordinator.snapshot()

    @app.get("/workers/{entity_id}")
    async def owner(entity_id: int):
        index = coordinator.worker_for(entity_id)
        info = coordinator.roster[index]
        return {"entityId": entity_id, "worker": index, "address": info.address, "port": info.port}

    return app


def serve_status(coordinator: Coordinator, host: str, port: int) -> Thread:
    """Run the status app under uvicorn on a daemon thread."""
    server = uvicorn.Server(uvicorn.Config(create_app(coordinator), host=host, port=port, log_level="warning"))
    thread = Thread(target=server.run, name="status", daemon=True)
    thread.start()
    logger.info(f"Status view on http://{host}:{port}/status")
    return thread
