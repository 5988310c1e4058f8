from fastapi import FastAPI
from contextlib import asynccontextmanager
from functools import partial
from motor.motor_asyncio import AsyncIOMotorClient
from toolhub.pkg.config.config import settings
from toolhub.pkg.redisclient.redisclient import BrokerChannel, PingCounter
from toolhub.repository.repository import Repository
from toolhub.service.service import Service
from toolhub.service.relay_service import RequestRelay
from toolhub.service.session_registry import SessionRegistry
from toolhub.service.stream_service import StreamService
from toolhub.service.tools import create_tool_server
from toolhub.api.handlers import HandlerFactory
from toolhub.api.routes.router import create_router, create_root_router
import logging

# Setup logging
logging.basicConfig(
    level=settings.LOG_LEVEL,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[
        logging.StreamHandler()
    ]
)

# Silence pymongo debug logs
logging.getLogger('pymongo').setLevel(logging.WARNING)

logger = logging.getLogger(__name__)
logger.info("Logger initialized successfully")

def init_db():
    global client
    client = AsyncIOMotorClient(settings.MONGO_URI, uuidRepresentation='standard')
    return client[settings.MONGO_DB]

@asynccontextmanager
async def lifespan(app : FastAPI):
    logger.info("starting application...")
    db = init_db()
    repo = Repository(db, logger)

    # Initialize database collections and indexes
    await repo.ensure_collections()

    # The process cannot relay anything without the broker; let startup fail
    broker = BrokerChannel(
        settings.broker_url,
        logging.getLogger("toolhub.broker"),
        subscribe_timeout=settings.SUBSCRIBE_TIMEOUT,
    )
    await broker.connect()

    service = Service(repo, PingCounter(broker.client, logger), logger)
    registry = SessionRegistry(logging.getLogger("toolhub.sessions"))
    server_factory = partial(create_tool_server, settings.SERVER_NAME, settings.SERVER_VERSION, logger)
    streams = StreamService.from_settings(registry, broker, server_factory, logger, settings)
    relay = RequestRelay(broker, logging.getLogger("toolhub.relay"), timeout=settings.REQUEST_TIMEOUT)
    handlers = HandlerFactory(service, logger, relay=relay, streams=streams)

    app.include_router(
       create_router(handlers, logger), prefix="/api/v1"
    )
    app.include_router(create_root_router(handlers, logger))
    yield
    # Shutdown
    logger.info("shutting down application...")
    await streams.close_all()
    await registry.close_all()
    await broker.close()
    client.close()

app = FastAPI(
    title="Toolhub API",
    description="Agent and tool registry with a tool protocol bridge",
    version=settings.SERVER_VERSION,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
    lifespan=lifespan
)
