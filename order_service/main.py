import logging
from contextlib import asynccontextmanager
from functools import lru_cache

from fastapi import Depends, FastAPI, HTTPException

from . import config
from .cache import DETAIL, BusCacheInvalidator, ReadCache
from .database import init_db
from .errors import DataProviderError, SaveError
from .messaging import RabbitMQProducer
from .notifications import BusNotifier, LoggingNotifier
from .providers import DataProvider, RestDataProvider, SqlDataProvider
from .schemas import ORDERS_VIEW
from .sequencer import OrderSaveSequencer
from .service import OrderSaveService
from .store import OrderAggregate

logging.basicConfig(
    level=config.LOG_LEVEL,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)


# --- Components, built once per process ---

@lru_cache()
def get_provider() -> DataProvider:
    if config.DATA_API_URL:
        logger.info("Using data API at %s", config.DATA_API_URL)
        return RestDataProvider()
    # Create database tables on startup if they don't exist.
    init_db()
    logger.info("Using local database %s", config.DATABASE_URL)
    return SqlDataProvider()


@lru_cache()
def get_cache() -> ReadCache:
    return ReadCache()


@lru_cache()
def get_producer() -> RabbitMQProducer:
    return RabbitMQProducer()


@lru_cache()
def get_service() -> OrderSaveService:
    provider = get_provider()
    if config.USE_MESSAGE_BUS:
        invalidator = BusCacheInvalidator(get_producer(), local=get_cache())
        notifier = BusNotifier(get_producer())
    else:
        invalidator = get_cache()
        notifier = LoggingNotifier()
    return OrderSaveService(OrderSaveSequencer(provider, invalidator), notifier)


@asynccontextmanager
async def lifespan(app: FastAPI):
    if config.USE_MESSAGE_BUS:
        from .consumers import start_consumer_thread
        start_consumer_thread(get_cache())
    yield
    if get_service.cache_info().currsize:
        get_service().sequencer.close()
    if get_producer.cache_info().currsize:
        get_producer().close()


app = FastAPI(title="Order Save Service", lifespan=lifespan)


def _load(provider: DataProvider, order_id: int) -> OrderAggregate:
    try:
        return OrderAggregate.load(provider, order_id)
    except DataProviderError as e:
        if e.remote_status == 404:
            raise HTTPException(status_code=404, detail="Order not found") from e
        raise e.to_http_exception() from e


# --- Endpoints ---

@app.get("/")
def root():
    """Health check endpoint."""
    return {"message": "Order service is running"}


@app.get("/api/v1/orders/{order_id}")
def get_order(order_id: int, provider: DataProvider = Depends(get_provider),
              cache: ReadCache = Depends(get_cache)):
    """Full order aggregate, served from the read cache while it is fresh."""
    aggregate = cache.get_or_load(ORDERS_VIEW, DETAIL, order_id, lambda: _load(provider, order_id))
    return aggregate.model_dump(mode="json")


@app.post("/api/v1/orders")
def create_order(aggregate: OrderAggregate, service: OrderSaveService = Depends(get_service)):
    aggregate.header.order_id = None
    try:
        order_id = service.save_order(aggregate, is_edit=False)
    except SaveError as e:
        raise e.to_http_exception() from e
    return {"status": "created", "order_id": order_id, "aggregate": aggregate.model_dump(mode="json")}


@app.put("/api/v1/orders/{order_id}")
def update_order(order_id: int, aggregate: OrderAggregate,
                 provider: DataProvider = Depends(get_provider),
                 service: OrderSaveService = Depends(get_service)):
    """
    Replace an order with the submitted aggregate.

    The header must carry the version it was loaded with; children missing
    from the body are deleted.
    """
    aggregate.header.order_id = order_id
    aggregate.rebase(_load(provider, order_id))
    try:
        service.save_order(aggregate, is_edit=True)
    except SaveError as e:
        raise e.to_http_exception() from e
    return {"status": "updated", "order_id": order_id, "aggregate": aggregate.model_dump(mode="json")}
