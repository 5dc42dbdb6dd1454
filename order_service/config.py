import os

# Hosted data API. When unset the service falls back to the local SQL database.
DATA_API_URL = os.getenv("DATA_API_URL", "")
DATA_API_TOKEN = os.getenv("DATA_API_TOKEN", "")

# Get DB connection string from environment variables.
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./orders.db")

# RabbitMQ settings for notifications and cache invalidation events.
RABBITMQ_HOST = os.getenv("RABBITMQ_HOST", "rabbitmq")
EVENTS_EXCHANGE = os.getenv("EVENTS_EXCHANGE", "events")
USE_MESSAGE_BUS = os.getenv("USE_MESSAGE_BUS", "0").strip().lower() in {"1", "true", "yes"}

# Fan-out width of a single save phase and transport timeout (seconds).
SAVE_MAX_WORKERS = int(os.getenv("SAVE_MAX_WORKERS", "8"))
REQUEST_TIMEOUT = float(os.getenv("REQUEST_TIMEOUT", "10"))

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
