import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.exc import SQLAlchemyError

from slotbook.core import config
from slotbook.database import Base, engine, ensure_appointment_schema, ensure_provider_schema
from slotbook.models import appointment, provider  # noqa: F401
from slotbook.routes import availability_routes, booking_routes, provider_routes
from slotbook.scheduling.engine import get_scheduling_engine
from slotbook.scheduling.tasks import ExpirySweeper

app = FastAPI(title='Slotbook')

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=['*'],
    allow_headers=['*'],
)

logger = logging.getLogger(__name__)

_sweeper: ExpirySweeper | None = None


@app.on_event('startup')
def initialize_database() -> None:
    config.validate_runtime_config()
    try:
        Base.metadata.create_all(bind=engine)
        ensure_provider_schema()
        ensure_appointment_schema()
    except SQLAlchemyError:
        logger.exception('Database initialization failed. Check DATABASE_URL and database credentials.')


@app.on_event('startup')
def start_expiry_sweeper() -> None:
    global _sweeper

    if config.EXPIRY_SWEEP_INTERVAL_SECONDS <= 0:
        logger.info('Background expiry sweep disabled; pending holds expire lazily on read')
        return

    _sweeper = ExpirySweeper(get_scheduling_engine().lifecycle, config.EXPIRY_SWEEP_INTERVAL_SECONDS)
    _sweeper.start()


@app.on_event('shutdown')
def stop_expiry_sweeper() -> None:
    global _sweeper

    if _sweeper is not None:
        _sweeper.stop(timeout=5)
        _sweeper = None


@app.get('/')
def root():
    return {'status': 'Slotbook API Running'}


app.include_router(provider_routes.router, prefix='/providers')
app.include_router(availability_routes.router, prefix='/availability')
app.include_router(booking_routes.router, prefix='/bookings')
