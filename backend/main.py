import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from backend.core import config
from backend.core.errors import CoreError
from backend.database import Base, SessionLocal, engine, ensure_appointment_schema, ensure_conversation_schema
from backend.models import appointment, conversation, participant, user  # noqa: F401
from backend.routes import appointment_routes, auth_routes, conversation_routes
from backend.services.email_transport import SmtpEmailTransport
from backend.services.registry import build_services

logging.basicConfig(level=config.LOG_LEVEL)

app = FastAPI()

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=['*'],
    allow_headers=['*'],
)

logger = logging.getLogger(__name__)


@app.on_event('startup')
def initialize() -> None:
    config.validate_runtime_config()
    try:
        Base.metadata.create_all(bind=engine)
        ensure_appointment_schema()
        ensure_conversation_schema()
    except SQLAlchemyError:
        logger.exception('Database initialization failed. Check DATABASE_URL and database credentials.')
    app.state.services = build_services(SessionLocal, SmtpEmailTransport.from_config())


@app.on_event('shutdown')
def shutdown() -> None:
    services = getattr(app.state, 'services', None)
    if services is not None:
        services.shutdown()


@app.exception_handler(CoreError)
async def handle_core_error(request: Request, exc: CoreError) -> JSONResponse:
    if exc.status_code == 401:
        logger.info('Rejected credential (%s): %s', exc.reason, exc.detail)
    return JSONResponse(
        status_code=exc.status_code,
        content={'detail': exc.detail, 'code': exc.reason},
    )


@app.exception_handler(SQLAlchemyError)
async def handle_database_error(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    logger.error('Database error while handling %s', request.url.path if request else 'request', exc_info=exc)
    return JSONResponse(
        status_code=503,
        content={'detail': 'Database unavailable. Verify DATABASE_URL and database credentials.'},
    )


@app.get('/')
def root():
    return {'status': 'MediCloudHub API Running'}


app.include_router(auth_routes.router, prefix='/auth')
app.include_router(appointment_routes.router, prefix='/appointments')
app.include_router(conversation_routes.router, prefix='/conversations')


if __name__ == '__main__':
    import uvicorn
    uvicorn.run('backend.main:app', host='0.0.0.0', port=8000)
