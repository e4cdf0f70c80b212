import logging

logging.basicConfig(
    level=logging.INFO,
    format="[%(asctime)s] [%(levelname)s] [%(name)s] %(message)s",
)

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from scheduling.config import get_settings
from scheduling.controllers.availability import router as availability_router
from scheduling.controllers.bookings import router as bookings_router
from scheduling.controllers.health import router as health_router
from scheduling.controllers.polls import router as polls_router
from scheduling.errors import register_exception_handlers
from scheduling.lifespan import lifespan
from scheduling.middleware import HTTPLogMiddleware

settings = get_settings()

app = FastAPI(title="Scheduling API", version="1.0.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors.origins,
    allow_credentials=settings.cors.allow_credentials,
    allow_methods=["*"],
    allow_headers=["*"],
)

if settings.debug.request:
    logging.getLogger("scheduling.http").setLevel(logging.DEBUG)
    app.add_middleware(HTTPLogMiddleware)

register_exception_handlers(app)

app.include_router(health_router)
app.include_router(availability_router)
app.include_router(bookings_router)
app.include_router(polls_router)
