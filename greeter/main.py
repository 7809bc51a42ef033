import logging
from datetime import datetime
from typing import Optional

from fastapi import FastAPI, Request, Response
from fastapi.responses import PlainTextResponse
from pydantic import BaseModel, ValidationError
from pydantic_core import PydanticSerializationError

from .config import Settings
from .schemas import (
    BulkGreetResponse,
    ErrorResponse,
    HealthResponse,
    UserCreatedResponse,
    UserInfo,
)
from .utils import (
    decode_first_json,
    first_query_value,
    greeting_for_hour,
    parse_age,
    resolve_name,
    split_names,
)

logger = logging.getLogger(__name__)

PREFIX = "/greeter"
ENCODE_FAILURE = "Failed to encode response\n"


# === Helpers ===


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def current_hour() -> int:
    return datetime.now().hour


def json_response(payload: BaseModel, status_code: int = 200) -> Response:
    """Serialise ``payload`` fully before anything is sent.

    An encoding failure turns into a plain 500 instead of a truncated body.
    """
    try:
        body = payload.model_dump_json(exclude_none=True)
    except (PydanticSerializationError, TypeError, ValueError) as exc:
        logger.error("Failed to encode %s: %s", type(payload).__name__, exc)
        return PlainTextResponse(ENCODE_FAILURE, status_code=500)
    return Response(content=body, status_code=status_code, media_type="application/json")


def error_response(message: str, status_code: int = 400) -> Response:
    return json_response(ErrorResponse(error=message), status_code=status_code)



# === Greetings ===


def greet(request: Request) -> Response:
    return PlainTextResponse(f"Hello, {query_name(request, get_settings(request))}!\n")


def farewell(request: Request) -> Response:
    name = query_name(request, get_settings(request))
    return PlainTextResponse(f"Goodbye, {name}! Have a great day!\n")


def time_greet(request: Request) -> Response:
    greeting = greeting_for_hour(current_hour())
    return PlainTextResponse(f"{greeting}, {query_name(request, get_settings(request))}!\n")


def bulk_greet(request: Request) -> Response:
    raw = first_query_value(request.query_params, "names")
    if not raw:
        return error_response("names parameter is required")
    names = split_names(raw) or [get_settings(request).default_name]
    return json_response(BulkGreetResponse(greetings=[f"Hello, {name}!" for name in names]))


# === Health ===


def health(request: Request) -> Response:
    return json_response(
        HealthResponse(timestamp=datetime.now().astimezone(), version=get_settings(request).version)
    )


# === User info ===


async def read_user_info(request: Request) -> Response:
    params = request.query_params
    name = first_query_value(params, "name")
    if not name:
        return error_response("name parameter is required")
    user = UserInfo(
        name=name,
        age=parse_age(first_query_value(params, "age")),
        location=first_query_value(params, "location"),
        email=first_query_value(params, "email"),
    )
    return json_response(user.compact())


async def create_user_info(request: Request) -> Response:
    # Nothing is stored; a valid payload is echoed back as if it had been.
    raw = await request.body()
    try:
        document = decode_first_json(raw)
        user = UserInfo() if document is None else UserInfo.model_validate(document)
    except (ValueError, ValidationError):
        return error_response("Invalid JSON payload")
    if not user.name:
        return error_response("name field is required")
    user = user.compact()
    return json_response(
        UserCreatedResponse(message=f"User {user.name} created successfully", user=user),
        status_code=201,
    )


USER_INFO_HANDLERS = {
    "GET": read_user_info,
    "POST": create_user_info,
}


async def user_info(request: Request) -> Response:
    handler = USER_INFO_HANDLERS.get(request.method)
    if handler is None:
        return PlainTextResponse(f"Method {request.method} not allowed\n", status_code=405)
    return await handler(request)


# Registered without a method list: every method reaches the handler.
ROUTES = [
    ("/greet", greet),
    ("/farewell", farewell),
    ("/health", health),
    ("/time-greet", time_greet),
    ("/user-info", user_info),
    ("/bulk-greet", bulk_greet),
]


# === Application ===


async def not_found(request: Request, exc: Exception) -> Response:
    return PlainTextResponse("404 page not found\n", status_code=404)


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or Settings()
    app = FastAPI(
        title="Greeter",
        version=settings.version,
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
        redirect_slashes=False,
        exception_handlers={404: not_found},
    )
    app.state.settings = settings
    for path, endpoint in ROUTES:
        app.add_route(PREFIX + path, endpoint, include_in_schema=False)
    return app


app = create_app()
