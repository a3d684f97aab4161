from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse


def _describe(error: dict) -> str:
    location = ".".join(str(part) for part in error.get("loc", ()) if part != "body")
    message = error.get("msg", "Invalid request")
    return f"{location}: {message}" if location else message


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Missing or malformed fields are a 400, not FastAPI's default 422."""
    errors = exc.errors()
    return JSONResponse(
        status_code=400,
        content={
            "detail": _describe(errors[0]) if errors else "Invalid request",
            "errors": jsonable_encoder(errors),
        },
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
