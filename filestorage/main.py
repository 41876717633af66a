from fastapi import FastAPI, Request, HTTPException
from fastapi.responses import JSONResponse

from filestorage.api.v1.router import router as v1_router
from filestorage.logging_config import setup_logging

app = FastAPI(title="File Storage API")

# Every v1 endpoint is mounted under /api/v1
app.include_router(v1_router, prefix="/api/v1")

# Setup application logging
logger = setup_logging()


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    """Unwrap the 'detail' field from HTTPException responses."""
    content = exc.detail

    if isinstance(content, dict):
        return JSONResponse(status_code=exc.status_code, content=content)

    return JSONResponse(
        status_code=exc.status_code,
        content={
            "success": False,
            "error": "Not Found" if exc.status_code == 404 else "Error",
            "message": content,
        },
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception):
    # Full stack trace goes to the log, never to the client
    logger.error(
        f"Unhandled exception: {exc.__class__.__name__}: {str(exc)}",
        exc_info=True,
        extra={
            "path": request.url.path,
            "method": request.method,
        },
    )

    return JSONResponse(
        status_code=500,
        content={
            "success": False,
            "error": "Internal Server Error",
            "message": "An unexpected error occurred",
        },
    )
