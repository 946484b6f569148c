"""
Compat shim so tooling can import `spacetime_link.main.app`.
Actual FastAPI application object lives in `web/app.py`.

Development server:
    python -m spacetime_link.main
"""

from spacetime_link.config import get_settings
from web.app import app  # noqa: F401


def run(reload: bool = False) -> None:
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "spacetime_link.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=reload,
    )


if __name__ == "__main__":
    run(reload=True)
