import uvicorn

from app.core.app import app  # noqa: F401
from app.core.config import settings

if __name__ == "__main__":
    uvicorn.run(
        "app.core.app:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.APP_ENV == "development",
    )
