import uvicorn

from storyline.core.config import settings

if __name__ == "__main__":
    uvicorn.run(
        "storyline.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.ENV == "development",
    )
