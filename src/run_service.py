import uvicorn
from dotenv import load_dotenv

load_dotenv()

from core import get_settings  # noqa: E402

if __name__ == "__main__":
    # Fail fast on missing configuration before binding the port.
    settings = get_settings()
    uvicorn.run(
        "service:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.is_dev(),
    )
