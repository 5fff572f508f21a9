"""Run the backend with uvicorn: ``python -m imagefy_backend``."""
import uvicorn

from imagefy_backend.core.config import load_settings


def main() -> None:
    settings = load_settings()
    print(f"[INFO] Starting Imagefy backend on port {settings.PORT}...")
    uvicorn.run(
        "imagefy_backend.main:create_app",
        factory=True,
        host="0.0.0.0",
        port=settings.PORT,
        log_level="info",
    )


if __name__ == "__main__":
    main()
