import logging
import os

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("entrypoint")


def main() -> None:
  """Launch the API; migrations and the worker schedule are deploy concerns."""
  logger.info("Starting application (run alembic upgrade head in deploy pipeline)...")
  port = os.getenv("PORT", "8002")
  # execvp hands signal handling (SIGTERM) straight to uvicorn.
  os.execvp("uvicorn", ["uvicorn", "app.main:app", "--host", "0.0.0.0", "--port", port, "--no-server-header"])


if __name__ == "__main__":
  main()
