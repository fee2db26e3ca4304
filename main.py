from dotenv import load_dotenv
from loguru import logger

load_dotenv()

from clinic_booking.api.server import run_server  # noqa: E402
from clinic_booking.config import get_settings  # noqa: E402
from clinic_booking.log import configure_logging  # noqa: E402


if __name__ == "__main__":
    settings = get_settings()
    configure_logging(settings.log_level)
    logger.info("Starting booking API")
    run_server(host=settings.api_host, port=settings.api_port)
