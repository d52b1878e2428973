"""
Main entrypoint: run the token sale dividend API with uvicorn.

Env: DATABASE_URL, RPC_URL or ALCHEMY_API_KEY, NETWORK, TOKEN_ADDRESS, ADMIN_API_KEY,
API_HOST, API_PORT, LOG_LEVEL (see .env.example).

Equivalent: uvicorn backend_tokensale.api_server.app:app --host 0.0.0.0 --port 8000
"""

# Configure structured JSON logging before other imports that may log
from backend_tokensale.logging import get_logger

logger = get_logger("main")


def main() -> None:
    """Read settings and serve the API in the main thread."""
    from backend_tokensale.config.settings import get_settings

    settings = get_settings()
    if not settings.token_address:
        logger.warning("main_token_not_configured", message="TOKEN_ADDRESS unset; balance lookups will fail")
    if not settings.admin_api_key:
        logger.warning("main_admin_disabled", message="ADMIN_API_KEY unset; admin routes return 403")

    from backend_tokensale.api_server.server import create_app
    import uvicorn

    app = create_app(settings)
    logger.info("main_server_starting", host=settings.api_host, port=settings.api_port)
    uvicorn.run(app, host=settings.api_host, port=settings.api_port, log_level=settings.log_level)


if __name__ == "__main__":
    main()
