from loguru import logger

from vault_sync.cli import app


def main() -> None:
    logger.debug("vault-sync started")
    app()


if __name__ == "__main__":
    main()
