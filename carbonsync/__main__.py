import os

import uvicorn


def main():
    uvicorn.run(
        "carbonsync.main:app",
        host=os.getenv("CARBONSYNC_HOST", "127.0.0.1"),
        port=int(os.getenv("CARBONSYNC_PORT", "8000")),
        # Keep the structlog handlers installed by carbonsync.logger.
        log_config=None,
    )


if __name__ == "__main__":
    main()
