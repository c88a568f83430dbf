"""Run the docshare API with uvicorn: ``python -m docshare``."""

from __future__ import annotations

import os

import uvicorn


def main() -> None:
    uvicorn.run(
        "docshare.app.main:create_app",
        factory=True,
        host=os.environ.get("HOST", "127.0.0.1"),
        port=int(os.environ.get("PORT", "8000")),
        log_config=None,
    )


if __name__ == "__main__":
    main()
