#!/usr/bin/env python3
"""Server entrypoint for the engagement API."""
import os

import uvicorn


def main():
    uvicorn.run(
        "engagement.main:app",
        host=os.getenv("HOST", "0.0.0.0"),
        port=int(os.getenv("PORT", "8000")),
        reload=False,
        log_level="info",
    )


if __name__ == "__main__":
    main()
