"""
Development entry point for the Bhutan Tours booking API.

Production runs under gunicorn with gunicorn.conf.py.
"""
import os

import uvicorn

if __name__ == "__main__":
    uvicorn.run(
        "app.main:app",
        host=os.getenv("TOURBOOK_HOST", "127.0.0.1"),
        port=int(os.getenv("TOURBOOK_PORT", "8000")),
        reload=os.getenv("TOURBOOK_RELOAD", "false").lower() == "true",
    )
