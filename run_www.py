#!/usr/bin/env python3
from __future__ import annotations

import os
import sys

def main() -> None:
    host = os.environ.get("TEAMHUB_HOST") or "0.0.0.0"
    port = int(os.environ.get("TEAMHUB_PORT") or "8000")
    reload = (os.environ.get("TEAMHUB_RELOAD") or "").lower() in ("1", "true", "yes")
    try:
        import uvicorn
    except Exception:
        print("uvicorn is missing. Install it with: pip install -e .", file=sys.stderr)
        raise
    uvicorn.run("webapp.server:app", host=host, port=port, reload=reload)

if __name__ == "__main__":
    main()
