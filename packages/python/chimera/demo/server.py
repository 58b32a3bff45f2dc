import logging

import uvicorn

from chimera_facilitator.config import load_settings
from chimera_facilitator.server import create_app

logging.basicConfig(level=logging.INFO, format="chimera-demo %(levelname)s %(name)s: %(message)s")

settings = load_settings()
app = create_app(settings)

if __name__ == "__main__":
    uvicorn.run(app, host="0.0.0.0", port=settings.port)
