import logging
import os

import uvicorn

if __name__ == "__main__":
    logging.basicConfig(
        level=os.environ.get("CHRONICLE_LOG_LEVEL", "INFO"),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    logger = logging.getLogger("chronicle")

    port = int(os.environ.get("CHRONICLE_PORT", "8000"))
    logger.info("Starting Chronicle API server")
    logger.info("Docs available at: http://localhost:%d/docs", port)

    uvicorn.run(
        "chronicle.api.server:app",
        host="0.0.0.0",
        port=port,
        reload=True
    )
