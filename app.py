# Copyright 2024-2025 The vLLM Production Stack Authors.
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI
from fastapi.responses import JSONResponse

from env_config import load_config_from_env
from log import set_log_level
from parsers.parser import parse_args
from provisioning.models import utcnow
from routers.provisioning_router import provisioning_router
from services.provisioning_service import (
    ProvisioningService,
    cleanup_provisioning_service,
    initialize_provisioning_service,
    set_provisioning_service,
)

logger = logging.getLogger("uvicorn")


@asynccontextmanager
async def lifespan(app: FastAPI):
    config = getattr(app.state, "config", None) or load_config_from_env()

    logger.info("Initializing provisioning service")
    set_provisioning_service(ProvisioningService(config))
    if await initialize_provisioning_service(config):
        logger.info("Provisioning service initialized successfully")
    else:
        logger.warning("Provisioning service initialization failed")

    yield

    logger.info("Cleaning up provisioning service")
    await cleanup_provisioning_service()


app = FastAPI(lifespan=lifespan)
app.include_router(provisioning_router)


@app.exception_handler(Exception)
async def general_exception_handler(request, exc):
    """Handle general exceptions with consistent error format."""
    logger.error(f"Unhandled exception in {request.url.path}: {exc}")
    return JSONResponse(
        status_code=500,
        content={
            "error": "Internal server error",
            "status_code": 500,
            "path": str(request.url.path),
            "timestamp": utcnow().isoformat(),
        },
    )


def main():
    args = parse_args()
    config = args.config_obj

    set_log_level(config.log_level)
    config.log_configuration()
    app.state.config = config

    uvicorn.run(app, host=config.host, port=config.port, log_level=config.log_level)


if __name__ == "__main__":
    main()
