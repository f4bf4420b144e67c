"""
P2P Lending API Application Factory
"""

from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .. import __version__
from ..config import LendingConfig, get_config
from ..errors import LendingError
from ..logging_config import setup_logging, get_logger
from .dependencies import LendingSystem
from .loans import router as loans_router


logger = get_logger("p2p_lending.api")


def create_app(system: Optional[LendingSystem] = None,
               config: Optional[LendingConfig] = None) -> FastAPI:
    """
    Create and configure the FastAPI application
    
    Args:
        system: Prebuilt lending system (tests inject one with in-memory storage)
        config: Configuration; defaults to the environment-derived config
    """
    config = config or (system.config if system else get_config())
    setup_logging(config.log_level, fmt=config.log_format)
    owns_system = system is None
    system = system or LendingSystem(config=config)
    
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        if owns_system:
            system.close()
    
    app = FastAPI(
        title="P2P Lending API",
        description="Peer-to-peer loan lifecycle: proposed, approved, invested, disbursed",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan
    )
    app.state.lending_system = system
    
    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    
    @app.exception_handler(LendingError)
    async def lending_error_handler(request: Request, exc: LendingError):
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())
    
    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        # Malformed bodies are client errors, reported as 400 rather than 422
        details = [
            {"loc": list(error.get("loc", ())), "msg": error.get("msg"), "type": error.get("type")}
            for error in exc.errors()
        ]
        logger.warning(f"Malformed request to {request.url.path}: {len(details)} error(s)")
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"error": "Malformed request body", "code": "validation_error", "details": details}
        )
    
    app.include_router(loans_router, prefix="/loans", tags=["Loans"])
    
    @app.get("/health")
    async def health_check():
        """Health check endpoint"""
        return {
            "status": "healthy",
            "service": "p2p_lending_api",
            "version": __version__
        }
    
    @app.get("/")
    async def get_api_info():
        """Get API information"""
        return {
            "name": "P2P Lending API",
            "version": __version__,
            "endpoints": {
                "docs": "/docs",
                "health": "/health",
                "loans": "/loans",
            }
        }
    
    return app


def run_server(host: Optional[str] = None, port: Optional[int] = None,
               reload: Optional[bool] = None):
    """Run the FastAPI server"""
    config = get_config()
    uvicorn.run(
        "p2p_lending.api:create_app",
        factory=True,
        host=host or config.api_host,
        port=port or config.api_port,
        reload=config.api_reload if reload is None else reload,
        log_level=config.log_level.lower()
    )
