# spendlens/web.py
from __future__ import annotations

import hmac
import logging
from typing import Any, Dict, Optional

from fastapi import Depends, FastAPI, Header, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from spendlens.cache import SummaryCache, get_cache
from spendlens.config import load_config
from spendlens.errors import AuthorizationError, PipelineError
from spendlens.ingest.pipeline import import_statement, seed_demo
from spendlens.stores import get_store
from spendlens.stores.base import BaseStore
from spendlens.summary import DashboardService, fetch_transactions, spend_by_category

logger = logging.getLogger(__name__)


class ImportRequest(BaseModel):
    content: str = ""
    filename: Optional[str] = None


def _extract_bearer(header_value: str | None) -> str | None:
    if not header_value:
        return None
    if header_value.startswith("Bearer "):
        return header_value[7:].strip() or None
    return None


def _check_api_key(expected: str | None, provided: str | None) -> None:
    # an unconfigured key locks the endpoint rather than opening it
    if not expected or provided is None:
        raise AuthorizationError("Unauthorized")
    # compare bytes; str comparison rejects non-ASCII input with TypeError
    if not hmac.compare_digest(provided.encode("utf-8"), expected.encode("utf-8")):
        raise AuthorizationError("Unauthorized")


def create_app(
    config: Dict[str, Any] | None = None,
    store: BaseStore | None = None,
    cache: SummaryCache | None = None,
) -> FastAPI:
    config = config or load_config()
    store = store or get_store(config)
    import_cfg: Dict[str, Any] = config.get("import", {})
    service = DashboardService(config, cache if cache is not None else get_cache(config))

    if not import_cfg.get("api_key"):
        logger.warning("No import API key configured; /api/import will reject all requests")

    app = FastAPI(title="SpendLens API")
    app.state.config = config
    app.state.store = store
    app.state.dashboard = service

    @app.exception_handler(PipelineError)
    async def pipeline_error_handler(request: Request, exc: PipelineError) -> JSONResponse:
        if exc.status_code >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc)
        return JSONResponse(exc.to_payload(), status_code=exc.status_code)

    def _caller_store(authorization: str | None) -> tuple:
        token = _extract_bearer(authorization)
        caller = store.authenticate(token)
        if not caller:
            raise AuthorizationError(
                "Missing Authorization Bearer token" if token is None else "Invalid token"
            )
        return caller, store.for_token(token)

    def require_api_key(x_api_key: Optional[str] = Header(default=None)) -> None:
        _check_api_key(import_cfg.get("api_key"), x_api_key)

    @app.post("/api/import", dependencies=[Depends(require_api_key)])
    def import_endpoint(body: ImportRequest) -> Dict[str, Any]:
        result = import_statement(store, body.content, body.filename, import_cfg)
        service.cache.invalidate()
        return result.to_payload()

    @app.post("/api/seed-demo", dependencies=[Depends(require_api_key)])
    def seed_demo_endpoint() -> Dict[str, Any]:
        result = seed_demo(store, import_cfg)
        service.cache.invalidate()
        return {
            "ok": True,
            "processed_count": result.processed_count,
            "sample_transactions": [tx.to_record() for tx in result.transactions],
        }

    @app.get("/api/dashboard-summary")
    def dashboard_summary(authorization: Optional[str] = Header(default=None)) -> Dict[str, Any]:
        caller, scoped = _caller_store(authorization)
        return service.summary(scoped, caller)

    @app.get("/api/analytics/spend-by-category")
    def category_spend(
        days: int = 30,
        authorization: Optional[str] = Header(default=None),
    ) -> Dict[str, Any]:
        _, scoped = _caller_store(authorization)
        limit = config.get("summary", {}).get("fetch_limit")
        transactions = fetch_transactions(scoped, limit)
        return {"ok": True, "data": spend_by_category(transactions, days)}

    return app
