from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from stockledger.app.api.v1.router import router as v1_router
from stockledger.app.core.config import get_settings
from stockledger.app.core.exceptions import ErrorCode, StockLedgerError
from stockledger.app.core.logging import configure_logging, get_logger

STATUS_BY_CODE = {
    ErrorCode.NOT_FOUND: 404,
    ErrorCode.INVALID_STATE: 409,
    ErrorCode.OVER_RECEIPT: 422,
    ErrorCode.CONTENTION: 503,
    ErrorCode.VALIDATION: 400,
}

configure_logging()
logger = get_logger(__name__)

settings = get_settings()
app = FastAPI(title="STOCK LEDGER", version=settings.app_version)
app.include_router(v1_router, prefix="/v1")


@app.exception_handler(StockLedgerError)
def handle_stock_ledger_error(request: Request, exc: StockLedgerError) -> JSONResponse:
    status_code = STATUS_BY_CODE.get(exc.code, 400)
    logger.info("request_rejected", path=request.url.path, error=exc.code.value, details=exc.details)
    headers = {"Retry-After": "1"} if exc.code == ErrorCode.CONTENTION else None
    return JSONResponse(status_code=status_code, content=exc.to_dict(), headers=headers)
