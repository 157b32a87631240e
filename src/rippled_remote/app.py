import logging
from contextlib import asynccontextmanager

from fastapi import APIRouter, FastAPI, HTTPException, Request as HTTPRequest
from pydantic import BaseModel

from rippled_remote.config import RemoteConfig, load_config
from rippled_remote.errors import LocalError, RemoteError
from rippled_remote.logging_config import setup_logging
from rippled_remote.remote import Remote
from rippled_remote.request import Request

setup_logging()
log = logging.getLogger("rippled_remote.app")

REQUEST_TIMEOUT = 10.0
NOT_FOUND = {"actNotFound", "entryNotFound", "txnNotFound", "transactionNotFound", "lgrNotFound"}


class SubmitReq(BaseModel):
    tx_blob: str


async def _call(req: Request, timeout: float = REQUEST_TIMEOUT) -> dict:
    """Send ``req`` and map failures onto HTTP errors."""
    try:
        return await req.timeout(timeout)
    except LocalError as e:
        raise HTTPException(status_code=400, detail=e.to_dict()) from e
    except RemoteError as e:
        if e.error == "timeout":
            raise HTTPException(status_code=504, detail=e.to_dict()) from e
        if (e.remote or {}).get("error") in NOT_FOUND:
            raise HTTPException(status_code=404, detail=e.to_dict()) from e
        raise HTTPException(status_code=502, detail=e.to_dict()) from e


def _remote(request: HTTPRequest) -> Remote:
    return request.app.state.remote


r_state = APIRouter(prefix="/state", tags=["State"])
r_accounts = APIRouter(prefix="/accounts", tags=["Accounts"])
r_ledger = APIRouter(prefix="/ledger", tags=["Ledger"])
r_transaction = APIRouter(tags=["Transactions"])


@r_state.get("")
async def state(request: HTTPRequest):
    remote = _remote(request)
    return {
        "state": remote.state,
        "ledger_current_index": remote.ledger_current_index,
        "ledger_hash": remote.ledger_hash,
        "ledger_time": remote.ledger_time,
        "stand_alone": remote.stand_alone,
        "fee_unit": remote.fee_tx_unit(),
        "load": remote.fees.as_dict(),
    }


@r_state.get("/servers")
async def state_servers(request: HTTPRequest):
    return {"servers": _remote(request).server_states()}


@r_accounts.get("/{account_id}")
async def get_account_info(account_id: str, request: HTTPRequest):
    """account_info for one account."""
    try:
        req = _remote(request).request_account_info(account_id)
    except LocalError as e:
        raise HTTPException(status_code=400, detail=e.to_dict()) from e
    return await _call(req)


@r_accounts.get("/{account_id}/lines")
async def get_account_lines(account_id: str, request: HTTPRequest):
    try:
        req = _remote(request).request_account_lines(account_id)
    except LocalError as e:
        raise HTTPException(status_code=400, detail=e.to_dict()) from e
    return await _call(req)


@r_ledger.get("/closed")
async def ledger_closed(request: HTTPRequest):
    return await _call(_remote(request).request_ledger_closed())


@r_transaction.get("/transaction/{tx_hash}")
async def get_transaction(tx_hash: str, request: HTTPRequest):
    return await _call(_remote(request).request_tx(tx_hash))


@r_transaction.post("/submit")
async def submit_blob(req: SubmitReq, request: HTTPRequest):
    """Submit an already signed transaction blob."""
    return await _call(_remote(request).request_submit().tx_blob(req.tx_blob))


def create_app(config: RemoteConfig | None = None, **remote_kwargs) -> FastAPI:
    """Build the service. The Remote is created and connected for the app's lifespan."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        cfg = config if config is not None else load_config()
        remote = Remote.from_config(cfg, **remote_kwargs)
        app.state.remote = remote
        log.info(f"Connecting to {', '.join(s.url for s in cfg.servers) or 'no servers'}")
        async with remote:
            yield
        log.info("Remote closed")

    app = FastAPI(title="rippled remote", lifespan=lifespan)

    @app.get("/health")
    def health():
        return {"status": "ok"}

    app.include_router(r_state)
    app.include_router(r_accounts)
    app.include_router(r_ledger)
    app.include_router(r_transaction)
    return app


app = create_app()
