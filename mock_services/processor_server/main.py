from fastapi import FastAPI, Header, HTTPException, Request
from fastapi.responses import JSONResponse
import itertools

app = FastAPI(title="Mock Payment Processor", version="1.0.0")

# (status code, body) replayed per Idempotency-Key, declines included, like the real processor
_responses: dict = {}
_ids = itertools.count(1)

# Saved payment methods with canned behaviour
DECLINED_METHODS = {"pm_card_declined": "card_declined", "pm_insufficient_funds": "insufficient_funds"}
INSTANT_METHODS = {"pm_card_instant"}


@app.get("/health")
def health(): return {"status": "ok"}


def _charge_response(body: dict):
    method = body.get("payment_method")
    if method in DECLINED_METHODS:
        return 402, {"message": "Your card was declined.", "code": DECLINED_METHODS[method]}

    charge_id = f"ch_mock_{next(_ids)}"
    if method in INSTANT_METHODS:
        status = "succeeded"
    elif body.get("confirm"):
        status = "processing"
    else:
        status = "requires_confirmation"

    return 200, {
        "id": charge_id,
        "client_secret": f"{charge_id}_secret",
        "status": status,
        "amount_cents": body.get("amount_cents"),
        "transfer": body.get("transfer"),
    }


@app.post("/v1/charges")
async def create_charge(request: Request, idempotency_key: str | None = Header(default=None)):
    if not idempotency_key:
        raise HTTPException(status_code=400, detail="Idempotency-Key header required")

    if idempotency_key not in _responses:
        _responses[idempotency_key] = _charge_response(await request.json())

    status_code, content = _responses[idempotency_key]
    return JSONResponse(status_code=status_code, content=content)
