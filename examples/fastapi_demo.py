"""
⚡ l402-gate FastAPI Demo

Complete working example of L402 Lightning paywalls with FastAPI.

Run:
    pip install -e ".[dev]"
    NWC_URL="nostr+walletconnect://..." L402_SECRET="your-secret" python examples/fastapi_demo.py

Or without a real wallet (mock backend; pay with the mock preimage):
    python examples/fastapi_demo.py
"""

import logging
import os
import random

import uvicorn
from fastapi import Depends, FastAPI, Request

from l402_gate import L402Middleware, create_gate, method_caveat, path_caveat
from l402_gate.lightning import MOCK_PREIMAGE, MockPaymentBackend, NwcBackend
from l402_gate.toll import Toll

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(name)s %(levelname)s %(message)s")

# --- Setup ---

app = FastAPI(
    title="l402-gate Demo",
    description="L402 Lightning paywall demo with FastAPI",
    version="0.1.0",
)

nwc_url = os.environ.get("NWC_URL")
secret = os.environ.get("L402_SECRET", "demo-secret-change-me-in-production")

if nwc_url:
    backend = NwcBackend(nwc_url)
    print("⚡ Using real NWC wallet")
else:
    backend = MockPaymentBackend()
    print(f"🧪 Using mock backend; pay with preimage {MOCK_PREIMAGE!r}")

# Everything under /api/premium/ is gated by the middleware at the default price.
# Tokens are bound to that subtree and to GET.
gate = create_gate(
    backend=backend,
    secret_key=secret,
    price_sats=21,
    protected_routes=["/api/premium/*"],
    caveats=[path_caveat("/api/premium/*"), method_caveat("GET")],
)
app.add_middleware(L402Middleware, gate=gate)

# Individually priced routes use their own gate through a dependency.
toll = Toll(create_gate(backend=backend, secret_key=secret, protected_routes=["/api/*"]))

JOKES = [
    "Why do programmers prefer dark mode? Because light attracts bugs.",
    "A SQL query walks into a bar, walks up to two tables and asks: 'Can I join you?'",
    "There are only 10 types of people: those who understand binary and those who don't.",
    "!false (it's funny because it's true).",
]

FORTUNES = [
    "The blocks will keep coming. So will you.",
    "Your next UTXO will be your luckiest.",
    "The Lightning Network predicts fast payments in your future.",
    "Stack sats. Stay humble. The rest follows.",
]


# --- Routes ---


@app.get("/")
async def root():
    """Welcome page with available endpoints."""
    return {
        "service": "l402-gate demo",
        "endpoints": {
            "GET /api/joke": {"price": "5 sats", "description": "Random programming joke"},
            "GET /api/fortune": {"price": "10 sats", "description": "Bitcoin fortune cookie"},
            "GET /api/premium/report": {"price": "21 sats", "description": "Middleware-gated report"},
            "GET /api/l402/challenge?route=...": {"price": "Free", "description": "Poll a route's challenge"},
            "GET /stats": {"price": "Free", "description": "Gate dashboard"},
        },
        "how_to_pay": {
            "step1": "GET any paid endpoint to receive a 402 + Lightning invoice",
            "step2": "Pay the invoice with any Lightning wallet",
            "step3": "Retry with Authorization: L402 <macaroon>:<preimage>",
        },
    }


@app.get("/api/joke")
async def joke(payment=Depends(toll(sats=5, description="Random programming joke"))):
    """Get a random programming joke (5 sats)."""
    return {"joke": random.choice(JOKES), "payment": payment}


@app.get("/api/fortune")
@toll.require(sats=10, description="Bitcoin fortune cookie")
async def fortune(request: Request):
    """Get a Bitcoin-themed fortune (10 sats)."""
    return {"fortune": random.choice(FORTUNES)}


@app.get("/api/premium/report")
async def report():
    """Gated by the middleware at 21 sats."""
    return {"report": "Channel liquidity is up and to the right."}


@app.get("/stats")
async def stats():
    """Dashboard for both gates (free)."""
    return {
        "middleware": gate.stats.to_dict(),
        "routes": toll.dashboard_data(),
    }


# --- Run ---

if __name__ == "__main__":
    print("\n⚡ l402-gate FastAPI Demo")
    print("=" * 40)
    print("Endpoints:")
    print("  GET /                    Welcome page")
    print("  GET /api/joke            5 sats")
    print("  GET /api/fortune         10 sats")
    print("  GET /api/premium/report  21 sats (middleware)")
    print("  GET /stats               Free dashboard")
    print()
    print("Test:")
    print("  curl -i http://localhost:8402/api/joke")
    print()
    uvicorn.run(app, host="0.0.0.0", port=8402)
