from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from backend.app.routes import bank_integrations, bank_transactions, payment_orders, cron

app = FastAPI(
    title="Bank Core API",
    description="Bank connectivity and reconciliation for company accounting",
    version="1.0.0"
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(bank_integrations.router, prefix="/api")
app.include_router(bank_transactions.router, prefix="/api")
app.include_router(payment_orders.router, prefix="/api")
app.include_router(cron.router, prefix="/api")


@app.get("/api/health")
def health_check():
    return {"status": "healthy"}
