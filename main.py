from fastapi import FastAPI

from config import ENV
from routers import onboarding, invoices

app = FastAPI(
    title="KSA e-Invoicing Signer",
    description="CSR generation, CSID onboarding, invoice signing and reporting for ZATCA phase 2",
    version="1.0.0"
)

# Include routers
app.include_router(onboarding.router, prefix="/onboarding", tags=["Onboarding"])
app.include_router(invoices.router, prefix="/invoices", tags=["Invoices"])


@app.get("/")
async def root():
    return {"message": "KSA e-Invoicing Signer", "environment": ENV}
