"""Main FastAPI application entry point."""
import logging
import os

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from riskwatch.database import engine, Base
from riskwatch.api.routes import router
# Import models to register them with SQLAlchemy Base
from riskwatch.models.audit import AuditEvent
from riskwatch.models.identity import User, MfaDevice, UserSecurityRole, UserSession, EncryptedField
from riskwatch.models.security import SecurityEvent, ComplianceReport, SecurityScanResult

logging.basicConfig(
    level=os.getenv("RISKWATCH_LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s"
)

# Create database tables
Base.metadata.create_all(bind=engine)

# Create FastAPI app
app = FastAPI(
    title="Riskwatch - Security Audit and Risk Monitoring",
    description="Records security-relevant activity, scores risk, detects threats and anomalies, and compiles compliance reports.",
    version="0.1.0"
)

# Enable CORS for local development
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Restrict in production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include API routes
app.include_router(router, prefix="/api", tags=["Security"])


# Health check
@app.get("/health")
def health_check():
    return {"status": "healthy", "service": "riskwatch"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
