from fastapi import FastAPI
from medintake.core.logging_config import setup_logging
from medintake.api.routes_intake import router as intake_router
from medintake.api.routes_medications import router as medications_router

setup_logging()

app = FastAPI(title="Medication Intake Assistant", version="1.0")

app.include_router(intake_router)
app.include_router(medications_router)

@app.get("/health")
def health():
    return {"ok": True}
@app.get("/")
def root():
    return {"ok": True, "service": "Medication Intake Assistant"}
