from fastapi import FastAPI, Request
from prometheus_client import Counter, generate_latest, CONTENT_TYPE_LATEST
from starlette.responses import Response

from api.routes.jobs import router as jobs_router

app = FastAPI(title="Ingestion Queue")
app.include_router(jobs_router)

requests_total = Counter(
    "ingest_api_requests_total",
    "Total API requests"
)

@app.middleware("http")
async def count_requests(request: Request, call_next):
    requests_total.inc()
    return await call_next(request)

@app.get("/health")
def health():
    return {"status": "ok"}

@app.get("/metrics")
def metrics():
    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)
