import os
import asyncio
import traceback
from typing import Optional
from dotenv import load_dotenv
import logging
from fastapi import FastAPI, HTTPException, Request, Depends, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from waste_classifier import WasteClassifier
from waste_classifier.exceptions import EcoSortError
from db.auth import conditional_auth, optional_auth, admin_auth
from app import services
from app.schema import (
    ClassificationRequest,
    FeedbackRequest,
    FeedbackCreated,
    ApproveFeedbackRequest,
    DenyFeedbackRequest,
)


from contextlib import asynccontextmanager


# Load environment variables from .env file
load_dotenv()

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

# Read environment mode (defaults to prod for safety)
ENV = os.getenv("ENV", "prod").lower()
logger.info(f"Running in {ENV} mode")

GENERIC_ERROR = "An error occurred processing your request."

# Classificador global, criado na inicialização do app.
CLASSIFIER: Optional[WasteClassifier] = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Inicialização do app. Cria o cliente do gateway de IA.
    """
    global CLASSIFIER
    logger.info("Configurando o classificador de resíduos...")
    CLASSIFIER = services.load_classifier()
    # This is the point where the app is ready to handle requests
    yield
    logger.info("Encerrando e limpando recursos...")
    CLASSIFIER = None


# Initialize FastAPI app with the lifespan manager
app = FastAPI(
    title="EcoSort",
    description="Waste classification for India's colour-coded bins",
    version="1.0.0",
    lifespan=lifespan,
)

class PreflightCORSMiddleware(CORSMiddleware):
    """
    Answers accepted pre-flights with 204 and no body, like a bare OPTIONS.
    """

    def preflight_response(self, request_headers):
        response = super().preflight_response(request_headers)
        if response.status_code != 200:
            return response
        headers = {
            key: value
            for key, value in response.headers.items()
            if key not in ("content-length", "content-type")
        }
        return Response(status_code=204, headers=headers)


# The classifier is called from the browser of any deployment, so any origin is allowed.
app.add_middleware(
    PreflightCORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["authorization", "x-client-info", "apikey", "content-type"],
)


def get_client_address(request: Request) -> str:
    """
    Resolve o endereço do cliente para o rate limit:
    first X-Forwarded-For entry, then X-Real-IP, then a shared "unknown" bucket.
    """
    forwarded_for = request.headers.get("x-forwarded-for")
    if forwarded_for:
        first = forwarded_for.split(",")[0].strip()
        if first:
            return first
    real_ip = request.headers.get("x-real-ip")
    if real_ip and real_ip.strip():
        return real_ip.strip()
    return "unknown"


def error_response(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    logger.info(f"Rejected malformed request body on {request.url.path}")
    return error_response(400, "Invalid request body.")


"""
Routes
"""
@app.get("/")
async def root():
    return {"message": f"EcoSort is running in {ENV} mode"}


@app.options("/classify-waste")
async def classify_waste_options():
    return Response(status_code=204)


@app.post("/classify-waste")
async def classify_waste(
    body: ClassificationRequest,
    client_address: str = Depends(get_client_address),
    owner: Optional[str] = Depends(optional_auth),
):
    """
    Endpoint de classificação.
    Este é um 'Controller' enxuto.
    Ele apenas delega a lógica de negócio para o services.py.
    """
    try:
        # Chamadas bloqueantes (MongoDB, gateway) rodam fora do event loop
        results = await asyncio.to_thread(
            services.classify_and_log,
            image_data=body.imageBase64,
            language=body.language,
            client_address=client_address,
            owner=owner,
            classifier=CLASSIFIER,
        )
        return JSONResponse(content=results)
    except EcoSortError as e:
        logger.warning(f"Classification request failed: {type(e).__name__} ({e.status_code})")
        return error_response(e.status_code, e.message)
    except Exception as e:
        logger.error(f"Erro ao processar a classificação: {type(e).__name__}")
        logger.error(traceback.format_exc())
        return error_response(500, GENERIC_ERROR)


@app.get("/history")
async def history(limit: int = 20, owner: str = Depends(conditional_auth)):
    limit = max(1, min(limit, 100))
    return await asyncio.to_thread(services.get_history, owner, limit)


@app.post("/feedback", status_code=201, response_model=FeedbackCreated)
async def feedback(body: FeedbackRequest, owner: Optional[str] = Depends(optional_auth)):
    feedback_id = await asyncio.to_thread(services.submit_feedback, body, owner)
    return FeedbackCreated(id=feedback_id)


"""
Admin routes
"""
@app.get("/admin/feedback")
async def admin_list_feedback(status: Optional[str] = None, reviewer: str = Depends(admin_auth)):
    return await asyncio.to_thread(services.list_feedback, status)


@app.get("/admin/corrections")
async def admin_list_corrections(reviewer: str = Depends(admin_auth)):
    return await asyncio.to_thread(services.list_corrections)


@app.post("/admin/feedback/{feedback_id}/approve")
async def admin_approve_feedback(
    feedback_id: str,
    body: ApproveFeedbackRequest,
    reviewer: str = Depends(admin_auth),
):
    try:
        correction_id = await asyncio.to_thread(services.approve_feedback, feedback_id, body, reviewer)
    except services.FeedbackNotFoundError:
        raise HTTPException(status_code=404, detail="Feedback not found")
    except services.FeedbackAlreadyReviewedError:
        raise HTTPException(status_code=409, detail="Feedback already reviewed")
    return {"id": feedback_id, "status": "approved", "correctionId": correction_id}


@app.post("/admin/feedback/{feedback_id}/deny")
async def admin_deny_feedback(
    feedback_id: str,
    body: DenyFeedbackRequest,
    reviewer: str = Depends(admin_auth),
):
    try:
        await asyncio.to_thread(services.deny_feedback, feedback_id, body, reviewer)
    except services.FeedbackNotFoundError:
        raise HTTPException(status_code=404, detail="Feedback not found")
    except services.FeedbackAlreadyReviewedError:
        raise HTTPException(status_code=409, detail="Feedback already reviewed")
    return {"id": feedback_id, "status": "denied"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
