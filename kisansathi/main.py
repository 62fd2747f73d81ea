import os
import math
import logging
from typing import List, Optional

from dotenv import load_dotenv
load_dotenv()

from fastapi import APIRouter, Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from .services.assistant import ChatTurn, answer
from .services.diagnosis import diagnose
from .services.gemini import GeminiGenerator, get_generator
from .services.weather import WeatherConfigError, WeatherProviderError, fetch_current_weather

logger = logging.getLogger(__name__)

app = FastAPI(title="KisanSathi API", version="0.1.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


class ChatRequest(BaseModel):
    message: str
    language: Optional[str] = "en"
    history: Optional[List[ChatTurn]] = None


class DiagnoseRequest(BaseModel):
    image: Optional[str] = None


router = APIRouter()


@app.get("/healthz")
def healthz():
    return {"status": "ok"}


@router.post("/chat")
def chat(req: ChatRequest, generator: Optional[GeminiGenerator] = Depends(get_generator)):
    status, body = answer(req.message, req.language, req.history, generator)
    return JSONResponse(content=body, status_code=status)


@router.post("/diagnose")
def diagnose_leaf(req: DiagnoseRequest, generator: Optional[GeminiGenerator] = Depends(get_generator)):
    status, body = diagnose(req.image, generator)
    return JSONResponse(content=body, status_code=status)


@router.get("/weather")
def weather(lat: Optional[str] = None, lon: Optional[str] = None):
    if not lat or not lon:
        return JSONResponse(content={"error": "Missing lat/lon parameters"}, status_code=400)
    try:
        lat_f, lon_f = float(lat), float(lon)
    except ValueError:
        return JSONResponse(content={"error": "Invalid lat/lon parameters"}, status_code=400)
    if not (math.isfinite(lat_f) and math.isfinite(lon_f)):
        return JSONResponse(content={"error": "Invalid lat/lon parameters"}, status_code=400)

    try:
        return fetch_current_weather(lat_f, lon_f)
    except WeatherConfigError:
        logger.error("Weather API key not configured")
        return JSONResponse(
            content={"error": "Weather API not configured. Please add OPENWEATHER_API_KEY."},
            status_code=500,
        )
    except WeatherProviderError as e:
        logger.error("Weather fetch error: %s", e)
        return JSONResponse(content={"error": "Failed to fetch weather data"}, status_code=500)


# The mobile client calls /api/*; the bare paths are kept for direct use.
app.include_router(router, prefix="/api")
app.include_router(router)


if __name__ == "__main__":
    import uvicorn
    logging.basicConfig(level=os.getenv("LOG_LEVEL", "INFO"))
    uvicorn.run(app, host="0.0.0.0", port=int(os.getenv("PORT", "8000")))
