"""
Service layer for the KisanSathi API.

Exports:
- answer: conversational assistant over the Gemini text model
- diagnose: leaf-photo diagnosis with tolerant JSON extraction
- fetch_current_weather: OpenWeather current conditions for a lat/lon
"""
from .assistant import ChatTurn, answer
from .diagnosis import diagnose
from .normalizer import DiagnosisResult, UpstreamFailure, classify_failure, extract_json
from .weather import fetch_current_weather

__all__ = [
    'ChatTurn',
    'answer',
    'diagnose',
    'DiagnosisResult',
    'UpstreamFailure',
    'classify_failure',
    'extract_json',
    'fetch_current_weather',
]
