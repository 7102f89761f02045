from fastapi import APIRouter

from ..settings import settings

router = APIRouter(tags=["health"])


@router.get("/info")
def info():
	return {
		"status": "ok",
		"gemini_configured": bool(settings.gemini_api_key),
		"realtime_configured": bool(settings.openai_api_key),
	}
