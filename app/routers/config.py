from fastapi import APIRouter, Depends, Form, HTTPException, Request
from fastapi.responses import JSONResponse
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import LANGUAGES, get_default_language, set_config
from app.database import get_session
from app.models import Connection, Notification
from app.services.sonarr import SonarrClient

router = APIRouter()


@router.get("/")
async def get_config_overview(session: AsyncSession = Depends(get_session)):
    """Current connections, default language and notifications."""
    result = await session.execute(select(Connection))
    connections = {c.service: c for c in result.scalars().all()}
    sonarr = connections.get("sonarr")

    notifications_result = await session.execute(select(Notification))

    return {
        "sonarr": {"url": sonarr.url, "verified": sonarr.verified} if sonarr else None,
        "preferred_language": await get_default_language(session),
        "notifications": [
            {"id": n.id, "name": n.name, "url": n.url, "enabled": n.enabled, "events": n.events}
            for n in notifications_result.scalars().all()
        ]
    }


@router.post("/sonarr")
async def save_sonarr_connection(
    url: str = Form(...),
    api_key: str = Form(...),
    session: AsyncSession = Depends(get_session)
):
    """Save and test Sonarr connection."""
    client = SonarrClient(url, api_key)
    try:
        await client.test_connection()
    except Exception as e:
        raise HTTPException(status_code=400, detail=f"Connection failed: {e}")

    result = await session.execute(
        select(Connection).where(Connection.service == "sonarr")
    )
    conn = result.scalar_one_or_none()

    if conn:
        conn.url = url
        conn.api_key = api_key
        conn.verified = True
    else:
        conn = Connection(
            service="sonarr",
            url=url,
            api_key=api_key,
            verified=True
        )
        session.add(conn)

    await session.commit()
    return {"success": True}


@router.post("/preferred-language")
async def save_preferred_language(
    preferred_language: str = Form(...),
    session: AsyncSession = Depends(get_session)
):
    """Set the default language for series created from now on."""
    if preferred_language not in LANGUAGES:
        raise HTTPException(status_code=400, detail="Invalid language")
    await set_config(session, "preferred_language", preferred_language)
    return {"preferred_language": preferred_language}


@router.post("/notifications")
async def add_notification(request: Request, session: AsyncSession = Depends(get_session)):
    data = await request.json()
    if not data.get("name") or not data.get("url"):
        return JSONResponse({"success": False, "error": "name and url are required"}, status_code=400)

    notification = Notification(
        name=data["name"],
        url=data["url"],
        enabled=bool(data.get("enabled", True)),
        events=list(data.get("events") or ["sync_success", "sync_failure"])
    )
    session.add(notification)
    await session.commit()
    return {"success": True, "id": notification.id}


@router.delete("/notifications/{notification_id}")
async def delete_notification(notification_id: int, session: AsyncSession = Depends(get_session)):
    notification = await session.get(Notification, notification_id)
    if not notification:
        raise HTTPException(status_code=404, detail="Notification not found")
    await session.delete(notification)
    await session.commit()
    return {"success": True}
