"""
API router for map view sessions and their selection state.
"""
from fastapi import APIRouter, BackgroundTasks, Query, Request, Response, status
from typing import Annotated

from app.api.dependencies import MapServiceDep, ViewportDep
from app.api.rate_limit import INTERACTION_LIMIT, limiter
from app.api.v1.models.responses import SessionMarkersResponse, SessionResponse
from app.services.domain.selection import SelectionEvent


router = APIRouter(
    prefix="/sessions",
    tags=["sessions"],
)


@router.post(
    "",
    response_model=SessionResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Open a view session",
    description="""
    Start a map view with an empty selection and the all-dates view.

    Marker icons are loaded in the background; until they arrive the
    markers use generated fallback icons.
    """,
)
@limiter.limit(INTERACTION_LIMIT)
async def create_session(
    request: Request,
    background_tasks: BackgroundTasks,
    map_service: MapServiceDep,
) -> SessionResponse:
    session = map_service.create_session()
    background_tasks.add_task(map_service.prefetch_icons, session.id)
    return SessionResponse(
        session_id=session.id,
        view=map_service.session_view(session.id),
    )


@router.get(
    "/{session_id}",
    response_model=SessionResponse,
    summary="Get the current selection view",
    responses={
        404: {
            "description": "Session not found",
        },
    },
)
async def get_session_view(
    session_id: str,
    map_service: MapServiceDep,
) -> SessionResponse:
    return SessionResponse(
        session_id=session_id,
        view=map_service.session_view(session_id),
    )


@router.post(
    "/{session_id}/events",
    response_model=SessionResponse,
    summary="Apply an interaction",
    description="""
    Apply one user interaction to the selection state:

    - `map_click`: clear the selection
    - `marker_click` (index = location): toggle a location
    - `date_tab` (index = date, -1 for all): switch date tab
    - `swipe_left` / `swipe_right`: step through dates

    Any change of selected locations returns to the all-dates view.
    """,
    responses={
        400: {
            "description": "Event not valid for the current state",
        },
        404: {
            "description": "Session not found",
        },
    },
)
@limiter.limit(INTERACTION_LIMIT)
async def apply_event(
    request: Request,
    session_id: str,
    event: SelectionEvent,
    map_service: MapServiceDep,
) -> SessionResponse:
    return SessionResponse(
        session_id=session_id,
        view=map_service.apply_event(session_id, event),
    )


@router.get(
    "/{session_id}/markers",
    response_model=SessionMarkersResponse,
    summary="Get markers to render",
    description="""
    Return the declutter layout for a session with icon, title and
    opacity per marker. Unselected markers are dimmed while a selection
    exists.
    """,
    responses={
        404: {
            "description": "Session not found",
        },
    },
)
async def get_session_markers(
    session_id: str,
    map_service: MapServiceDep,
    bounds: ViewportDep,
    zoom: Annotated[float, Query(ge=0, le=22, description="Map zoom level")] = 13,
) -> SessionMarkersResponse:
    return SessionMarkersResponse(
        session_id=session_id,
        zoom=zoom,
        markers=map_service.session_markers(session_id, zoom, bounds),
    )


@router.delete(
    "/{session_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Close a view session",
    responses={
        404: {
            "description": "Session not found",
        },
    },
)
async def close_session(
    session_id: str,
    map_service: MapServiceDep,
) -> Response:
    map_service.close_session(session_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
