# routes/dependencies.py
from fastapi import Depends, Request

from services.db_service import get_db
from services.results_service import ResultsGateway
from services.session_service import SessionRegistry


def get_gateway(db=Depends(get_db)) -> ResultsGateway:
    return ResultsGateway(db)


def get_registry(request: Request) -> SessionRegistry:
    return request.app.state.session_registry
