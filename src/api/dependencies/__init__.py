from fastapi import Request

from services.oracle_service import OracleService


def get_oracle_service(request: Request) -> OracleService:
    return request.app.state.oracle_service
