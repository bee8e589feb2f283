"""FastAPI dependencies.

Route handlers receive the services container built at startup through
``Depends(get_services)``.
"""

from fastapi import Request

from banking.services import BankingServices


def get_services(request: Request) -> BankingServices:
    return request.app.state.services
