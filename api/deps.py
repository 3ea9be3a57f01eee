"""
Dépendances FastAPI réutilisables.
Le conteneur de services est construit par create_app() et rangé dans app.state.
"""
from __future__ import annotations

from fastapi import Request

from services.container import ServiceContainer


def get_container(request: Request) -> ServiceContainer:
    return request.app.state.container


def parse_amount(value: str) -> int:
    """Montant entier en unités de base (18 décimales), transmis en chaîne."""
    try:
        amount = int(value)
    except (TypeError, ValueError):
        raise ValueError(f"amount must be an integer in base units, got {value!r}")
    if amount <= 0:
        raise ValueError("amount must be positive")
    return amount
