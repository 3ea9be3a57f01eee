#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Exceptions personnalisées - Gestion d'erreur spécifique

Taxonomie des erreurs du routeur:
- TransientFetchError: échec réseau/transport, éligible au fallback périmé
- UpstreamStalenessError: la source signale des entrées périmées (oracle)
- PolicyViolationError: opération refusée par l'état du protocole, affichée telle quelle
- AggregationFailure: l'appel batch a échoué, toutes les sous-requêtes échouent ensemble
"""

import logging
from typing import Dict, Any, Optional
from enum import Enum

logger = logging.getLogger(__name__)

# Phrases indicating the data source itself is out of date
STALENESS_PATTERNS = ("stale", "oracle", "chainlink", "price feed")


class ErrorCode(Enum):
    """Codes d'erreur standardisés"""
    CONFIG_INVALID = "CONFIG_INVALID"

    # Erreurs de lecture
    TRANSIENT_FETCH = "TRANSIENT_FETCH"
    UPSTREAM_STALE = "UPSTREAM_STALE"
    RPC_ERROR = "RPC_ERROR"
    CIRCUIT_OPEN = "CIRCUIT_OPEN"
    DATA_INVALID = "DATA_INVALID"

    # Erreurs de politique / agrégation
    POLICY_VIOLATION = "POLICY_VIOLATION"
    AGGREGATION_FAILURE = "AGGREGATION_FAILURE"

    # Stockage persistant
    STORE_FULL = "STORE_FULL"


class ExchangeRouterException(Exception):
    """Exception de base pour le routeur d'échange"""

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = None,
        details: Optional[Dict[str, Any]] = None,
        cause: Optional[Exception] = None
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.details = details or {}
        self.cause = cause

        logger.debug(f"Exception: {error_code.value if error_code else 'UNKNOWN'} - {message}",
                     extra={'details': details, 'cause': str(cause) if cause else None})

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": self.__class__.__name__,
            "code": self.error_code.value if self.error_code else None,
            "message": self.message,
            "details": self.details,
        }


class ConfigurationError(ExchangeRouterException):
    """Erreur de configuration"""
    def __init__(self, message: str, config_key: str = None, **kwargs):
        super().__init__(message, ErrorCode.CONFIG_INVALID, {'config_key': config_key}, **kwargs)


class TransientFetchError(ExchangeRouterException):
    """Échec réseau ou transport lors d'une lecture"""
    def __init__(self, message: str, url: str = None, **kwargs):
        super().__init__(message, ErrorCode.TRANSIENT_FETCH, {'url': url}, **kwargs)


class CircuitOpenError(TransientFetchError):
    """Appel rejeté car le circuit est ouvert"""
    def __init__(self, circuit_name: str, recovery_remaining: float = 0):
        super().__init__(
            f"Circuit '{circuit_name}' is OPEN, call rejected "
            f"(recovery in {recovery_remaining:.0f}s)"
        )
        self.error_code = ErrorCode.CIRCUIT_OPEN
        self.circuit_name = circuit_name
        self.recovery_remaining = recovery_remaining
        self.details.update({'circuit': circuit_name, 'recovery_remaining': recovery_remaining})


class UpstreamStalenessError(ExchangeRouterException):
    """La source de données signale que ses entrées sont périmées"""
    def __init__(self, message: str, source: str = None, **kwargs):
        super().__init__(message, ErrorCode.UPSTREAM_STALE, {'source': source}, **kwargs)


class RpcResponseError(ExchangeRouterException):
    """Objet d'erreur JSON-RPC retourné pour un appel"""
    def __init__(self, message: str, method: str = None, code: int = None, **kwargs):
        super().__init__(message, ErrorCode.RPC_ERROR, {'method': method, 'rpc_code': code}, **kwargs)
        self.rpc_code = code


class InvalidDataError(ExchangeRouterException):
    """Valeur on-chain hors de sa plage valide"""
    def __init__(self, message: str, field: str = None, **kwargs):
        super().__init__(message, ErrorCode.DATA_INVALID, {'field': field}, **kwargs)


class PolicyViolationError(ExchangeRouterException):
    """Opération désactivée par l'état du protocole ou requête incompatible"""
    def __init__(self, message: str, operation: str = None, **kwargs):
        super().__init__(message, ErrorCode.POLICY_VIOLATION, {'operation': operation}, **kwargs)


class AggregationFailure(ExchangeRouterException):
    """L'appel batch filaire a échoué"""
    def __init__(self, message: str, batch_size: int = 0, **kwargs):
        super().__init__(message, ErrorCode.AGGREGATION_FAILURE, {'batch_size': batch_size}, **kwargs)


class StoreFullError(ExchangeRouterException):
    """Quota du stockage persistant atteint"""
    def __init__(self, key: str, size: int, limit: int):
        super().__init__(
            f"Durable store full writing '{key}' ({size} > {limit} bytes)",
            ErrorCode.STORE_FULL,
            {'key': key, 'size': size, 'limit': limit},
        )


def is_staleness_message(text: str) -> bool:
    """Vrai si le message ressemble à une erreur de source périmée"""
    lowered = (text or "").lower()
    return any(pattern in lowered for pattern in STALENESS_PATTERNS)


def classify_fetch_error(exc: BaseException) -> ErrorCode:
    """Classer un échec de lecture pour le diagnostic (sans effet sur le fallback)"""
    if isinstance(exc, UpstreamStalenessError) or is_staleness_message(str(exc)):
        return ErrorCode.UPSTREAM_STALE
    if isinstance(exc, ExchangeRouterException) and exc.error_code:
        return exc.error_code
    return ErrorCode.TRANSIENT_FETCH


def rpc_error_from_payload(error: Any, method: str = None) -> ExchangeRouterException:
    """Construire l'exception adaptée à un objet d'erreur JSON-RPC (ou une simple chaîne)"""
    if not isinstance(error, dict):
        error = {"message": error}
    message = str(error.get("message") or "Unknown JSON-RPC error")
    if is_staleness_message(message):
        return UpstreamStalenessError(message, source=method)
    return RpcResponseError(message, method=method, code=error.get("code"))
