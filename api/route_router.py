"""
Route Router - endpoints du routeur LUSD/UUSD

Les montants sont des entiers en unités de base (18 décimales) passés en
chaîne, et sont renvoyés en chaîne.
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query

from api.deps import get_container, parse_amount
from api.utils import error_response, success_response
from config.ttl_config import CACHE_CONFIGS
from services.container import ServiceContainer
from services.route_service import format_route_display

logger = logging.getLogger(__name__)

router = APIRouter(tags=["route"])


@router.get("/health")
async def health(container: ServiceContainer = Depends(get_container)):
    """Health check: état du poller, du circuit RPC et du dernier snapshot"""
    snapshot = container.scheduler.get_last_snapshot()
    return success_response({
        "status": "healthy",
        "environment": container.settings.environment,
        "scheduler_running": container.scheduler.is_running,
        "last_snapshot_at": snapshot.fetched_at if snapshot else None,
        "last_refresh_error": container.scheduler.last_error,
        "rpc_circuit": container.breaker.get_status()["state"],
    })


@router.get("/api/route/deposit")
async def deposit_route(
    amount: str = Query(..., description="Montant LUSD en unités de base"),
    force_collateral_only: bool = Query(False, description="Forcer le mint 100% collatéral"),
    container: ServiceContainer = Depends(get_container),
):
    """Meilleure route LUSD -> UUSD (mint ou swap Curve)"""
    result = await container.routes.get_optimal_deposit_route(parse_amount(amount), force_collateral_only)
    return success_response(result.to_dict(), meta={"display": format_route_display(result)})


@router.get("/api/route/withdraw")
async def withdraw_route(
    amount: str = Query(..., description="Montant UUSD en unités de base"),
    force_swap_only: bool = Query(False, description="Forcer le swap Curve"),
    container: ServiceContainer = Depends(get_container),
):
    """Meilleure route UUSD -> LUSD (redeem ou swap Curve)"""
    result = await container.routes.get_optimal_withdraw_route(parse_amount(amount), force_swap_only)
    return success_response(result.to_dict(), meta={"display": format_route_display(result)})


@router.get("/api/snapshot")
async def get_snapshot(container: ServiceContainer = Depends(get_container)):
    """Dernier snapshot publié par le poller"""
    snapshot = container.scheduler.get_last_snapshot()
    if snapshot is None:
        return error_response("No snapshot published yet", code=404, error="NotFound", retryable=True)
    return success_response(snapshot.to_dict())


@router.post("/api/snapshot/refresh")
async def refresh_snapshot(
    account: Optional[str] = Query(None, description="Compte dont suivre les soldes"),
    container: ServiceContainer = Depends(get_container),
):
    """Forcer un tick de rafraîchissement (optionnellement pour un compte)"""
    if account is not None:
        container.scheduler.set_account(account)
    snapshot = await container.scheduler.force_refresh()
    if snapshot is None:
        return error_response(
            "Refresh failed, previous snapshot kept",
            code=503,
            details={"reason": container.scheduler.last_error},
            error="RefreshFailed",
            retryable=True,
        )
    return success_response(snapshot.to_dict())


@router.get("/api/price-history")
async def price_history(
    hours: float = Query(168, gt=0, le=24 * 30, description="Fenêtre en heures"),
    points: int = Query(168, gt=0, le=1000, description="Nombre de points"),
    cached_only: bool = Query(False, description="Ne lire que le cache mémoire"),
    container: ServiceContainer = Depends(get_container),
):
    """Historique du prix marché UUSD échantillonné sur le pool Curve"""
    if cached_only:
        history = container.history.get_cached_history(hours, points)
    else:
        history = await container.history.get_price_history(hours, points)
    return success_response(
        [p.to_dict() for p in history],
        meta={"count": len(history), "hours": hours, "cached_only": cached_only},
    )


@router.get("/api/cache/stats")
async def cache_stats(container: ServiceContainer = Depends(get_container)):
    """Statistiques du cache et politiques par catégorie"""
    stats = container.cache.get_stats()
    stats["policies"] = {
        name: {"ttl": o.ttl, "allow_stale_fallback": o.allow_stale_fallback,
               "max_stale_age": o.max_stale_age, "persist": o.persist}
        for name, o in CACHE_CONFIGS.items()
    }
    return success_response(stats)


@router.delete("/api/cache")
async def clear_cache(
    pattern: Optional[str] = Query(None, description="Sous-chaîne des clés à invalider"),
    container: ServiceContainer = Depends(get_container),
):
    """Vider le cache (entièrement, ou les clés contenant le motif)"""
    if pattern:
        removed = await container.cache.invalidate_pattern(pattern)
        logger.info(f"Cache invalidated for pattern '{pattern}': {removed} entries")
        return success_response({"cleared": removed, "pattern": pattern})
    await container.cache.clear()
    logger.info("Cache cleared")
    return success_response({"cleared": "all", "pattern": None})
