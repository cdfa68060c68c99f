from fastapi import APIRouter, Depends, HTTPException

from backend import config
from backend.security import require_session

router = APIRouter()


@router.get("/health")
def health():
    return {"status": "ok"}


@router.get("/debug/dbpath")
def dbpath(_session: dict = Depends(require_session)):
    if not config.ENABLE_DEBUG_ENDPOINTS:
        raise HTTPException(status_code=404, detail="Not found.")
    return {"db_path": str(config.DB_PATH)}


@router.get("/config/policy")
def policy_config():
    return {
        "guest_token_prefix": config.GUEST_TOKEN_PREFIX,
        "vip_max_capacity": config.VIP_MAX_CAPACITY,
        "certificate_threshold": config.CERTIFICATE_THRESHOLD,
        "recent_check_ins_default": config.RECENT_CHECKINS_DEFAULT,
        "recent_check_ins_max": config.RECENT_CHECKINS_MAX,
    }
