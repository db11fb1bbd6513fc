from fastapi import APIRouter

import backend.config as config

router = APIRouter()


@router.get("/health")
def health():
    return {"status": "ok"}


@router.get("/config/attendance")
def attendance_config():
    return {
        "qr_window_seconds": config.QR_WINDOW_SECONDS,
        "token_expiry_seconds": config.TOKEN_EXPIRY_SECONDS,
        "recovery_sweep_on_startup": config.RECOVERY_SWEEP_ON_STARTUP,
    }
