from fastapi import FastAPI, HTTPException
from .config import load_settings
from .logging_utility import logger
from .vpn.exceptions import UsageError
from .vpn.manager import VPNCheckManager
from .vpn.models import CheckRequest, CheckResult
from .vpn.plugins.registry import available_plugins


app = FastAPI(title="check_vpn")
settings = load_settings()


@app.get("/plugins")
def list_plugins():
    """VPN types a check can be run for"""
    return {"plugins": available_plugins()}


@app.post("/check", response_model=CheckResult)
def run_check(request: CheckRequest):
    """Run one VPN check and return its verdict"""
    try:
        result = VPNCheckManager(settings).run(request)
    except UsageError as e:
        logger.error(f"Bad check request: {str(e)}")
        raise HTTPException(status_code=400, detail=str(e))
    return result
