from fastapi import APIRouter, Depends

from taco_wallet.api.deps import require_api_key
from taco_wallet.api.v1.endpoints import account, execute

router = APIRouter(dependencies=[Depends(require_api_key)])
router.include_router(account.router, prefix="/account", tags=["account"])
router.include_router(execute.router, prefix="/execute", tags=["execute"])
