from fastapi import APIRouter

from coreextract.api.v1.files import router as files_router
from coreextract.api.v1.jobs import router as jobs_router

router = APIRouter()
router.include_router(jobs_router)
router.include_router(files_router)
