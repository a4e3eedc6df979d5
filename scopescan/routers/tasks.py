from fastapi import APIRouter, Query

from scopescan.services.embeddings import advance_embedding_tasks
from scopescan.utils.response import success_response

router = APIRouter(prefix="/tasks", tags=["tasks"])


@router.post("/embeddings/advance")
async def advance_embeddings(max_to_process: int = Query(default=1, ge=1, le=20)):
    processed = await advance_embedding_tasks(max_to_process)
    return success_response(data={"processed": processed})
