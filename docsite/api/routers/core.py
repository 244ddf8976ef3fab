from fastapi import APIRouter

router = APIRouter(tags=["core"])


@router.get("/ping")
def ping():
    return {"ok": True}
