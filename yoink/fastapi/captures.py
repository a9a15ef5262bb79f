import msgspec
from fastapi import Body, Depends, FastAPI, Query

from yoink import globals
from yoink.db.structs import AuthContext
from yoink.fastapi import authz
from yoink.fastapi.apistructs import (
    CaptureContent,
    CaptureCreate,
    CaptureProcess,
    CaptureSnooze,
    CaptureTitle,
)
from yoink.fastapi.errors import install_error_handlers
from yoink.fastapi.response import MsgspecResponse

app = FastAPI(docs_url=None, redoc_url=None, openapi_url=None)

install_error_handlers(app)


@app.post("/")
async def create_capture(
    payload: dict = Body(...), ctx: AuthContext = Depends(authz.authenticate)
):
    req = msgspec.convert(payload, CaptureCreate)
    capture = await globals.captures.instance.create(
        ctx.organization_id,
        ctx.user_id,
        req.content,
        title=req.title,
        source_url=req.source_url,
        source_app=req.source_app,
    )
    return MsgspecResponse(capture, status_code=201)


@app.get("/")
async def list_captures(
    status: str | None = Query(None, pattern="^(inbox|trashed|processed)$"),
    snoozed: bool | None = Query(None),
    limit: int = Query(50, ge=1, le=200),
    ctx: AuthContext = Depends(authz.authenticate),
):
    captures = await globals.captures.instance.list_captures(
        ctx.organization_id, status=status, snoozed=snoozed, limit=limit
    )
    return MsgspecResponse({"captures": captures})


@app.delete("/trash")
async def empty_trash(ctx: AuthContext = Depends(authz.authenticate)):
    count = await globals.captures.instance.empty_trash(ctx.organization_id)
    return {"deleted": count}


@app.get("/{capture_id}")
async def get_capture(capture_id: str, ctx: AuthContext = Depends(authz.authenticate)):
    return MsgspecResponse(
        await globals.captures.instance.find(capture_id, ctx.organization_id)
    )


@app.patch("/{capture_id}")
async def update_capture(
    capture_id: str,
    payload: dict = Body(...),
    ctx: AuthContext = Depends(authz.authenticate),
):
    changes = {}
    if "title" in payload:
        changes["title"] = msgspec.convert(payload["title"], CaptureTitle | None)
    if "content" in payload:
        changes["content"] = msgspec.convert(payload["content"], CaptureContent)
    capture = await globals.captures.instance.update(
        capture_id, ctx.organization_id, **changes
    )
    return MsgspecResponse(capture)


@app.post("/{capture_id}/trash")
async def trash_capture(capture_id: str, ctx: AuthContext = Depends(authz.authenticate)):
    return MsgspecResponse(
        await globals.captures.instance.trash(capture_id, ctx.organization_id)
    )


@app.post("/{capture_id}/restore")
async def restore_capture(
    capture_id: str, ctx: AuthContext = Depends(authz.authenticate)
):
    return MsgspecResponse(
        await globals.captures.instance.restore(capture_id, ctx.organization_id)
    )


@app.post("/{capture_id}/pin")
async def pin_capture(capture_id: str, ctx: AuthContext = Depends(authz.authenticate)):
    return MsgspecResponse(
        await globals.captures.instance.pin(capture_id, ctx.organization_id)
    )


@app.post("/{capture_id}/unpin")
async def unpin_capture(capture_id: str, ctx: AuthContext = Depends(authz.authenticate)):
    return MsgspecResponse(
        await globals.captures.instance.unpin(capture_id, ctx.organization_id)
    )


@app.post("/{capture_id}/snooze")
async def snooze_capture(
    capture_id: str,
    payload: dict = Body(...),
    ctx: AuthContext = Depends(authz.authenticate),
):
    req = msgspec.convert(payload, CaptureSnooze)
    return MsgspecResponse(
        await globals.captures.instance.snooze(
            capture_id, ctx.organization_id, req.until
        )
    )


@app.post("/{capture_id}/unsnooze")
async def unsnooze_capture(
    capture_id: str, ctx: AuthContext = Depends(authz.authenticate)
):
    return MsgspecResponse(
        await globals.captures.instance.unsnooze(capture_id, ctx.organization_id)
    )


@app.post("/{capture_id}/process")
async def process_capture(
    capture_id: str,
    payload: dict | None = Body(None),
    ctx: AuthContext = Depends(authz.authenticate),
):
    req = msgspec.convert(payload or {}, CaptureProcess)
    result = await globals.processing.instance.process_capture_to_task(
        capture_id,
        ctx.organization_id,
        ctx.user_id,
        title=req.title,
        due_date=req.due_date,
    )
    return MsgspecResponse(result, status_code=201)


@app.delete("/{capture_id}")
async def delete_capture(capture_id: str, ctx: AuthContext = Depends(authz.authenticate)):
    await globals.captures.instance.delete(capture_id, ctx.organization_id)
    return {"message": "Capture deleted"}
