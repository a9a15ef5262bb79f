from datetime import date

import msgspec
from fastapi import Body, Depends, FastAPI, Query

from yoink import globals
from yoink.db.structs import AuthContext
from yoink.fastapi import authz
from yoink.fastapi.apistructs import TaskCreate, TaskTitle
from yoink.fastapi.errors import install_error_handlers
from yoink.fastapi.response import MsgspecResponse

app = FastAPI(docs_url=None, redoc_url=None, openapi_url=None)

install_error_handlers(app)


@app.post("/")
async def create_task(
    payload: dict = Body(...), ctx: AuthContext = Depends(authz.authenticate)
):
    req = msgspec.convert(payload, TaskCreate)
    task = await globals.tasks.instance.create(
        ctx.organization_id, ctx.user_id, req.title, due_date=req.due_date
    )
    return MsgspecResponse(task, status_code=201)


@app.get("/")
async def list_tasks(
    filter: str = Query("all", pattern="^(today|upcoming|all|completed)$"),
    limit: int = Query(50, ge=1, le=200),
    ctx: AuthContext = Depends(authz.authenticate),
):
    tasks = await globals.tasks.instance.list_tasks(
        ctx.organization_id, filter=filter, limit=limit
    )
    return MsgspecResponse({"tasks": tasks})


@app.get("/{task_id}")
async def get_task(task_id: str, ctx: AuthContext = Depends(authz.authenticate)):
    return MsgspecResponse(
        await globals.tasks.instance.find(task_id, ctx.organization_id)
    )


@app.patch("/{task_id}")
async def update_task(
    task_id: str,
    payload: dict = Body(...),
    ctx: AuthContext = Depends(authz.authenticate),
):
    changes = {}
    if "title" in payload:
        changes["title"] = msgspec.convert(payload["title"], TaskTitle)
    if "due_date" in payload:
        changes["due_date"] = msgspec.convert(payload["due_date"], date | None)
    task = await globals.tasks.instance.update(
        task_id, ctx.organization_id, **changes
    )
    return MsgspecResponse(task)


@app.post("/{task_id}/complete")
async def complete_task(task_id: str, ctx: AuthContext = Depends(authz.authenticate)):
    return MsgspecResponse(
        await globals.tasks.instance.complete(task_id, ctx.organization_id)
    )


@app.post("/{task_id}/uncomplete")
async def uncomplete_task(task_id: str, ctx: AuthContext = Depends(authz.authenticate)):
    return MsgspecResponse(
        await globals.tasks.instance.uncomplete(task_id, ctx.organization_id)
    )


@app.post("/{task_id}/pin")
async def pin_task(task_id: str, ctx: AuthContext = Depends(authz.authenticate)):
    return MsgspecResponse(
        await globals.tasks.instance.pin(task_id, ctx.organization_id)
    )


@app.post("/{task_id}/unpin")
async def unpin_task(task_id: str, ctx: AuthContext = Depends(authz.authenticate)):
    return MsgspecResponse(
        await globals.tasks.instance.unpin(task_id, ctx.organization_id)
    )


@app.delete("/{task_id}")
async def delete_task(task_id: str, ctx: AuthContext = Depends(authz.authenticate)):
    await globals.processing.instance.delete_task_with_cascade(
        task_id, ctx.organization_id
    )
    return {"message": "Task deleted"}
