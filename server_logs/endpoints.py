from fastapi import APIRouter, Query, HTTPException, Request
from fastapi.responses import PlainTextResponse
from pathlib import Path
import json
from datetime import datetime

router = APIRouter(prefix="/admin/logs", tags=["logs"])

ALLOWED_LOG_TYPES = {"server", "state", "webhook", "analytics", "realtime"}
LOG_TYPE_PATTERN = "^(server|state|webhook|analytics|realtime)$"


def get_log_dir(request: Request) -> Path:
    return Path(request.app.state.config.log_dir)


def get_log_path(request: Request, log_type: str) -> Path:
    return get_log_dir(request) / f"{log_type}.log"


@router.get("/tail")
async def tail_logs(
    request: Request,
    log_type: str = Query("server", pattern=LOG_TYPE_PATTERN),
    lines: int = Query(50, ge=1, le=500)
):
    """Last N lines of a log file."""
    log_path = get_log_path(request, log_type)
    if not log_path.exists():
        return {"lines": [], "error": f"No {log_type} log file"}

    with open(log_path) as f:
        all_lines = f.readlines()
    return {"lines": all_lines[-lines:], "count": len(all_lines), "log_type": log_type}


@router.get("/head")
async def head_logs(
    request: Request,
    log_type: str = Query("server", pattern=LOG_TYPE_PATTERN),
    lines: int = Query(50, ge=1, le=500)
):
    """First N lines of a log file."""
    log_path = get_log_path(request, log_type)
    if not log_path.exists():
        return {"lines": [], "error": f"No {log_type} log file"}

    result = []
    with open(log_path) as f:
        for i, line in enumerate(f):
            if i >= lines:
                break
            result.append(line)
    return {"lines": result, "log_type": log_type}


@router.get("/search")
async def search_logs(
    request: Request,
    log_type: str = Query("webhook", pattern=LOG_TYPE_PATTERN),
    level: str = None,
    event: str = None,
    pack: str = None,
    card_key: str = None,
    contains: str = None,
    limit: int = Query(100, ge=1, le=1000)
):
    """Filter a log file by level, event name, pack, card key or substring.

    Webhook failures are only ever visible here, never to the webhook sender.
    Field filters match exact values; a line that is not JSON never matches
    one.
    """
    log_path = get_log_path(request, log_type)
    if not log_path.exists():
        return {"lines": [], "error": f"No {log_type} log file"}

    wanted = {"level": level.upper() if level else None, "event": event, "pack": pack, "card_key": card_key}
    wanted = {k: v for k, v in wanted.items() if v}

    results = []
    with open(log_path) as f:
        for line in f:
            if wanted:
                try:
                    record = json.loads(line)
                except ValueError:
                    continue
                if any(record.get(k) != v for k, v in wanted.items()):
                    continue
            if contains and contains.lower() not in line.lower():
                continue
            results.append(line.strip())
            if len(results) >= limit:
                break

    return {"lines": results, "count": len(results), "log_type": log_type}


@router.get("/available")
async def list_available_logs(request: Request):
    log_dir = get_log_dir(request)
    if not log_dir.exists():
        return {"logs": []}

    logs = []
    for f in sorted(log_dir.glob("*.log")):
        stat = f.stat()
        logs.append({
            "name": f.stem,
            "size_bytes": stat.st_size,
            "modified": datetime.fromtimestamp(stat.st_mtime).isoformat()
        })
    return {"logs": logs}


@router.get("/raw/{log_type}")
async def get_raw_log(request: Request, log_type: str):
    if log_type not in ALLOWED_LOG_TYPES:
        raise HTTPException(400, f"Invalid log type. Allowed: {sorted(ALLOWED_LOG_TYPES)}")

    log_path = get_log_path(request, log_type)
    if not log_path.exists():
        raise HTTPException(404, f"No {log_type} log file")

    return PlainTextResponse(log_path.read_text())
