from __future__ import annotations
import asyncio, json, logging, os, time
from typing import Optional

from fastapi import FastAPI, WebSocket, WebSocketDisconnect, Query, HTTPException

from kiosklink.config import Settings
from kiosklink.connection import ConnectionManager
from kiosklink.errors import AddressChangeError, KioskLinkError, NoOpenPortError
from kiosklink.metrics import MetricsLogger
from kiosklink.portscan import PortScanner
from kiosklink.runtime import KioskRuntime, build_manager, build_metrics

logger = logging.getLogger("kiosklink.api")

app = FastAPI(title="kiosklink API", version="0.1.0")

_settings: Optional[Settings] = None
_manager: Optional[ConnectionManager] = None
_metrics: Optional[MetricsLogger] = None
_runtime: Optional[KioskRuntime] = None
_log_path: Optional[str] = None


def _get_settings() -> Settings:
    global _settings
    if _settings is None:
        try:
            _settings = Settings.from_env()
        except ValueError as exc:
            raise HTTPException(status_code=500, detail=f"Invalid configuration: {exc}")
    return _settings


def _get_manager() -> ConnectionManager:
    global _manager, _metrics, _log_path
    if _manager is None:
        settings = _get_settings()
        try:
            _metrics = build_metrics(settings)
            _manager = build_manager(settings, metrics=_metrics)
        except ValueError as exc:
            raise HTTPException(status_code=500, detail=str(exc))
        _log_path = settings.metrics_log
    return _manager


async def _actuate(action, *args):
    try:
        return await action(*args)
    except KioskLinkError as exc:
        raise HTTPException(status_code=502, detail=str(exc))


@app.get("/health")
async def health():
    manager = _manager
    return {
        "status": "ok",
        "time": time.time(),
        "ready": manager.is_ready() if manager else False,
    }


@app.get("/status")
async def status():
    """Best-effort device snapshot; never fails because a sub-query failed."""
    snapshot = await _get_manager().get_status()
    return snapshot.to_dict()


@app.get("/sensors")
async def sensors():
    snapshot = await _get_manager().get_sensor_snapshot()
    return snapshot.to_dict()


@app.post("/screen/wake")
async def wake():
    await _actuate(_get_manager().wake_screen)
    return {"status": "ok", "screenOn": True}


@app.post("/screen/sleep")
async def sleep():
    await _actuate(_get_manager().sleep_screen)
    return {"status": "ok", "screenOn": False}


@app.post("/brightness")
async def brightness(level: int = Query(..., description="Brightness 0-255; out of range values are clamped")):
    applied = await _actuate(_get_manager().set_brightness, level)
    return {"status": "ok", "brightness": applied}


@app.post("/auto-brightness")
async def auto_brightness(enabled: bool = Query(...)):
    await _actuate(_get_manager().set_auto_brightness, enabled)
    return {"status": "ok", "autoBrightness": enabled}


@app.post("/screen-timeout")
async def screen_timeout(seconds: int = Query(..., ge=0, description="Screen-off timeout in seconds")):
    await _actuate(_get_manager().set_screen_timeout, seconds)
    return {"status": "ok", "screenTimeout": seconds}


@app.get("/address")
async def get_address():
    manager = _get_manager()
    return {"address": str(manager.address), "ready": manager.is_ready()}


@app.post("/address")
async def set_address(address: str = Query(..., description="host:port of the device")):
    manager = _get_manager()
    try:
        await manager.set_address(address)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    except AddressChangeError as exc:
        raise HTTPException(status_code=409, detail=str(exc))
    return {"status": "ok", "address": str(manager.address)}


@app.post("/scan")
async def scan(ip: Optional[str] = Query(None, description="Host to scan; defaults to the device host")):
    target = ip or _get_manager().host
    try:
        port = await PortScanner().scan(target)
    except NoOpenPortError as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    return {"ip": target, "port": port}


@app.post("/monitor/start")
async def start(
    wake_on_approach: bool = Query(False, description="Wake the screen when someone approaches"),
    sleep_on_depart: bool = Query(False, description="Sleep the screen when the area clears"),
):
    global _runtime
    if _runtime and _runtime.running:
        return {"status": "already-running", "device": str(_runtime.manager.address)}
    manager = _get_manager()
    _runtime = KioskRuntime(manager, _get_settings(), metrics=_metrics)
    if wake_on_approach:
        _runtime.wake_on_approach()
    if sleep_on_depart:
        _runtime.sleep_on_depart()
    _runtime.start()
    return {
        "status": "started",
        "device": str(manager.address),
        "autoBrightness": _runtime.brightness.enabled,
        "log": _log_path,
    }


@app.post("/monitor/stop")
async def stop():
    global _runtime
    if _runtime:
        try:
            await _runtime.stop()
        except Exception:
            logger.exception("monitor stop encountered error")
        _runtime = None
        return {"status": "stopped"}
    return {"status": "idle"}


@app.get("/monitor/status")
async def monitor_status():
    if not _runtime or not _runtime.running:
        return {"status": "idle"}
    return {
        "status": "running",
        "device": str(_runtime.manager.address),
        "ready": _runtime.manager.is_ready(),
        "near": _runtime.proximity.last_near,
        "autoBrightness": _runtime.brightness.enabled,
        "lastBrightness": _runtime.brightness.last_applied,
    }


@app.post("/monitor/auto-brightness")
async def monitor_auto_brightness(enabled: bool = Query(...)):
    if not _runtime:
        raise HTTPException(status_code=409, detail="monitor is not running")
    _runtime.brightness.set_enabled(enabled)
    return {"status": "ok", "autoBrightness": enabled}


@app.websocket("/events")
async def events(ws: WebSocket):
    await ws.accept()
    pos = 0
    try:
        while True:
            await asyncio.sleep(0.5)
            if not _log_path or not os.path.exists(_log_path):
                continue
            with open(_log_path, "r", encoding="utf-8") as f:
                f.seek(pos)
                for line in f:
                    await ws.send_text(json.dumps({"csv": line.strip()}))
                pos = f.tell()
    except WebSocketDisconnect:
        return
