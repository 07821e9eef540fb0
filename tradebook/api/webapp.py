from __future__ import annotations

from typing import Any

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse, Response

from tradebook.api.service import JournalService, JournalServiceManager
from tradebook.journal.metrics import display_number
from tradebook.utils.exceptions import JournalError
from tradebook.utils.logger import bind_request_user, get_logger

logger = get_logger(__name__)

app = FastAPI(title="Tradebook Journal", version="1.0")

USER_HEADER = "X-User-Id"


def get_user_service(request: Request) -> JournalService:
    # Authentication happens upstream; it forwards the user id in a header.
    user_id = request.headers.get(USER_HEADER, "").strip()
    if not user_id:
        raise HTTPException(401, "Not authenticated")
    bind_request_user(user_id)
    return JournalServiceManager.get_instance().get_service(user_id)


def _ok(payload: Any) -> Any:
    return display_number(payload)


def _fail(event: str, e: Exception) -> JSONResponse:
    if isinstance(e, JournalError):
        logger.warning(event, error=e.message, category=e.category.value)
        return JSONResponse(e.to_dict(), status_code=e.status_code or 500)
    logger.error(event, error=str(e))
    return JSONResponse({"error": str(e), "category": "backend"}, status_code=500)


def _int(value: Any, default: int) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def _bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value or "").lower() in ("1", "true", "yes")


@app.on_event("shutdown")
async def shutdown() -> None:
    manager = JournalServiceManager._instance
    if manager is not None:
        await manager.close()


@app.get("/health")
async def health() -> dict[str, Any]:
    return {"status": "ok"}


# ─── Accounts ────────────────────────────────────────────────

@app.get("/api/accounts")
async def list_accounts(request: Request) -> Any:
    try:
        svc = get_user_service(request)
        active_only = _bool(request.query_params.get("active_only"))
        return _ok({"accounts": svc.list_accounts(active_only)})
    except HTTPException:
        raise
    except Exception as e:
        return _fail("accounts_list_error", e)


@app.post("/api/accounts")
async def create_account(request: Request) -> Any:
    try:
        svc = get_user_service(request)
        body = await request.json()
        return _ok(svc.create_account(body))
    except HTTPException:
        raise
    except Exception as e:
        return _fail("account_create_error", e)


@app.get("/api/accounts/{account_id}")
async def get_account(request: Request, account_id: str) -> Any:
    try:
        return _ok(get_user_service(request).get_account(account_id))
    except HTTPException:
        raise
    except Exception as e:
        return _fail("account_get_error", e)


@app.put("/api/accounts/{account_id}")
async def update_account(request: Request, account_id: str) -> Any:
    try:
        svc = get_user_service(request)
        body = await request.json()
        return _ok(svc.update_account(account_id, body))
    except HTTPException:
        raise
    except Exception as e:
        return _fail("account_update_error", e)


@app.post("/api/accounts/{account_id}/deactivate")
async def deactivate_account(request: Request, account_id: str) -> Any:
    try:
        return _ok(get_user_service(request).deactivate_account(account_id))
    except HTTPException:
        raise
    except Exception as e:
        return _fail("account_deactivate_error", e)


@app.delete("/api/accounts/{account_id}")
async def delete_account(request: Request, account_id: str) -> Any:
    try:
        return _ok(get_user_service(request).delete_account(account_id))
    except HTTPException:
        raise
    except Exception as e:
        return _fail("account_delete_error", e)


@app.get("/api/accounts/{account_id}/equity")
async def account_equity(request: Request, account_id: str) -> Any:
    try:
        return _ok(get_user_service(request).account_equity(account_id))
    except HTTPException:
        raise
    except Exception as e:
        return _fail("account_equity_error", e)


@app.post("/api/accounts/{account_id}/drawdown-check")
async def check_drawdown(request: Request, account_id: str) -> Any:
    try:
        return _ok(get_user_service(request).check_drawdown(account_id))
    except HTTPException:
        raise
    except Exception as e:
        return _fail("drawdown_check_error", e)


@app.get("/api/accounts/{account_id}/equity-curve")
async def equity_curve(request: Request, account_id: str) -> Any:
    try:
        return _ok(get_user_service(request).equity_curve(account_id))
    except HTTPException:
        raise
    except Exception as e:
        return _fail("equity_curve_error", e)


# ─── CSV ─────────────────────────────────────────────────────

@app.get("/api/accounts/{account_id}/export")
async def export_csv(request: Request, account_id: str) -> Any:
    try:
        svc = get_user_service(request)
        raw = request.query_params.get("columns", "")
        columns = [c.strip() for c in raw.split(",") if c.strip()] or None
        result = svc.export_csv(account_id, columns)
        return Response(
            content=result["content"],
            media_type="text/csv; charset=utf-8",
            headers={"Content-Disposition": f'attachment; filename="{result["filename"]}"'},
        )
    except HTTPException:
        raise
    except Exception as e:
        return _fail("csv_export_error", e)


@app.post("/api/accounts/{account_id}/import/preview")
async def import_preview(request: Request, account_id: str) -> Any:
    try:
        svc = get_user_service(request)
        body = await request.json()
        return _ok(svc.import_csv_preview(account_id, body.get("content", "")))
    except HTTPException:
        raise
    except Exception as e:
        return _fail("csv_import_preview_error", e)


@app.post("/api/accounts/{account_id}/import/confirm")
async def import_confirm(request: Request, account_id: str) -> Any:
    try:
        svc = get_user_service(request)
        body = await request.json()
        return _ok(svc.import_csv_confirm(account_id, body.get("content", "")))
    except HTTPException:
        raise
    except Exception as e:
        return _fail("csv_import_error", e)


# ─── Broker ──────────────────────────────────────────────────

@app.post("/api/accounts/{account_id}/broker/connect")
async def broker_connect(request: Request, account_id: str) -> Any:
    try:
        svc = get_user_service(request)
        body = await request.json()
        return _ok(await svc.connect_broker(account_id, body.get("account_number", "")))
    except HTTPException:
        raise
    except Exception as e:
        return _fail("broker_connect_error", e)


@app.post("/api/accounts/{account_id}/broker/import")
async def broker_import(request: Request, account_id: str) -> Any:
    try:
        svc = get_user_service(request)
        body = await request.json()
        return _ok(await svc.broker_import(
            account_id, body.get("from_date", ""), body.get("to_date", "")))
    except HTTPException:
        raise
    except Exception as e:
        return _fail("broker_import_error", e)


@app.post("/api/accounts/{account_id}/broker/sync")
async def broker_sync(request: Request, account_id: str) -> Any:
    try:
        svc = get_user_service(request)
        body = await request.json()
        return _ok(await svc.broker_sync(account_id, _bool(body.get("full_sync"))))
    except HTTPException:
        raise
    except Exception as e:
        return _fail("broker_sync_error", e)


# ─── Trades ──────────────────────────────────────────────────

@app.get("/api/trades")
async def list_trades(request: Request) -> Any:
    try:
        svc = get_user_service(request)
        p = request.query_params
        page_size = _int(p.get("page_size", p.get("limit")), 100)
        page = max(1, _int(p.get("page"), 1))
        return _ok(svc.list_trades(
            account_id=p.get("account_id", ""), status=p.get("status", ""),
            strategy_id=p.get("strategy_id", ""), symbol=p.get("symbol", ""),
            source=p.get("source", ""), from_date=p.get("from_date", ""),
            to_date=p.get("to_date", ""), limit=page_size, offset=(page - 1) * page_size))
    except HTTPException:
        raise
    except Exception as e:
        return _fail("trades_list_error", e)


@app.post("/api/trades")
async def create_trade(request: Request) -> Any:
    try:
        svc = get_user_service(request)
        body = await request.json()
        return _ok(svc.create_trade(body))
    except HTTPException:
        raise
    except Exception as e:
        return _fail("trade_create_error", e)


@app.post("/api/trades/restore")
async def restore_trade(request: Request) -> Any:
    try:
        svc = get_user_service(request)
        body = await request.json()
        return _ok(svc.restore_trade(body))
    except HTTPException:
        raise
    except Exception as e:
        return _fail("trade_restore_error", e)


@app.get("/api/trades/{trade_id}")
async def get_trade(request: Request, trade_id: str) -> Any:
    try:
        return _ok(get_user_service(request).get_trade(trade_id))
    except HTTPException:
        raise
    except Exception as e:
        return _fail("trade_get_error", e)


@app.put("/api/trades/{trade_id}")
async def update_trade(request: Request, trade_id: str) -> Any:
    try:
        svc = get_user_service(request)
        body = await request.json()
        return _ok(svc.update_trade(trade_id, body))
    except HTTPException:
        raise
    except Exception as e:
        return _fail("trade_update_error", e)


@app.delete("/api/trades/{trade_id}")
async def delete_trade(request: Request, trade_id: str) -> Any:
    try:
        return _ok(get_user_service(request).delete_trade(trade_id))
    except HTTPException:
        raise
    except Exception as e:
        return _fail("trade_delete_error", e)


@app.post("/api/trades/{trade_id}/close")
async def close_trade(request: Request, trade_id: str) -> Any:
    try:
        svc = get_user_service(request)
        body = await request.json()
        return _ok(svc.close_trade(
            trade_id, body.get("exit_price"), body.get("exit_date", ""),
            pnl=body.get("pnl"), commission=body.get("commission"), swap=body.get("swap")))
    except HTTPException:
        raise
    except Exception as e:
        return _fail("trade_close_error", e)


@app.post("/api/trades/{trade_id}/partial-close")
async def partial_close(request: Request, trade_id: str) -> Any:
    try:
        svc = get_user_service(request)
        body = await request.json()
        return _ok(svc.partial_close(
            trade_id, body.get("quantity"), body.get("exit_price"), body.get("exit_date", ""),
            pnl=body.get("pnl"), commission=body.get("commission", 0.0), swap=body.get("swap", 0.0)))
    except HTTPException:
        raise
    except Exception as e:
        return _fail("trade_partial_close_error", e)


@app.post("/api/trades/{trade_id}/copy")
async def copy_trade(request: Request, trade_id: str) -> Any:
    try:
        svc = get_user_service(request)
        body = await request.json()
        return _ok(svc.copy_trade(trade_id, body.get("target_account_id", ""),
                                  _bool(body.get("include_exit"))))
    except HTTPException:
        raise
    except Exception as e:
        return _fail("trade_copy_error", e)


@app.get("/api/trades/{trade_id}/confluence")
async def get_trade_confluence(request: Request, trade_id: str) -> Any:
    try:
        return _ok(get_user_service(request).trade_confluence(trade_id))
    except HTTPException:
        raise
    except Exception as e:
        return _fail("trade_confluence_error", e)


@app.put("/api/trades/{trade_id}/confluence")
async def save_trade_confluence(request: Request, trade_id: str) -> Any:
    try:
        svc = get_user_service(request)
        body = await request.json()
        return _ok(svc.save_trade_confluence(trade_id, body.get("checked_ids", [])))
    except HTTPException:
        raise
    except Exception as e:
        return _fail("trade_confluence_save_error", e)


# ─── Trade form calculators ──────────────────────────────────

@app.post("/api/calc/auto-pnl")
async def calc_auto_pnl(request: Request) -> Any:
    try:
        get_user_service(request)
        body = await request.json()
        return _ok(JournalService.preview_auto_pnl(
            body.get("entry_price"), body.get("exit_price"), body.get("quantity"),
            body.get("trade_type", ""), body.get("commission", 0.0), body.get("swap", 0.0),
            body.get("current_pnl")))
    except HTTPException:
        raise
    except Exception as e:
        return _fail("calc_auto_pnl_error", e)


@app.post("/api/calc/risk-reward")
async def calc_risk_reward(request: Request) -> Any:
    try:
        get_user_service(request)
        body = await request.json()
        return _ok(JournalService.preview_risk_reward(
            body.get("entry_price"), body.get("stop_loss"), body.get("take_profit"),
            body.get("account_balance"), body.get("risk_pct")))
    except HTTPException:
        raise
    except Exception as e:
        return _fail("calc_risk_reward_error", e)


# ─── Financial transactions ──────────────────────────────────

@app.get("/api/transactions")
async def list_transactions(request: Request) -> Any:
    try:
        svc = get_user_service(request)
        return _ok({"transactions": svc.list_transactions(request.query_params.get("account_id", ""))})
    except HTTPException:
        raise
    except Exception as e:
        return _fail("transactions_list_error", e)


@app.post("/api/transactions")
async def create_transaction(request: Request) -> Any:
    try:
        svc = get_user_service(request)
        body = await request.json()
        return _ok(svc.create_transaction(body))
    except HTTPException:
        raise
    except Exception as e:
        return _fail("transaction_create_error", e)


@app.delete("/api/transactions/{tx_id}")
async def delete_transaction(request: Request, tx_id: str) -> Any:
    try:
        return _ok(get_user_service(request).delete_transaction(tx_id))
    except HTTPException:
        raise
    except Exception as e:
        return _fail("transaction_delete_error", e)


# ─── Strategies ──────────────────────────────────────────────

@app.get("/api/strategies")
async def list_strategies(request: Request) -> Any:
    try:
        svc = get_user_service(request)
        return _ok({"strategies": svc.list_strategies(_bool(request.query_params.get("active_only")))})
    except HTTPException:
        raise
    except Exception as e:
        return _fail("strategies_list_error", e)


@app.post("/api/strategies")
async def create_strategy(request: Request) -> Any:
    try:
        svc = get_user_service(request)
        body = await request.json()
        return _ok(svc.create_strategy(body))
    except HTTPException:
        raise
    except Exception as e:
        return _fail("strategy_create_error", e)


@app.put("/api/strategies/{strategy_id}")
async def update_strategy(request: Request, strategy_id: str) -> Any:
    try:
        svc = get_user_service(request)
        body = await request.json()
        return _ok(svc.update_strategy(strategy_id, body))
    except HTTPException:
        raise
    except Exception as e:
        return _fail("strategy_update_error", e)


@app.delete("/api/strategies/{strategy_id}")
async def delete_strategy(request: Request, strategy_id: str) -> Any:
    try:
        return _ok(get_user_service(request).delete_strategy(strategy_id))
    except HTTPException:
        raise
    except Exception as e:
        return _fail("strategy_delete_error", e)


# ─── Confluence ──────────────────────────────────────────────

@app.get("/api/confluence/items")
async def list_confluence_items(request: Request) -> Any:
    try:
        svc = get_user_service(request)
        return _ok(svc.list_confluence_items(_bool(request.query_params.get("active_only"))))
    except HTTPException:
        raise
    except Exception as e:
        return _fail("confluence_list_error", e)


@app.post("/api/confluence/items")
async def create_confluence_item(request: Request) -> Any:
    try:
        svc = get_user_service(request)
        body = await request.json()
        return _ok(svc.create_confluence_item(body))
    except HTTPException:
        raise
    except Exception as e:
        return _fail("confluence_create_error", e)


@app.put("/api/confluence/items/{item_id}")
async def update_confluence_item(request: Request, item_id: str) -> Any:
    try:
        svc = get_user_service(request)
        body = await request.json()
        return _ok(svc.update_confluence_item(item_id, body))
    except HTTPException:
        raise
    except Exception as e:
        return _fail("confluence_update_error", e)


@app.delete("/api/confluence/items/{item_id}")
async def delete_confluence_item(request: Request, item_id: str) -> Any:
    try:
        return _ok(get_user_service(request).delete_confluence_item(item_id))
    except HTTPException:
        raise
    except Exception as e:
        return _fail("confluence_delete_error", e)


@app.post("/api/confluence/evaluate")
async def evaluate_confluence(request: Request) -> Any:
    try:
        svc = get_user_service(request)
        body = await request.json()
        return _ok(svc.evaluate_confluence(body.get("checked_ids", [])))
    except HTTPException:
        raise
    except Exception as e:
        return _fail("confluence_evaluate_error", e)


# ─── Notes ───────────────────────────────────────────────────

@app.get("/api/notes")
async def list_notes(request: Request) -> Any:
    try:
        svc = get_user_service(request)
        return _ok({"notes": svc.list_notes(request.query_params.get("tag", ""))})
    except HTTPException:
        raise
    except Exception as e:
        return _fail("notes_list_error", e)


@app.post("/api/notes")
async def create_note(request: Request) -> Any:
    try:
        svc = get_user_service(request)
        body = await request.json()
        return _ok(svc.create_note(body))
    except HTTPException:
        raise
    except Exception as e:
        return _fail("note_create_error", e)


@app.put("/api/notes/{note_id}")
async def update_note(request: Request, note_id: str) -> Any:
    try:
        svc = get_user_service(request)
        body = await request.json()
        return _ok(svc.update_note(note_id, body))
    except HTTPException:
        raise
    except Exception as e:
        return _fail("note_update_error", e)


@app.delete("/api/notes/{note_id}")
async def delete_note(request: Request, note_id: str) -> Any:
    try:
        return _ok(get_user_service(request).delete_note(note_id))
    except HTTPException:
        raise
    except Exception as e:
        return _fail("note_delete_error", e)


# ─── Analytics ───────────────────────────────────────────────

@app.get("/api/dashboard")
async def dashboard(request: Request) -> Any:
    try:
        svc = get_user_service(request)
        return _ok(svc.dashboard(request.query_params.get("account_id", "")))
    except HTTPException:
        raise
    except Exception as e:
        return _fail("dashboard_error", e)


@app.get("/api/calendar")
async def calendar(request: Request) -> Any:
    try:
        svc = get_user_service(request)
        p = request.query_params
        year = _int(p.get("year"), 0) or None
        month = _int(p.get("month"), 0) or None
        return _ok(svc.calendar(year, month, p.get("account_id", "")))
    except HTTPException:
        raise
    except Exception as e:
        return _fail("calendar_error", e)


@app.get("/api/reports/weekly")
async def weekly_report(request: Request) -> Any:
    try:
        svc = get_user_service(request)
        p = request.query_params
        return _ok(svc.weekly_report(_int(p.get("week_offset"), 0), p.get("account_id", "")))
    except HTTPException:
        raise
    except Exception as e:
        return _fail("weekly_report_error", e)


@app.get("/api/reports/monthly")
async def monthly_report(request: Request) -> Any:
    try:
        svc = get_user_service(request)
        p = request.query_params
        year = _int(p.get("year"), 0) or None
        month = _int(p.get("month"), 0) or None
        return _ok(svc.monthly_report(year, month, p.get("account_id", "")))
    except HTTPException:
        raise
    except Exception as e:
        return _fail("monthly_report_error", e)


@app.get("/api/analytics/strategies")
async def strategy_analytics(request: Request) -> Any:
    try:
        svc = get_user_service(request)
        return _ok(svc.strategy_analytics(request.query_params.get("account_id", "")))
    except HTTPException:
        raise
    except Exception as e:
        return _fail("strategy_analytics_error", e)


@app.get("/api/analytics/performance")
async def performance_score(request: Request) -> Any:
    try:
        svc = get_user_service(request)
        p = request.query_params
        return _ok(svc.performance_score(p.get("account_id", ""), p.get("strategy_id", "")))
    except HTTPException:
        raise
    except Exception as e:
        return _fail("performance_score_error", e)


@app.get("/api/compare/periods")
async def compare_periods(request: Request) -> Any:
    try:
        svc = get_user_service(request)
        p = request.query_params
        return _ok(svc.compare_periods(p.get("from_date", ""), p.get("to_date", ""),
                                       p.get("granularity", "monthly"), p.get("account_id", "")))
    except HTTPException:
        raise
    except Exception as e:
        return _fail("compare_periods_error", e)


@app.get("/api/compare/accounts")
async def compare_accounts(request: Request) -> Any:
    try:
        svc = get_user_service(request)
        p = request.query_params
        return _ok(svc.compare_accounts(p.get("first", ""), p.get("second", "")))
    except HTTPException:
        raise
    except Exception as e:
        return _fail("compare_accounts_error", e)
