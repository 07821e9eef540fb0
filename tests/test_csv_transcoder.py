"""CSV Transcoder: export layout, import parsing, warnings and failures."""

from datetime import date

import pytest

from tradebook.journal.csv_transcoder import (
    EXPORT_COLUMNS,
    export_filename,
    export_trades,
    import_trades,
    match_headers,
    select_columns,
)
from tradebook.utils.exceptions import CsvParseError, CsvRowError

from conftest import make_trade

ACCOUNT = "acct-1"
USER = "user-1"


def _roundtrip_trades():
    closed = make_trade(
        symbol="EURUSD", trade_type="long", entry_price=1.1, quantity=1000,
        entry_date="2024-01-15T10:30:00+00:00", exit_price=1.105,
        exit_date="2024-01-16T08:00:00+00:00", pnl=5.0, status="closed",
        commission=1.5, stop_loss=1.09, take_profit=1.12,
    )
    open_short = make_trade(
        symbol="GBPUSD", trade_type="short", entry_price=1.27, quantity=500,
        entry_date="2024-01-17T14:00:00+00:00",
        notes='He said "hold", then sold',
    )
    return [closed, open_short]


class TestExport:

    def test_header_and_fixed_column_order(self):
        content = export_trades(_roundtrip_trades())
        header = content.splitlines()[0]
        assert header == ",".join(EXPORT_COLUMNS)

    def test_values_and_blanks(self):
        rows = export_trades(_roundtrip_trades()).splitlines()
        closed = rows[1].split(",")
        assert closed[0] == "EURUSD"
        assert closed[5] == "2024-01-15"
        assert closed[6] == "2024-01-16"
        assert closed[11] == "1.5"   # commission
        assert closed[12] == "0"     # swap defaults to 0
        open_row = rows[2]
        assert open_row.startswith("GBPUSD,short,1.27,,500,2024-01-17,,")

    def test_quotes_are_doubled_and_comma_fields_quoted(self):
        content = export_trades(_roundtrip_trades())
        assert '"He said ""hold"", then sold"' in content

    def test_date_uses_utc_component(self):
        trade = make_trade(entry_date="2024-01-15T23:30:00-05:00")
        row = export_trades([trade]).splitlines()[1]
        assert ",2024-01-16," in row

    def test_custom_columns_always_include_required(self):
        assert select_columns(["Emotions"]) == [
            "Symbol", "Trade Type", "Entry Price", "Quantity", "Entry Date", "Emotions",
        ]

    def test_unknown_custom_column(self):
        with pytest.raises(CsvParseError):
            select_columns(["Favourite Colour"])

    def test_confluence_score_column(self):
        trade = make_trade()
        content = export_trades([trade], ["Confluence Score"], {trade.id: 6.5})
        header, row = content.splitlines()
        assert header.endswith("Confluence Score")
        assert row.endswith(",6.5")

    def test_export_filename(self):
        assert export_filename("My Account #1", date(2024, 3, 5)) == "My_Account__1_trades_2024-03-05.csv"


class TestRoundTrip:

    def test_export_then_import_preserves_core_fields(self):
        originals = _roundtrip_trades()
        preview = import_trades(export_trades(originals), USER, ACCOUNT)
        assert len(preview.trades) == len(originals)
        for before, after in zip(originals, preview.trades):
            assert after.symbol == before.symbol
            assert after.trade_type == before.trade_type
            assert after.entry_price == before.entry_price
            assert after.quantity == before.quantity
            assert after.entry_date[:10] == before.entry_date[:10]
            assert after.exit_price == before.exit_price
            assert after.pnl == before.pnl
            assert after.status == before.status
        assert preview.trades[1].notes == 'He said "hold", then sold'
        assert not preview.has_warnings


class TestImport:

    def test_status_inferred_from_exit_fields(self):
        text = (
            "Symbol,Trade Type,Entry Price,Quantity,Entry Date,Exit Price\n"
            "EURUSD,buy,1.1,1000,2024-01-15,1.2\n"
            "GBPUSD,sell,1.3,500,2024-01-16,\n"
        )
        trades = import_trades(text, USER, ACCOUNT).trades
        assert (trades[0].trade_type, trades[0].status) == ("long", "closed")
        assert (trades[1].trade_type, trades[1].status) == ("short", "open")

    def test_explicit_status_wins(self):
        text = (
            "Symbol,Trade Type,Entry Price,Quantity,Entry Date,Exit Price,Status\n"
            "EURUSD,long,1.1,1000,2024-01-15,1.2,Open\n"
        )
        assert import_trades(text, USER, ACCOUNT).trades[0].status == "open"

    def test_records_owner_and_source(self):
        text = "Symbol,Trade Type,Entry Price,Quantity,Entry Date\nEURUSD,long,1.1,1000,2024-01-15\n"
        trade = import_trades(text, USER, ACCOUNT).trades[0]
        assert trade.user_id == USER
        assert trade.trading_account_id == ACCOUNT
        assert trade.source == "csv"
        assert trade.commission == 0.0

    def test_fuzzy_headers_in_any_order(self):
        text = (
            "Entry Date/Time, symbol ,Quantity (lots),TRADE TYPE,Entry Price (USD),PnL ($)\n"
            "2024-01-15,EURUSD,2,Long,1.1,-12.5\n"
        )
        trade = import_trades(text, USER, ACCOUNT).trades[0]
        assert trade.symbol == "EURUSD"
        assert trade.quantity == 2
        assert trade.pnl == -12.5
        assert trade.status == "closed"

    def test_match_headers_binds_each_column_once(self):
        mapping = match_headers(["Exit Price", "Entry Price", "Price"])
        assert mapping == {0: "Exit Price", 1: "Entry Price"}

    def test_blank_lines_are_skipped(self):
        text = "\nSymbol,Trade Type,Entry Price,Quantity,Entry Date\n\nEURUSD,long,1.1,1000,2024-01-15\n\n"
        assert len(import_trades(text, USER, ACCOUNT).trades) == 1

    def test_header_only_is_rejected(self):
        with pytest.raises(CsvParseError, match="at least one trade row"):
            import_trades("Symbol,Trade Type,Entry Price,Quantity,Entry Date\n", USER, ACCOUNT)

    def test_missing_required_columns_are_named(self):
        text = "Symbol,Trade Type,Entry Price\nEURUSD,long,1.1\n"
        with pytest.raises(CsvParseError) as exc:
            import_trades(text, USER, ACCOUNT)
        assert exc.value.message == "Missing required columns: Quantity, Entry Date"

    def test_unparseable_entry_price_aborts(self):
        text = (
            "Symbol,Trade Type,Entry Price,Quantity,Entry Date\n"
            "EURUSD,long,1.1,1000,2024-01-15\n"
            "GBPUSD,long,abc,1000,2024-01-15\n"
        )
        with pytest.raises(CsvRowError) as exc:
            import_trades(text, USER, ACCOUNT)
        assert "GBPUSD,long,abc" in exc.value.row
        assert exc.value.message.startswith("Invalid trade data in row:")
        assert exc.value.line_number == 3

    def test_missing_required_value_aborts(self):
        text = "Symbol,Trade Type,Entry Price,Quantity,Entry Date\n,long,1.1,1000,2024-01-15\n"
        with pytest.raises(CsvRowError):
            import_trades(text, USER, ACCOUNT)

    def test_non_finite_entry_values_abort(self):
        for price, qty in (("inf", "1000"), ("1.1", "nan"), ("-Infinity", "1000")):
            text = ("Symbol,Trade Type,Entry Price,Quantity,Entry Date\n"
                    f"EURUSD,long,{price},{qty},2024-01-15\n")
            with pytest.raises(CsvRowError):
                import_trades(text, USER, ACCOUNT)

    def test_unparseable_entry_date_aborts(self):
        text = "Symbol,Trade Type,Entry Price,Quantity,Entry Date\nEURUSD,long,1.1,1000,not a date\n"
        with pytest.raises(CsvRowError):
            import_trades(text, USER, ACCOUNT)


class TestImportWarnings:

    def test_suspicious_values_are_kept_with_warnings(self):
        text = (
            "Symbol,Trade Type,Entry Price,Quantity,Entry Date,Stop Loss\n"
            "EURUSD,hold,0,-5,2024-01-15,n/a\n"
        )
        preview = import_trades(text, USER, ACCOUNT)
        trade = preview.trades[0]
        assert trade.trade_type == "hold"
        assert trade.entry_price == 0
        assert trade.quantity == -5
        assert trade.stop_loss is None
        columns = {w.column for w in preview.warnings}
        assert columns == {"Trade Type", "Entry Price", "Quantity", "Stop Loss"}
        assert all(w.line_number == 2 for w in preview.warnings)

    def test_non_finite_optional_numbers_are_dropped_with_warnings(self):
        text = (
            "Symbol,Trade Type,Entry Price,Quantity,Entry Date,PnL,Stop Loss\n"
            "EURUSD,buy,1.1,1000,2024-01-01,nan,inf\n"
        )
        preview = import_trades(text, USER, ACCOUNT)
        trade = preview.trades[0]
        assert trade.pnl is None
        assert trade.stop_loss is None
        assert trade.status == "open"
        assert {w.column for w in preview.warnings} == {"PnL", "Stop Loss"}

    def test_preview_payload(self):
        text = "Symbol,Trade Type,Entry Price,Quantity,Entry Date\nEURUSD,long,1.1,1000,2024-01-15\n"
        payload = import_trades(text, USER, ACCOUNT).to_dict()
        assert payload["count"] == 1
        assert payload["warnings"] == []
        assert payload["trades"][0]["symbol"] == "EURUSD"
