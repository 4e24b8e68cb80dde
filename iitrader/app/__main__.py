# iitrader/app/__main__.py
from __future__ import annotations

import argparse
import sys
from decimal import Decimal, InvalidOperation
from typing import Callable, Dict

from loguru import logger
from pydantic import ValidationError

from iitrader.backend.broker.rest_client import (
    IITraderClient,
    RestApiError,
    RestConfig,
    RestConfigError,
)
from iitrader.config import get_settings
from iitrader.infra.logging import setup_logging

ACTIONS = [
    "quote", "period", "order", "cancel", "orders", "horders", "hdeals",
    "position", "right", "doc", "watch", "unwatch", "watchlist",
    "rank", "ranks", "sub", "sublist", "tags", "netvalue", "apitoken", "symbol-data",
]


def _decimal(value: str) -> Decimal:
    try:
        return Decimal(value)
    except InvalidOperation as e:
        raise argparse.ArgumentTypeError(f"not a decimal: {value!r}") from e


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="iitrader",
        description="Runs one call against the trading service REST API and prints the reply.",
    )
    p.add_argument("action", choices=ACTIONS, help="Endpoint to call.")
    p.add_argument("--symbol", default="2454.TW", help="Symbol for quote/period/order/watch/symbol-data.")
    p.add_argument("--ts", type=int, default=0, help="Quote at this epoch second (0 = latest).")
    p.add_argument("--ts1", type=int, default=0, help="Period start (epoch seconds).")
    p.add_argument("--ts2", type=int, default=0, help="Period end (epoch seconds, 0 = now for symbol-data).")
    p.add_argument("--volume", type=_decimal, default=Decimal("1"), help="Order volume.")
    p.add_argument("--price", type=_decimal, default=Decimal("0"), help="Order price.")
    p.add_argument("--type", dest="order_type", type=int, default=0, help="Order type code.")
    p.add_argument("--tag", default="", help="Order tag.")
    p.add_argument("--callback", default="", help="Order callback.")
    p.add_argument("--order-id", default="", help="Order id for 'cancel'.")
    p.add_argument("--page", type=int, default=0, help="Page for 'horders'/'hdeals'.")
    p.add_argument("--hash", default="", help="Strategy hash for 'sub'.")
    p.add_argument(
        "--log-level",
        default=None,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Log level (default: IITRADER_LOG_LEVEL or INFO).",
    )
    return p


def _print_rows(title: str, rows) -> None:
    print(f"\n=== {title} ===")
    if not rows:
        print("(empty)")
    for row in rows:
        print(row)
    print()


def run_action(api: IITraderClient, args: argparse.Namespace) -> None:
    handlers: Dict[str, Callable[[], None]] = {
        "quote": lambda: _print_rows("QUOTE", [api.quote(args.symbol, args.ts)]),
        "period": lambda: _print_rows("QUOTE PERIOD", api.quote_period(args.symbol, args.ts1, args.ts2).candles),
        "order": lambda: _print_rows(
            "ORDER",
            [api.place_order(args.symbol, args.volume, args.price, args.callback, args.order_type, args.tag)],
        ),
        "cancel": lambda: (api.cancel_order(args.order_id), _print_rows("CANCEL", ["OK"])),
        "orders": lambda: _print_rows("OPEN ORDERS", api.open_orders().orders),
        "horders": lambda: _print_rows("HISTORICAL ORDERS", api.historical_orders(args.page).orders),
        "hdeals": lambda: _print_rows("HISTORICAL DEALS", api.historical_deals(args.page).deals),
        "position": lambda: _print_rows("POSITION", api.position().holdings()),
        "right": lambda: _print_rows("RIGHT", [api.right().right]),
        "doc": lambda: _print_rows("DOC ID", [api.doc_id().doc_id]),
        "watch": lambda: (api.watch(args.symbol), _print_rows("WATCH", ["OK"])),
        "unwatch": lambda: (api.unwatch(args.symbol), _print_rows("UNWATCH", ["OK"])),
        "watchlist": lambda: _print_rows("WATCH LIST", api.watch_list().watch_list),
        "rank": lambda: _print_rows("RANK", api.rank().ranks),
        "ranks": lambda: _print_rows("RANKS", api.ranks().ranks),
        "sub": lambda: (api.subscribe(args.hash), _print_rows("SUB", ["OK"])),
        "sublist": lambda: _print_rows("SUB LIST", api.sub_list().subs),
        "tags": lambda: _print_rows("ALL TAGS", api.all_tags().tags),
        "netvalue": lambda: _print_rows("NET VALUE", api.net_value().net_values),
        "apitoken": lambda: _print_rows("API TOKEN", [api.api_token().token]),
        "symbol-data": lambda: _print_rows(
            "SYMBOL DATA", [api.read_symbol_data(args.symbol, args.ts1, args.ts2)]
        ),
    }
    handlers[args.action]()


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    try:
        settings = get_settings()
    except ValidationError as e:
        setup_logging(args.log_level or "INFO")
        logger.error(f"Invalid configuration: {e}")
        return 2
    setup_logging(args.log_level or settings.LOG_LEVEL)

    try:
        api = IITraderClient(RestConfig.from_env(settings))
    except RestConfigError as e:
        logger.error(f"Configuration error: {e} (set IITRADER_TOKEN)")
        return 2

    try:
        run_action(api, args)
        return 0
    except RestApiError as e:
        logger.error(f"Error: {e}")
        return 1
    except KeyboardInterrupt:
        print("\nInterrupted.")
        return 130
    finally:
        api.close()


if __name__ == "__main__":
    sys.exit(main())
