from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import Any, TypeVar

from pydantic import ValidationError

from yetify.config import Settings
from yetify.domain.errors import LifecycleError
from yetify.domain.models import StrategyStatus
from yetify.domain.plan_generation import parse_strategy_plan
from yetify.domain.strategy_codec import dump_strategy
from yetify.domain.wallet import CallbackExpired, NotAPendingCallback, WalletSession
from yetify.logging_context import with_logging_context
from yetify.logging_utils import setup_logging
from yetify.services.factory import Services, build_services, build_strategy_store
from yetify.services.wallet_connector import RedirectRequired

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _emit(payload: object) -> None:
    print(json.dumps(payload, indent=2, sort_keys=True))


def _error(message: str, **fields: Any) -> None:
    _emit({"error": message, **fields})


def _load_settings(env_file: str | None) -> Settings:
    if env_file in (None, ""):
        return Settings()
    return Settings(_env_file=env_file)


def _with_services(
    settings: Settings, action: Callable[[Services], Awaitable[T]]
) -> T:
    async def _run() -> T:
        services = build_services(settings)
        try:
            await services.connector.restore()
            return await action(services)
        finally:
            await services.aclose()

    return asyncio.run(_run())


def _session_payload(session: WalletSession | None) -> dict[str, Any] | None:
    return session.to_dict() if session is not None else None


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(prog="yetify", description="Strategy lifecycle tools")
    parser.add_argument("--env-file", default=None, help="Optional dotenv file to load settings from")
    subparsers = parser.add_subparsers(dest="command", required=True)

    save_parser = subparsers.add_parser("save", help="Save a strategy plan locally")
    source = save_parser.add_mutually_exclusive_group(required=True)
    source.add_argument("--plan-file", help="JSON file holding a generated plan")
    source.add_argument("--goal", help="Save the fallback plan for this goal")
    save_parser.add_argument("--name", required=True)
    save_parser.add_argument("--tag", action="append", default=[], dest="tags")

    list_parser = subparsers.add_parser("list", help="List saved strategies")
    list_parser.add_argument("--status", choices=[status.value for status in StrategyStatus])

    search_parser = subparsers.add_parser("search", help="Search by name, goal or tag")
    search_parser.add_argument("query")

    show_parser = subparsers.add_parser("show", help="Show one strategy")
    show_parser.add_argument("strategy_id")

    delete_parser = subparsers.add_parser("delete", help="Delete one strategy")
    delete_parser.add_argument("strategy_id")

    rename_parser = subparsers.add_parser("rename", help="Rename one strategy")
    rename_parser.add_argument("strategy_id")
    rename_parser.add_argument("name")

    connect_parser = subparsers.add_parser("connect", help="Connect a wallet provider")
    connect_parser.add_argument("provider")

    landing_parser = subparsers.add_parser("landing", help="Process a wallet redirect landing URL")
    landing_parser.add_argument("url")

    disconnect_parser = subparsers.add_parser("disconnect", help="Disconnect a wallet provider")
    disconnect_parser.add_argument("provider")

    subparsers.add_parser("wallet-status", help="Show wallet connection state")

    execute_parser = subparsers.add_parser("execute", help="Store a saved strategy on-chain")
    execute_parser.add_argument("strategy_id")
    execute_parser.add_argument("--provider", default=None)

    args = parser.parse_args(argv)

    try:
        settings = _load_settings(args.env_file)
    except ValidationError as exc:
        print(f"invalid configuration: {exc}", file=sys.stderr)
        return 2
    setup_logging(settings.log_level)

    with with_logging_context(run_id=args.command):
        if args.command == "save":
            return run_save(
                settings, plan_file=args.plan_file, goal=args.goal, name=args.name, tags=args.tags
            )
        if args.command == "list":
            return run_list(settings, status=args.status)
        if args.command == "search":
            return run_search(settings, args.query)
        if args.command == "show":
            return run_show(settings, args.strategy_id)
        if args.command == "delete":
            return run_delete(settings, args.strategy_id)
        if args.command == "rename":
            return run_rename(settings, args.strategy_id, args.name)
        if args.command == "connect":
            return run_connect(settings, args.provider)
        if args.command == "landing":
            return run_landing(settings, args.url)
        if args.command == "disconnect":
            return run_disconnect(settings, args.provider)
        if args.command == "wallet-status":
            return run_wallet_status(settings)
        if args.command == "execute":
            return run_execute(settings, args.strategy_id, provider=args.provider)
    return 1


def run_save(
    settings: Settings,
    *,
    plan_file: str | None,
    goal: str | None,
    name: str,
    tags: list[str],
) -> int:
    if plan_file is not None:
        try:
            payload = json.loads(Path(plan_file).read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            _error("plan file could not be read", details=str(exc))
            return 2
        if not isinstance(payload, dict):
            _error("plan file must hold a JSON object")
            return 2
        try:
            plan = parse_strategy_plan(payload)
        except ValidationError as exc:
            _error("plan file is not a valid strategy plan", details=str(exc))
            return 2
        saved = build_strategy_store(settings).save(plan, name, tags)
    else:
        saved = _with_services(
            settings,
            lambda services: services.coordinator.draft_and_save(goal or "", name, tags=tags),
        )
    if saved is None:
        _error("strategy could not be saved")
        return 1
    _emit(dump_strategy(saved))
    return 0


def run_list(settings: Settings, *, status: str | None = None) -> int:
    store = build_strategy_store(settings)
    strategies = store.list_by_status(status) if status else store.list_all()
    _emit([dump_strategy(strategy) for strategy in strategies])
    return 0


def run_search(settings: Settings, query: str) -> int:
    _emit([dump_strategy(strategy) for strategy in build_strategy_store(settings).search(query)])
    return 0


def run_show(settings: Settings, strategy_id: str) -> int:
    strategy = build_strategy_store(settings).get_by_id(strategy_id)
    if strategy is None:
        _error("strategy not found", strategyId=strategy_id)
        return 1
    _emit(dump_strategy(strategy))
    return 0


def run_delete(settings: Settings, strategy_id: str) -> int:
    if not build_strategy_store(settings).delete(strategy_id):
        _error("strategy not deleted", strategyId=strategy_id)
        return 1
    _emit({"deleted": strategy_id})
    return 0


def run_rename(settings: Settings, strategy_id: str, name: str) -> int:
    updated = build_strategy_store(settings).update(strategy_id, name=name)
    if updated is None:
        _error("strategy not updated", strategyId=strategy_id)
        return 1
    _emit(dump_strategy(updated))
    return 0


def run_connect(settings: Settings, provider: str) -> int:
    async def _connect(services: Services) -> int:
        try:
            result = await services.connector.connect(provider)
        except LifecycleError as exc:
            _error(str(exc), step=exc.step.value, provider=provider)
            return 1
        if isinstance(result, RedirectRequired):
            _emit(
                {
                    "provider": result.provider,
                    "redirectUrl": result.url,
                    "expiresAt": result.pending.expires_at.isoformat(),
                }
            )
            return 0
        _emit({"session": _session_payload(result)})
        return 0

    return _with_services(settings, _connect)


def run_landing(settings: Settings, url: str) -> int:
    async def _landing(services: Services) -> int:
        try:
            landing = await services.connector.handle_landing(url)
            execution = await services.coordinator.resume_from_landing(url)
        except LifecycleError as exc:
            _error(str(exc), step=exc.step.value)
            return 1
        outcome = landing.outcome
        payload: dict[str, Any] = {
            "session": _session_payload(landing.session),
            "transactionHashes": list(landing.transaction_hashes),
            "errorCode": landing.error_code,
            "execution": execution.to_dict() if execution is not None else None,
        }
        if isinstance(outcome, CallbackExpired):
            payload["callback"] = "expired"
        elif isinstance(outcome, NotAPendingCallback):
            payload["callback"] = outcome.reason
        else:
            payload["callback"] = "connected"
        _emit(payload)
        if landing.error_code or (execution is not None and not execution.ok):
            return 1
        return 0

    return _with_services(settings, _landing)


def run_disconnect(settings: Settings, provider: str) -> int:
    async def _disconnect(services: Services) -> int:
        try:
            await services.connector.disconnect(provider)
        except LifecycleError as exc:
            _error(str(exc), step=exc.step.value, provider=provider)
            return 1
        _emit({"provider": provider, "state": services.connector.state(provider).value})
        return 0

    return _with_services(settings, _disconnect)


def run_wallet_status(settings: Settings) -> int:
    async def _status(services: Services) -> int:
        connector = services.connector
        _emit(
            {
                name: {
                    "state": connector.state(name).value,
                    "session": _session_payload(connector.session(name)),
                }
                for name in connector.provider_names
            }
        )
        return 0

    return _with_services(settings, _status)


def run_execute(settings: Settings, strategy_id: str, *, provider: str | None = None) -> int:
    async def _execute(services: Services) -> int:
        outcome = await services.coordinator.execute(strategy_id, provider=provider)
        _emit(outcome.to_dict())
        return 0 if outcome.ok else 1

    return _with_services(settings, _execute)


if __name__ == "__main__":
    raise SystemExit(main())
