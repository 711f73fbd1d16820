#!/usr/bin/env python3
"""
SEALEDRPS CLI

Command-line interface for playing confidential Rock-Paper-Scissors against a
local development deployment persisted in a ledger file.

Usage:
    sealedrps [--format json|yaml|table|text] [--ledger PATH] <command> <subcommand> [options]

Commands:
    match       create / play / view / resolve / list
    club        standings / claim
    config      show / get / validate / schema

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

import argparse
import json
import sys
from enum import Enum
from typing import Any, List, Optional

from sealedrps import __version__
from sealedrps.club import ClubError
from sealedrps.codec import describe_move, parse_move, unpack_state
from sealedrps.config import ConfigError, get_config_manager
from sealedrps.errors import MatchError
from sealedrps.match import NO_PLAYER, MatchOutcome
from sealedrps.observability import correlation_id_var, generate_correlation_id, set_correlation_id
from sealedrps.resilience import RetryExhaustedError
from sealedrps.store import Deployment, LedgerStore, StoreError


class OutputFormat(Enum):
    """Output format options."""
    JSON = "json"
    YAML = "yaml"
    TABLE = "table"
    TEXT = "text"


class CLIError(Exception):
    """CLI error with exit code."""

    code = "cli_error"

    def __init__(self, message: str, exit_code: int = 1):
        super().__init__(message)
        self.message = message
        self.exit_code = exit_code


def format_output(data: Any, fmt: OutputFormat = OutputFormat.JSON) -> str:
    """Format data for output."""
    if fmt == OutputFormat.JSON:
        return json.dumps(data, indent=2, default=str)
    elif fmt == OutputFormat.YAML:
        import yaml
        return yaml.dump(data, default_flow_style=False)
    elif fmt == OutputFormat.TABLE:
        return _format_table(data)
    return _format_text(data)


def _format_table(data: Any) -> str:
    """Format data as ASCII table."""
    if isinstance(data, list) and data and isinstance(data[0], dict):
        headers = list(data[0].keys())
        rows = [[str(row.get(h, ""))[:42] for h in headers] for row in data]
        widths = [max(len(h), max(len(r[i]) for r in rows)) for i, h in enumerate(headers)]

        lines = [" | ".join(h.ljust(widths[i]) for i, h in enumerate(headers))]
        lines.append("-+-".join("-" * w for w in widths))
        for row in rows:
            lines.append(" | ".join(c.ljust(widths[i]) for i, c in enumerate(row)))
        return "\n".join(lines)
    elif isinstance(data, dict):
        return "\n".join(f"{k}: {v}" for k, v in data.items())
    return str(data)


def _format_text(data: Any) -> str:
    if isinstance(data, list):
        return "\n".join(_format_text(item) for item in data)
    if isinstance(data, dict):
        return "  ".join(f"{k}={v}" for k, v in data.items())
    return str(data)


_EVENT_BASE_FIELDS = ("event_id", "event_timestamp", "correlation_id", "metadata", "match_id")


def _history_entry(event: Any) -> dict:
    entry = {k: v for k, v in event.to_dict().items() if k not in _EVENT_BASE_FIELDS}
    entry["at"] = event.event_timestamp
    return entry


def _result_line(view: dict) -> str:
    outcome = view["outcome"]
    if outcome == MatchOutcome.UNRESOLVED.value:
        return "in progress"
    if outcome == MatchOutcome.DRAW.value:
        return "draw"
    if outcome == MatchOutcome.PLAYER1_WINS.value:
        return f"player 1 wins ({view['player1']})"
    if view["single_player"]:
        return "player 2 wins (house)"
    return f"player 2 wins ({view['player2']})"


class SealedRPSCLI:
    """Main CLI application."""

    def __init__(self):
        self.parser = argparse.ArgumentParser(
            prog="sealedrps",
            description="Confidential Rock-Paper-Scissors",
            formatter_class=argparse.RawDescriptionHelpFormatter,
        )
        self.parser.add_argument(
            "--version", "-V",
            action="version",
            version=f"sealedrps {__version__}",
        )
        self.parser.add_argument(
            "--format", "-f",
            choices=["json", "yaml", "table", "text"],
            default="json",
            help="Output format (default: json)",
        )
        self.parser.add_argument(
            "--ledger", "-l",
            help="Ledger file (default: store.ledger_path)",
        )
        self.parser.add_argument(
            "--config", "-c",
            help="Configuration file to load",
        )
        self.parser.add_argument(
            "--quiet", "-q",
            action="store_true",
            help="Suppress error output",
        )

        self.subparsers = self.parser.add_subparsers(dest="command", help="Commands")
        self._register_commands()

    def _register_commands(self) -> None:
        self._register_match_commands()
        self._register_club_commands()
        self._register_config_commands()

    def _register_match_commands(self) -> None:
        match = self.subparsers.add_parser("match", help="Play matches")
        match_sub = match.add_subparsers(dest="subcommand")

        create = match_sub.add_parser("create", help="Create a match")
        create.add_argument("--player1", "-1", required=True, help="Player 1 identity")
        create.add_argument("--player2", "-2", help="Player 2 identity (omit to play the house)")

        play = match_sub.add_parser("play", help="Submit an encrypted move")
        play.add_argument("--match", "-m", required=True, help="Match ID")
        play.add_argument("--player", "-p", required=True, help="Submitting player")
        play.add_argument("--move", required=True, help="ROCK, PAPER, SCISSORS (or 1, 2, 4)")

        view = match_sub.add_parser("view", help="Show match state")
        view.add_argument("--match", "-m", required=True, help="Match ID")

        resolve = match_sub.add_parser("resolve", help="Reveal and resolve a match")
        resolve.add_argument("--match", "-m", required=True, help="Match ID")

        match_sub.add_parser("list", help="List matches")

    def _register_club_commands(self) -> None:
        club = self.subparsers.add_parser("club", help="Trophy club")
        club_sub = club.add_subparsers(dest="subcommand")

        club_sub.add_parser("standings", help="Wins and trophies per player")

        claim = club_sub.add_parser("claim", help="Exchange wins for a trophy")
        claim.add_argument("--player", "-p", required=True, help="Claiming player")

    def _register_config_commands(self) -> None:
        config = self.subparsers.add_parser("config", help="Configuration management")
        config_sub = config.add_subparsers(dest="subcommand")

        config_sub.add_parser("show", help="Show current configuration")

        get = config_sub.add_parser("get", help="Get a configuration value")
        get.add_argument("path", help="Dotted path, e.g. resolver.max_attempts")

        config_sub.add_parser("validate", help="Validate configuration")
        config_sub.add_parser("schema", help="Export configuration schema")

    def run(self, args: Optional[List[str]] = None) -> int:
        """Run the CLI."""
        parsed = self.parser.parse_args(args)

        if not parsed.command:
            self.parser.print_help()
            return 0

        token = set_correlation_id(generate_correlation_id())
        try:
            self._load_config(parsed)
            fmt = OutputFormat(parsed.format)
            result = self._dispatch(parsed)

            if result is not None:
                print(format_output(result, fmt))

            return 0

        except (MatchError, ClubError) as e:
            self._error(parsed, f"[{e.code}] {e}")
            return 1

        except CLIError as e:
            self._error(parsed, f"[{e.code}] {e}")
            return e.exit_code

        except (ConfigError, StoreError, RetryExhaustedError) as e:
            self._error(parsed, str(e))
            return 1

        finally:
            correlation_id_var.reset(token)

    def _error(self, parsed: argparse.Namespace, message: str) -> None:
        if not parsed.quiet:
            print(f"Error: {message}", file=sys.stderr)

    def _load_config(self, parsed: argparse.Namespace) -> None:
        mgr = get_config_manager()
        if parsed.config:
            mgr.load_from_file(parsed.config)
        else:
            mgr.load_defaults()

    def _dispatch(self, args: argparse.Namespace) -> Any:
        """Dispatch command to handler."""
        cmd = args.command
        subcmd = getattr(args, "subcommand", None)

        handler_name = f"_handle_{cmd}_{subcmd}" if subcmd else f"_handle_{cmd}"
        handler = getattr(self, handler_name, None)

        if handler is None:
            raise CLIError(f"Unknown command: {cmd} {subcmd or ''}".strip(), exit_code=2)

        return handler(args)

    def _store(self, args: argparse.Namespace) -> LedgerStore:
        return LedgerStore(args.ledger)

    def _deployment(self, args: argparse.Namespace) -> Deployment:
        return self._store(args).load_or_create()

    # Match handlers
    def _handle_match_create(self, args: argparse.Namespace) -> Any:
        store = self._store(args)
        deployment = store.load_or_create()
        match = deployment.club.create_match(args.player1, args.player2 or NO_PLAYER)
        store.save(deployment)
        return match.read_state().to_dict()

    def _handle_match_play(self, args: argparse.Namespace) -> Any:
        try:
            move = parse_move(args.move)
        except ValueError as exc:
            raise CLIError(str(exc)) from exc

        store = self._store(args)
        deployment = store.load_or_create()
        match = deployment.registry.get(args.match)
        encrypted = deployment.coprocessor.encrypt_input(int(move), match.match_id, args.player)
        match.submit_move(args.player, encrypted)
        store.save(deployment)

        view = match.read_state()
        return {
            "match_id": view.match_id,
            "player": args.player,
            "status": "submitted",
            "phase": view.phase,
        }

    def _handle_match_view(self, args: argparse.Namespace) -> Any:
        deployment = self._deployment(args)
        view = deployment.registry.get(args.match).read_state().to_dict()
        view["result"] = _result_line(view)
        if view["revealed_state"] is not None:
            p1, p2 = unpack_state(view["revealed_state"])
            view["player1_played"] = describe_move(p1)
            view["player2_played"] = describe_move(p2)
        view["history"] = [_history_entry(e) for e in deployment.events.read_stream(args.match)]
        return view

    def _handle_match_resolve(self, args: argparse.Namespace) -> Any:
        from sealedrps.driver import ResolutionDriver

        store = self._store(args)
        deployment = store.load_or_create()
        match = deployment.registry.get(args.match)
        result = ResolutionDriver(deployment.authority).resolve(match)
        store.save(deployment)
        return result.to_dict()

    def _handle_match_list(self, args: argparse.Namespace) -> Any:
        rows = []
        for match in self._deployment(args).registry.matches():
            view = match.read_state()
            rows.append({
                "match_id": view.match_id,
                "phase": view.phase,
                "player1": view.player1,
                "player2": view.player2,
                "outcome": view.outcome,
            })
        return rows

    # Club handlers
    def _handle_club_standings(self, args: argparse.Namespace) -> Any:
        return self._deployment(args).club.standings()

    def _handle_club_claim(self, args: argparse.Namespace) -> Any:
        store = self._store(args)
        deployment = store.load_or_create()
        trophy = deployment.club.claim(args.player)
        store.save(deployment)
        return {
            "holder": trophy.holder,
            "level": trophy.level,
            "uri": deployment.club.uri(trophy.level),
        }

    # Config handlers
    def _handle_config_show(self, args: argparse.Namespace) -> Any:
        return get_config_manager().config.to_dict()

    def _handle_config_get(self, args: argparse.Namespace) -> Any:
        return {"path": args.path, "value": get_config_manager().get(args.path)}

    def _handle_config_validate(self, args: argparse.Namespace) -> Any:
        errors = get_config_manager().validate()
        return {"valid": len(errors) == 0, "errors": errors}

    def _handle_config_schema(self, args: argparse.Namespace) -> Any:
        return get_config_manager().export_schema()


def main() -> int:
    """CLI entry point."""
    cli = SealedRPSCLI()
    return cli.run()


if __name__ == "__main__":
    sys.exit(main())
