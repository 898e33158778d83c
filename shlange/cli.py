#!/usr/bin/env python3
"""
shlange CLI — talk to your personas from the terminal.

    COMMAND         ALIASES         WHAT IT DOES
    -------         -------         ----------------------------------
    chat            repl            Interactive chat with the current persona
    say             ask             Send one message and print the reply
    history         log             Show a persona's conversation
    clear                           Clear one persona's history (or --all)
    persona         personas        List, show or edit persona settings
    use             switch          Select the current persona
    export          dump            Export history and personas to JSON
    import          load            Import a JSON export
    login                           Unlock admin settings with an admin code
    logout                          Drop the admin token
    remote                          List personas stored on the backend (admin)
    status          info            Show current persona, admin session, storage
    console         tui             Launch the interactive console
    wipe                            Delete all local data
"""

import argparse
import asyncio
import getpass
import json
import logging
import sys
from pathlib import Path

from shlange import __version__

logger = logging.getLogger(__name__)


def _setup_logging(cfg: dict):
    log_cfg = cfg.get("logging", {})
    level = getattr(logging, str(log_cfg.get("level", "WARNING")).upper(), logging.WARNING)
    log_file = log_cfg.get("file")

    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file))

    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        handlers=handlers,
    )


def _build(cfg: dict):
    """Wire up store, gateway and auth from config."""
    from shlange.auth import AdminAuth
    from shlange.gateway import CompletionGateway
    from shlange.storage.conversation_store import ConversationStore

    store = ConversationStore.from_config(cfg)
    gateway = CompletionGateway.from_config(store, cfg)
    auth = AdminAuth.from_config(store, cfg)
    return store, gateway, auth


def _fail(message: str) -> int:
    print(f"  ✗  {message}")
    return 1


def _print_message(msg, name: str = "") -> None:
    who = "you" if msg.role == "user" else (name or "assistant")
    stamp = msg.timestamp[:19].replace("T", " ") if msg.timestamp else ""
    print(f"  [{stamp}] {who}: {msg.text}")


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------

def cmd_chat(args, store, gateway, auth):
    """Interactive chat loop."""
    from shlange.chat import ChatSession
    from shlange.personas import get_persona_profile

    session = ChatSession(store, gateway)
    if args.persona:
        session.switch_persona(args.persona)

    def banner():
        profile = get_persona_profile(session.persona_id)
        cfg = store.get_persona_config(session.persona_id)
        print(f"  {profile.icon}  {cfg.display_name} — {profile.description}")
        print("     /persona <id>  /history  /clear  /quit")

    banner()
    while True:
        try:
            text = input("  > ")
        except (EOFError, KeyboardInterrupt):
            print()
            return 0

        text = text.strip()
        if not text:
            continue
        if text in ("/quit", "/exit"):
            return 0
        if text == "/clear":
            store.clear_log(session.persona_id)
            print("  ✓  History cleared")
            continue
        if text == "/history":
            name = store.get_persona_config(session.persona_id).display_name
            for msg in session.history():
                _print_message(msg, name)
            continue
        if text.startswith("/persona"):
            parts = text.split()
            if len(parts) == 2:
                session.switch_persona(parts[1])
            banner()
            continue

        outcome = asyncio.run(session.send(text))
        name = store.get_persona_config(session.persona_id).display_name
        print(f"  {name}: {outcome.reply.text}")


def cmd_say(args, store, gateway, auth):
    """Send a single message."""
    from shlange.chat import ChatSession
    from shlange.errors import ValidationError

    session = ChatSession(store, gateway)
    if args.persona:
        session.switch_persona(args.persona)
    try:
        outcome = asyncio.run(session.send(" ".join(args.text)))
    except ValidationError as e:
        return _fail(e.message)
    print(outcome.reply.text)
    return 0 if outcome.ok else 1


def cmd_history(args, store, gateway, auth):
    persona_id = args.persona or store.get_current_persona_id()
    log = store.get_log(persona_id)
    if args.last:
        log = log[-args.last:]
    if not log:
        print(f"  No messages for '{persona_id}'")
        return 0
    name = store.get_persona_config(persona_id).display_name
    for msg in log:
        _print_message(msg, name)
    return 0


def cmd_clear(args, store, gateway, auth):
    if args.all:
        result = store.clear_all_logs()
        label = "all personas"
    else:
        persona_id = args.persona or store.get_current_persona_id()
        result = store.clear_log(persona_id)
        label = f"'{persona_id}'"
    if not result:
        return _fail(f"Could not clear history: {result.error}")
    print(f"  ✓  Cleared history for {label}")
    return 0


def cmd_persona(args, store, gateway, auth):
    """List personas, show one, or edit one (requires a live admin token)."""
    from shlange.personas import get_persona_profile

    if not args.id:
        current = store.get_current_persona_id()
        for pid in store.known_persona_ids():
            cfg = store.get_persona_config(pid)
            profile = get_persona_profile(pid)
            marker = "*" if pid == current else " "
            print(f"  {marker} {profile.icon}  {pid:<10} {cfg.display_name}")
        return 0

    cfg = store.get_persona_config(args.id)
    edits = {
        "display_name": args.name,
        "personality": args.personality,
        "tone": args.tone,
        "system_prompt": args.prompt,
    }
    edits = {k: v for k, v in edits.items() if v is not None}

    if edits:
        if store.is_admin_token_expired():
            return _fail("Admin login required to edit personas. Run 'shlange login'.")
        for key, value in edits.items():
            setattr(cfg, key, value)
        result = store.save_persona_config(args.id, cfg)
        if not result:
            return _fail(f"Could not save persona: {result.error}")
        print(f"  ✓  Saved persona '{args.id}'")
        cfg = store.get_persona_config(args.id)

    print(f"  id:            {cfg.id}")
    print(f"  name:          {cfg.display_name}")
    print(f"  personality:   {cfg.personality}")
    print(f"  tone:          {cfg.tone}")
    print(f"  system prompt: {cfg.system_prompt}")
    return 0


def cmd_use(args, store, gateway, auth):
    from shlange.personas import PROFILES

    if args.id not in PROFILES:
        logger.warning("Selecting unknown persona '%s'", args.id)
    result = store.set_current_persona_id(args.id)
    if not result:
        return _fail(f"Could not select persona: {result.error}")
    print(f"  ✓  Now talking to '{args.id}'")
    return 0


def cmd_export(args, store, gateway, auth):
    data = store.export_snapshot().to_dict()
    indent = 2 if args.pretty else None
    try:
        with open(args.output, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=indent, ensure_ascii=False)
    except OSError as e:
        return _fail(f"Cannot write {args.output}: {e}")
    total = sum(len(v) for v in data["conversations"].values())
    print(f"  ✓  Exported {total} messages across {len(data['conversations'])} personas to {args.output}")
    return 0


def cmd_import(args, store, gateway, auth):
    try:
        with open(args.file, encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        return _fail(f"Cannot read {args.file}: {e}")
    result = store.import_snapshot(data)
    if not result:
        return _fail(f"Import failed: {result.error}")
    print(f"  ✓  Imported {args.file}")
    return 0


def cmd_login(args, store, gateway, auth):
    from shlange.errors import ShlangeError

    code = args.code if args.code is not None else getpass.getpass("  Admin code: ")
    try:
        session = asyncio.run(auth.login(code))
    except ShlangeError as e:
        return _fail(e.message or "Authentication failed")
    print(f"  ✓  Admin unlocked! Session expires {session.token_expiry}")
    return 0


def cmd_logout(args, store, gateway, auth):
    auth.logout()
    print("  ✓  Logged out")
    return 0


def cmd_remote(args, store, gateway, auth):
    """List personas stored on the backend (protected endpoint)."""
    from shlange.errors import ShlangeError

    try:
        if args.id:
            personas = [asyncio.run(auth.fetch_persona(args.id))]
        else:
            personas = asyncio.run(auth.fetch_personas())
    except ShlangeError as e:
        return _fail(e.message)
    for p in personas:
        print(f"  {p.get('id', '?'):<10} {p.get('name', '')}")
    return 0


def cmd_status(args, store, gateway, auth):
    current = store.get_current_persona_id()
    session = store.get_admin_session()
    print(f"  Storage:  {store.durable!r}")
    print(f"  Backend:  {gateway.url}")
    print(f"  Persona:  {current}")
    for pid in store.known_persona_ids():
        print(f"    {pid:<10} {len(store.get_log(pid))} messages")
    if session.token and not store.is_admin_token_expired():
        print(f"  Admin:    token valid until {session.token_expiry}")
    elif session.token:
        print("  Admin:    token expired")
    else:
        print("  Admin:    locked")
    return 0


def cmd_console(args, store, gateway, auth):
    from shlange.tui.app import ShlangeApp

    ShlangeApp(store=store, gateway=gateway, auth=auth).run()
    return 0


def cmd_wipe(args, store, gateway, auth):
    if not args.yes:
        answer = input("  Delete ALL conversations, personas and admin state? [y/N] ")
        if answer.strip().lower() not in ("y", "yes"):
            print("  Aborted")
            return 1
    result = store.clear_everything()
    if not result:
        return _fail(f"Could not wipe storage: {result.error}")
    print("  ✓  All local data deleted")
    return 0


# ---------------------------------------------------------------------------
# Parser with aliases
# ---------------------------------------------------------------------------

def _add_command(subparsers, names, help_text, func, setup_fn=None):
    """Register a command under its name plus aliases."""
    p = subparsers.add_parser(names[0], help=help_text, aliases=names[1:])
    p.set_defaults(func=func)
    if setup_fn:
        setup_fn(p)
    return p


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="shlange",
        description="shlange — persona chat from the terminal.",
        epilog="Run 'shlange <command> --help' for command-specific options.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "--version", "-V", action="version",
        version=f"shlange {__version__}",
    )
    parser.add_argument("--config", "-c", default=None, help="Path to config.yaml")

    sub = parser.add_subparsers(dest="command", metavar="<command>")

    def persona_opt(p):
        p.add_argument("--persona", "-p", default=None, help="Persona id (default: current)")

    _add_command(sub, ["chat", "repl"], "Interactive chat", cmd_chat, persona_opt)

    def setup_say(p):
        persona_opt(p)
        p.add_argument("text", nargs="+", help="Message to send")

    _add_command(sub, ["say", "ask"], "Send one message and print the reply", cmd_say, setup_say)

    def setup_history(p):
        persona_opt(p)
        p.add_argument("--last", "-n", type=int, default=0, help="Only the last N messages")

    _add_command(sub, ["history", "log"], "Show a persona's conversation", cmd_history, setup_history)

    def setup_clear(p):
        persona_opt(p)
        p.add_argument("--all", action="store_true", help="Clear every persona")

    _add_command(sub, ["clear"], "Clear conversation history", cmd_clear, setup_clear)

    def setup_persona(p):
        p.add_argument("id", nargs="?", default=None, help="Persona id (omit to list)")
        p.add_argument("--name", default=None, help="Display name")
        p.add_argument("--personality", default=None, help="Personality description")
        p.add_argument("--tone", type=int, choices=range(1, 11), default=None, metavar="1-10",
                       help="Tone, 1 (reserved) to 10 (playful)")
        p.add_argument("--prompt", default=None, help="System prompt")

    _add_command(sub, ["persona", "personas"], "List, show or edit personas", cmd_persona, setup_persona)

    def setup_use(p):
        p.add_argument("id", help="Persona id")

    _add_command(sub, ["use", "switch"], "Select the current persona", cmd_use, setup_use)

    def setup_export(p):
        p.add_argument("--output", "-o", default="shlange_export.json", help="Output file")
        p.add_argument("--pretty", action="store_true", help="Pretty-print JSON")

    _add_command(sub, ["export", "dump"], "Export history and personas", cmd_export, setup_export)

    def setup_import(p):
        p.add_argument("file", help="JSON export to import")

    _add_command(sub, ["import", "load"], "Import a JSON export", cmd_import, setup_import)

    def setup_login(p):
        p.add_argument("--code", default=None, help="Admin code (prompted if omitted)")

    _add_command(sub, ["login"], "Unlock admin settings", cmd_login, setup_login)
    _add_command(sub, ["logout"], "Drop the admin token", cmd_logout)

    def setup_remote(p):
        p.add_argument("id", nargs="?", default=None, help="Fetch a single persona")

    _add_command(sub, ["remote"], "List personas stored on the backend", cmd_remote, setup_remote)
    _add_command(sub, ["status", "info"], "Show current state", cmd_status)
    _add_command(sub, ["console", "tui"], "Launch the interactive console", cmd_console)

    def setup_wipe(p):
        p.add_argument("--yes", "-y", action="store_true", help="Don't ask for confirmation")

    _add_command(sub, ["wipe"], "Delete all local data", cmd_wipe, setup_wipe)
    return parser


def main(argv: list[str] | None = None) -> int:
    from shlange.config import load_config

    parser = build_parser()
    args = parser.parse_args(argv)
    if not args.command:
        parser.print_help()
        return 0

    try:
        cfg = load_config(Path(args.config) if args.config else None)
    except FileNotFoundError as e:
        return _fail(str(e))
    _setup_logging(cfg)

    store, gateway, auth = _build(cfg)
    return args.func(args, store, gateway, auth) or 0


if __name__ == "__main__":
    sys.exit(main())
