#!/usr/bin/env python3
"""
otp_cli.py — command line authenticator on top of otpcore and otpvault.

Subcommands:
- add        : parse scanned/pasted text (URI, migration QR, JSON, ...) and store it
- new        : create an account with a fresh random secret
- list       : show stored accounts
- code       : print the current code of an account
- watch      : refresh the code of an account every second
- next       : move a HOTP account to its next counter
- uri        : print the otpauth URI of an account
- remove     : delete an account
- export     : print a JSON backup (or a migration URI with --migration)
- import     : restore a JSON backup
- encryption : turn AES-GCM storage encryption on or off

eg..:
    onetime add "otpauth://totp/Example:alice@example.com?secret=JBSWY3DPEHPK3PXP&issuer=Example"
    onetime new --name alice@example.com --issuer MyService --digits 8
    onetime watch 3f2a
"""

import argparse
import logging
import sys
import time

import pyotp

from otpcore import (
    OTPError,
    ParseError,
    code_for,
    encode_migration_uri,
    new_credential,
    parse_all,
)
from otpcore.validators import DEFAULT_DIGITS, DEFAULT_PERIOD
from otpvault import AccountNotFound, AccountStore, SqliteKeyValueStore, VaultUnreadable


class CommandError(Exception):
    pass


def _open_store(args) -> AccountStore:
    return AccountStore(SqliteKeyValueStore(args.db))


def _find(store: AccountStore, ident: str):
    """Account by full id or by a unique id prefix."""
    matches = [account for account in store.get_accounts() if account.id.startswith(ident)]
    exact = [account for account in matches if account.id == ident]
    if exact:
        return exact[0]
    if not matches:
        raise CommandError(f"No account matches '{ident}'")
    if len(matches) > 1:
        raise CommandError(f"'{ident}' matches {len(matches)} accounts, use a longer id")
    return matches[0]


# --- CLI command handlers ---
def cmd_add(args):
    result = parse_all(args.text)
    if isinstance(result, ParseError):
        raise CommandError(result.message)
    store = _open_store(args)
    store.add_accounts(result)
    for account in result:
        print(f"[+] Added {account.id[:8]}  {account.label}")


def cmd_new(args):
    account = new_credential(
        name=args.name,
        secret=pyotp.random_base32(),
        issuer=args.issuer,
        algorithm=args.algorithm,
        digits=args.digits,
        period=args.period,
        otp_type="hotp" if args.hotp else "totp",
    )
    _open_store(args).add_account(account)
    print(f"[+] Added {account.id[:8]}  {account.label}")
    print("    otpauth URI (import into authenticator apps):")
    print("   ", account.to_uri())


def cmd_list(args):
    accounts = _open_store(args).get_accounts()
    if not accounts:
        print("No accounts stored.")
        return
    for account in accounts:
        print(f"{account.id[:8]}  {account.otp_type.upper():4}  {account.algorithm:6}  "
              f"{account.digits}d  {account.label}")


def cmd_code(args):
    account = _find(_open_store(args), args.id)
    result = code_for(account)
    if not result.ok:
        raise CommandError(result.error.message)
    if account.otp_type == "hotp":
        print(f"{account.label}  HOTP(counter={account.counter}): {result.code}")
    else:
        print(f"{account.label}  {result.code}  (valid ~{result.remaining:2d}s)")


def cmd_watch(args):
    account = _find(_open_store(args), args.id)
    if account.otp_type != "totp":
        raise CommandError("watch only works for TOTP accounts")
    print(f"[{account.label}] Press Ctrl+C to quit. {account.digits}-digit code every {account.period}s...\n")
    last_code = None
    try:
        while True:
            result = code_for(account)
            if not result.ok:
                raise CommandError(result.error.message)
            if result.code != last_code:
                print(f"TOTP: {result.code}  (valid ~{result.remaining:2d}s)")
                last_code = result.code
            else:
                print(f".. {result.remaining:2d}s left", end="\r", flush=True)
            time.sleep(1)
    except KeyboardInterrupt:
        print("\nBye.")


def cmd_next(args):
    store = _open_store(args)
    account = _find(store, args.id)
    try:
        account = store.advance_counter(account.id)
    except ValueError as exc:
        raise CommandError(str(exc)) from exc
    result = code_for(account)
    print(f"{account.label}  HOTP(counter={account.counter}): {result.code}")


def cmd_uri(args):
    print(_find(_open_store(args), args.id).to_uri())


def cmd_remove(args):
    store = _open_store(args)
    account = _find(store, args.id)
    store.delete_account(account.id)
    print(f"[-] Removed {account.id[:8]}  {account.label}")


def cmd_export(args):
    store = _open_store(args)
    if args.migration:
        print(encode_migration_uri(store.get_accounts()))
    else:
        print(store.export_accounts())


def cmd_import(args):
    with open(args.file, "r", encoding="utf-8") as f:
        count = _open_store(args).import_accounts(f.read(), replace=not args.merge)
    if not count:
        raise CommandError("No valid accounts found in backup")
    print(f"[+] Imported {count} account(s)")


def cmd_encryption(args):
    store = _open_store(args)
    store.set_encrypted_storage(args.state == "on")
    print(f"[*] Encrypted storage is {args.state}")


def cmd_help(args):
    print("'onetime -h' for help.")


# --- Argparse builder ---
def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(description="TOTP/HOTP authenticator")
    p.add_argument("--db", help="sqlite vault file (default: $ONETIME_DB or database/onetime_vault.db)")
    p.add_argument("--verbose", action="store_true", help="Verbose output")
    sub = p.add_subparsers(dest="cmd")
    p.set_defaults(func=cmd_help)

    pa = sub.add_parser("add", help="Add account(s) from scanned or pasted text")
    pa.add_argument("text", help="otpauth URI, migration URI, JSON, query string or Base32 secret")
    pa.set_defaults(func=cmd_add)

    pn = sub.add_parser("new", help="Create an account with a random secret")
    pn.add_argument("--name", required=True, help="Account label")
    pn.add_argument("--issuer", default="", help="Issuer label")
    pn.add_argument("--algorithm", default="SHA1", choices=["SHA1", "SHA256", "SHA512"])
    pn.add_argument("--digits", type=int, default=DEFAULT_DIGITS, help="Number of OTP digits")
    pn.add_argument("--period", type=int, default=DEFAULT_PERIOD, help="TOTP time step (seconds)")
    pn.add_argument("--hotp", action="store_true", help="Counter based account")
    pn.set_defaults(func=cmd_new)

    sub.add_parser("list", help="List stored accounts").set_defaults(func=cmd_list)

    for name, func, help_text in (
        ("code", cmd_code, "Print the current code"),
        ("watch", cmd_watch, "Show the TOTP code in real time"),
        ("next", cmd_next, "Advance a HOTP counter and print the new code"),
        ("uri", cmd_uri, "Print the otpauth URI"),
        ("remove", cmd_remove, "Delete an account"),
    ):
        sp = sub.add_parser(name, help=help_text)
        sp.add_argument("id", help="Account id or unique id prefix")
        sp.set_defaults(func=func)

    pe = sub.add_parser("export", help="Print a backup of every account")
    pe.add_argument("--migration", action="store_true", help="Google Authenticator migration URI instead of JSON")
    pe.set_defaults(func=cmd_export)

    pi = sub.add_parser("import", help="Restore a JSON backup")
    pi.add_argument("file", help="Backup file written by 'export'")
    pi.add_argument("--merge", action="store_true", help="Keep existing accounts")
    pi.set_defaults(func=cmd_import)

    pc = sub.add_parser("encryption", help="Toggle encrypted storage")
    pc.add_argument("state", choices=["on", "off"])
    pc.set_defaults(func=cmd_encryption)

    return p


def main(argv=None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="[+] %(message)s",
    )
    try:
        args.func(args)
    except (CommandError, OTPError, AccountNotFound, VaultUnreadable, OSError) as e:
        print(f"[!] {e}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
