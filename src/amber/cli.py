"""CLI for amber - encrypted secrets in version-control friendly files."""

import argparse
import getpass
import json
import logging
import shlex
import sys
from pathlib import Path

import yaml
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.table import Table

from . import __version__
from . import keys, runner, secrets
from .changes import EncryptOutcome
from .config import DEFAULT_PLACEHOLDER, SECRET_KEY_ENV, SECRETS_FILE_ENV, get_default_secrets_file
from .errors import DecryptionFailedError, OutputForwardingError, SecretsError

console = Console()
err_console = Console(stderr=True)

logger = logging.getLogger("amber")

PRINT_STYLES = ("setenv", "json", "yaml")


def setup_logging(verbose: bool = False) -> None:
    """Send amber's log records to stderr through rich."""
    logger.setLevel(logging.DEBUG if verbose else logging.INFO)
    if not logger.handlers:
        logger.addHandler(RichHandler(console=err_console, show_time=False, show_path=False))


def _error(e) -> int:
    err_console.print(f"[red]Error:[/red] {escape(str(e))}")
    return 1


def _report(outcome: EncryptOutcome, name: str, value: str, document) -> None:
    record = document.find(name)
    label = {
        EncryptOutcome.ADDED: "[green]Added:[/green]",
        EncryptOutcome.UNCHANGED: "[dim]Unchanged:[/dim]",
        EncryptOutcome.OVERWRITTEN: "[yellow]Overwritten:[/yellow]",
    }[outcome]
    console.print(f"{label} {name} = {escape(secrets.mask_value(value))}")
    console.print(f"[dim]sha256: {record.sha256.hex()}[/dim]")


def cmd_init(args):
    """Create a new keypair and an empty secrets file."""
    secrets_file = args.file

    if secrets_file.exists() and not args.force:
        err_console.print(f"[yellow]Warning:[/yellow] File already exists: {escape(str(secrets_file))}")
        err_console.print("[dim]Use --force to reinitialize[/dim]")
        return 1

    private_key, document = secrets.Document.new()
    try:
        secrets.write_document(secrets_file, document)
    except OSError as e:
        return _error(f"Unable to write {secrets_file}: {e}")
    encoded = keys.encode_key(private_key)

    err_console.print(f"[green]Initialized:[/green] {escape(str(secrets_file))}")
    err_console.print(f"Your secret key is: {encoded}")
    err_console.print(
        "Please save this key immediately! If you lose it, you will lose access to your secrets."
    )
    err_console.print("Recommendation: keep it in a password manager")
    err_console.print(
        "If you're using this for CI, please update your CI configuration "
        f"with a secret {SECRET_KEY_ENV} environment variable"
    )
    print(f"export {SECRET_KEY_ENV}={encoded}")
    return 0


def _read_value(args):
    """
    Get the value to encrypt.

    The value is read from:
    1. the VALUE argument (NOT recommended - visible in shell history)
    2. stdin, when it is piped
    3. interactive hidden prompt (recommended)
    """
    if args.value is not None:
        err_console.print("[yellow]Warning:[/yellow] Value visible in shell history")
        return args.value

    if not sys.stdin.isatty():
        return sys.stdin.read().rstrip("\r\n")

    err_console.print(f"[cyan]Setting secret:[/cyan] {args.name}")
    value = getpass.getpass("Enter value (hidden): ")
    if not value:
        return value

    confirm = getpass.getpass("Confirm value (hidden): ")
    if value != confirm:
        raise SecretsError("Values don't match")
    return value


def cmd_encrypt(args):
    """Add or update a secret."""
    try:
        secrets.validate_name(args.name)
        document = secrets.read_document(args.file)

        value = _read_value(args)
        if not value:
            return _error("Empty value not allowed")

        outcome = document.encrypt(args.name, value)
        if outcome is not EncryptOutcome.UNCHANGED:
            secrets.write_document(args.file, document)

        _report(outcome, args.name, value, document)
        return 0

    except SecretsError as e:
        return _error(e)
    except OSError as e:
        return _error(f"Unable to access {args.file}: {e}")


def cmd_generate(args):
    """Generate a strong random value and store it."""
    try:
        secrets.validate_name(args.name)
        document = secrets.read_document(args.file)

        value = keys.generate_value(args.bytes)
        outcome = document.encrypt(args.name, value)
        secrets.write_document(args.file, document)

        _report(outcome, args.name, value, document)
        return 0

    except SecretsError as e:
        return _error(e)
    except OSError as e:
        return _error(f"Unable to access {args.file}: {e}")


def cmd_remove(args):
    """Remove a secret."""
    try:
        secrets.validate_name(args.name)
        document = secrets.read_document(args.file)
        document.remove(args.name)
        secrets.write_document(args.file, document)
        console.print(f"[green]Removed:[/green] {args.name}")
        return 0

    except SecretsError as e:
        return _error(e)
    except OSError as e:
        return _error(f"Unable to access {args.file}: {e}")


def cmd_list(args):
    """List secret names and hashes (no secret key needed)."""
    try:
        document = secrets.read_document(args.file)

        if not len(document):
            console.print("[dim]No secrets found.[/dim]")
            return 0

        table = Table(title="Secrets", show_header=True)
        table.add_column("Name", style="cyan")
        table.add_column("SHA-256", style="dim")

        for record in document.secrets:
            table.add_row(escape(record.name), record.sha256.hex()[:16])

        console.print(table)
        console.print(f"\n[dim]Total: {len(document)} secrets[/dim]")
        return 0

    except SecretsError as e:
        return _error(e)


def format_pairs(pairs, style: str) -> str:
    """Render decrypted pairs for the print command."""
    if style == "setenv":
        return "".join(f"export {name}={shlex.quote(value)}\n" for name, value in pairs)

    objects = [{"key": name, "value": value} for name, value in pairs]
    if style == "json":
        return json.dumps(objects, indent=2) + "\n"
    if style == "yaml":
        return yaml.safe_dump(objects, default_flow_style=False, sort_keys=False, allow_unicode=True)
    raise ValueError(f"Unknown print style: {style}")


def _decrypt(args):
    document = secrets.read_document(args.file)
    private_key = document.load_secret_key()
    return document.decrypt_all(private_key)


def cmd_print(args):
    """
    Print all decrypted secrets.

    WARNING: This outputs every secret in full.
    """
    try:
        pairs = _decrypt(args)
        sys.stdout.write(format_pairs(pairs, args.style))
        sys.stdout.flush()
        return 0

    except DecryptionFailedError as e:
        logger.error("%s", e)
        return 1
    except SecretsError as e:
        return _error(e)


def cmd_exec(args):
    """
    Execute a command with secrets injected as environment variables.

    Secret values are masked in the command's stdout and stderr unless
    --unmasked is given.

    Example:
        amber exec -- curl -H "Authorization: $API_KEY" https://api.example.com
    """
    # Strip leading '--' separator if present (argparse.REMAINDER includes it)
    command = args.exec_command
    if command and command[0] == "--":
        command = command[1:]

    if not command:
        return _error("No command specified")

    try:
        pairs = _decrypt(args)
    except DecryptionFailedError as e:
        logger.error("%s", e)
        return 1
    except SecretsError as e:
        return _error(e)

    env = runner.build_env(pairs)
    try:
        if args.unmasked:
            returncode = runner.run_unmasked(command, env)
        else:
            values = [value for _, value in pairs]
            returncode = runner.run_masked(command, env, values, args.placeholder)
    except OutputForwardingError as e:
        return _error(f"Lost output of {command[0]}: {e}")
    except OSError as e:
        return _error(f"Unable to launch {command[0]}: {e}")

    if returncode < 0:
        # Killed by a signal, report it the way shells do
        return 128 - returncode
    return returncode


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="amber",
        description="Store encrypted secrets in version-control friendly files",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=f"""
Examples:
  amber init                            # Create keypair and amber.yaml
  amber encrypt API_KEY                 # Add a secret via hidden input
  echo -n value | amber encrypt API_KEY # Add a secret from stdin
  amber generate DB_PASSWORD            # Add a random secret
  amber list                            # Names and hashes, no key needed
  amber print --style json              # All decrypted secrets
  amber exec -- ./deploy.sh             # Run with secrets, output masked

Environment:
  {SECRET_KEY_ENV:<18}  Secret key (never pass it on the command line)
  {SECRETS_FILE_ENV:<18}  Override the secrets file location
        """
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("-f", "--file", type=Path,
                        help=f"Secrets file (default: ${SECRETS_FILE_ENV}, or amber.yaml "
                             "in this or a parent directory)")
    parser.add_argument("-v", "--verbose", action="store_true", help="Turn on verbose output")

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # init
    init_parser = subparsers.add_parser("init", help="Create a new keypair and secrets file")
    init_parser.add_argument("--force", action="store_true", help="Overwrite existing file")

    # encrypt
    encrypt_parser = subparsers.add_parser("encrypt", help="Add or update a secret")
    encrypt_parser.add_argument("name", help="Secret name (A-Z, 0-9 and _)")
    encrypt_parser.add_argument("value", nargs="?",
                                help="Value (NOT recommended - visible in history)")

    # generate
    generate_parser = subparsers.add_parser("generate", help="Add a strong random secret")
    generate_parser.add_argument("name", help="Secret name (A-Z, 0-9 and _)")
    generate_parser.add_argument("--bytes", type=int, default=24,
                                 help="Random bytes in the value (default: 24)")

    # remove
    remove_parser = subparsers.add_parser("remove", help="Remove a secret")
    remove_parser.add_argument("name", help="Secret name")

    # list
    subparsers.add_parser("list", help="List secret names and hashes")

    # print
    print_parser = subparsers.add_parser("print", help="Print all decrypted secrets")
    print_parser.add_argument("--style", choices=PRINT_STYLES, default="setenv",
                              help="Output style (default: setenv)")

    # exec
    exec_parser = subparsers.add_parser("exec", help="Run command with secrets injected")
    exec_parser.add_argument("--unmasked", action="store_true",
                             help="Disable masking of secret values in the output")
    exec_parser.add_argument("--placeholder", default=DEFAULT_PLACEHOLDER,
                             help=f"Replacement for secret values (default: {DEFAULT_PLACEHOLDER})")
    exec_parser.add_argument("exec_command", nargs=argparse.REMAINDER, help="Command to run")

    return parser


COMMANDS = {
    "init": cmd_init,
    "encrypt": cmd_encrypt,
    "generate": cmd_generate,
    "remove": cmd_remove,
    "list": cmd_list,
    "print": cmd_print,
    "exec": cmd_exec,
}


def main(argv=None):
    """Main entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 0

    setup_logging(args.verbose)

    # Handle file path
    if args.file:
        args.file = Path(args.file).expanduser()
    else:
        args.file = get_default_secrets_file()

    return COMMANDS[args.command](args)


if __name__ == "__main__":
    sys.exit(main())
