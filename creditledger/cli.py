import json
from typing import Any, Callable

import typer

from creditledger.app.core.config import get_settings
from creditledger.app.core.database import Database
from creditledger.app.core.exceptions import LedgerError
from creditledger.app.core.logging import setup_logging
from creditledger.app.services.credits import CreditService

app = typer.Typer(help="Administer and audit the credit ledger.")


def _service() -> CreditService:
    return CreditService(Database())


def _emit(payload: Any) -> None:
    typer.echo(json.dumps(payload, indent=2, sort_keys=True))


def _run(action: Callable[[], Any]) -> Any:
    try:
        return action()
    except LedgerError as exc:
        typer.echo(f"Error [{exc.code}]: {exc.message}", err=True)
        raise typer.Exit(code=1) from exc


@app.callback()
def _configure() -> None:
    setup_logging(get_settings().log_level)


@app.command("init-db")
def init_db() -> None:
    """Create any missing tables (use `alembic upgrade head` in production)."""
    service = _service()
    service.db.create_all()
    typer.echo(f"Tables ready on {service.db.dialect}")


@app.command("balance")
def balance(user_id: str = typer.Argument(..., help="User whose balance to show.")) -> None:
    """Print the ledger balance of a user."""
    service = _service()
    value = _run(lambda: service.get_balance(user_id))
    _emit({"userId": user_id, "balance": value})


@app.command("audit")
def audit(user_id: str = typer.Argument(..., help="User to audit.")) -> None:
    """Compare the cached balance with the ledger sum without repairing it."""
    service = _service()
    check = _run(lambda: service.validate_balance(user_id))
    _emit(check.to_dict())
    if not check.valid:
        raise typer.Exit(code=2)


@app.command("transactions")
def transactions(
    user_id: str = typer.Argument(..., help="User whose ledger to list."),
    limit: int = typer.Option(50, "--limit", min=1, max=100, help="Page size."),
    offset: int = typer.Option(0, "--offset", min=0, help="Entries to skip."),
) -> None:
    """List ledger entries, newest first."""
    service = _service()
    page = _run(lambda: service.list_transactions(user_id, limit=limit, offset=offset))
    _emit(page.to_dict())


@app.command("recharge")
def recharge(
    user_id: str = typer.Argument(..., help="User to credit."),
    amount: int = typer.Argument(..., help="Credits to add."),
    admin: str = typer.Option(..., "--admin", help="Id of the operator performing the recharge."),
) -> None:
    """Credit a user as an administrator."""
    service = _service()
    result = _run(lambda: service.admin_recharge(user_id, amount, admin))
    _emit(result.to_dict())


@app.command("generate-codes")
def generate_codes(
    amount: int = typer.Argument(..., help="Credits each code is worth."),
    count: int = typer.Option(1, "--count", "-n", help="Number of codes (1-100)."),
    expires_at: int | None = typer.Option(None, "--expires-at", help="Unix timestamp after which codes expire."),
    note: str | None = typer.Option(None, "--note", help="Free-form note stored with each code."),
) -> None:
    """Generate single-use redeem codes."""
    service = _service()
    codes = _run(lambda: service.generate_redeem_codes(amount, count, expires_at=expires_at, note=note))
    _emit([info.to_dict() for info in codes])


@app.command("disable-code")
def disable_code(
    code: str = typer.Argument(..., help="Redeem code to disable."),
    admin: str = typer.Option(..., "--admin", help="Id of the operator disabling the code."),
) -> None:
    """Disable an unused redeem code."""
    service = _service()
    _run(lambda: service.disable_redeem_code(code, admin))
    typer.echo(f"Disabled {code.strip().upper()}")


@app.command("code-stats")
def code_stats() -> None:
    """Show redeem code totals."""
    service = _service()
    _emit(service.redeem_code_statistics().to_dict())


def main() -> None:
    """Entry point for `python -m creditledger.cli`."""
    app()  # pragma: no cover


if __name__ == "__main__":
    main()  # pragma: no cover
