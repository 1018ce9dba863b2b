"""FastAPI dependencies for accessing shared state."""

from typing import Optional

from fastapi import HTTPException

from marginledger.config import Settings
from marginledger.events.notifier import BalanceNotifier
from marginledger.ledger.balances import BalanceManager
from marginledger.ledger.locks import MarginLockRegistry
from marginledger.workflows.deposits import DepositWorkflow
from marginledger.workflows.withdrawals import WithdrawalWorkflow


class AppState:
    """
    Application state container.

    Holds references to all shared components accessed by API routes.
    """

    def __init__(self) -> None:
        self.settings: Optional[Settings] = None
        self.notifier: Optional[BalanceNotifier] = None
        self.balances: Optional[BalanceManager] = None
        self.locks: Optional[MarginLockRegistry] = None
        self.withdrawals: Optional[WithdrawalWorkflow] = None
        self.deposits: Optional[DepositWorkflow] = None


# Global app state instance
_app_state = AppState()


def get_app_state() -> AppState:
    """Get the global application state."""
    return _app_state


def get_settings() -> Settings:
    """FastAPI dependency for Settings."""
    if _app_state.settings is None:
        raise RuntimeError("Settings not initialized")
    return _app_state.settings


def get_notifier() -> BalanceNotifier:
    """FastAPI dependency for BalanceNotifier."""
    if _app_state.notifier is None:
        raise RuntimeError("BalanceNotifier not initialized")
    return _app_state.notifier


def get_balances() -> BalanceManager:
    """FastAPI dependency for BalanceManager."""
    if _app_state.balances is None:
        raise RuntimeError("BalanceManager not initialized")
    return _app_state.balances


def get_locks() -> MarginLockRegistry:
    """FastAPI dependency for MarginLockRegistry."""
    if _app_state.locks is None:
        raise RuntimeError("MarginLockRegistry not initialized")
    return _app_state.locks


def get_withdrawals() -> WithdrawalWorkflow:
    """FastAPI dependency for WithdrawalWorkflow."""
    if _app_state.withdrawals is None:
        raise RuntimeError("WithdrawalWorkflow not initialized")
    return _app_state.withdrawals


def get_deposits() -> DepositWorkflow:
    """
    FastAPI dependency for DepositWorkflow.

    Deposits need a verifier; without one they are disabled rather than
    credited unchecked.
    """
    if _app_state.deposits is None:
        raise HTTPException(
            status_code=503,
            detail="Deposits are disabled: no deposit verifier configured",
        )
    return _app_state.deposits
