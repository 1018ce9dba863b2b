"""FastAPI application for the margin ledger API."""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from stellar_sdk import Keypair

from marginledger.api.dependencies import get_app_state
from marginledger.api.routes import events, margin, withdrawals
from marginledger.blockchain.client import SorobanClient
from marginledger.blockchain.transaction import StellarPaymentSubmitter
from marginledger.blockchain.verifier import StellarDepositVerifier
from marginledger.config import Settings
from marginledger.errors import DepositVerificationFailed, LedgerError
from marginledger.events.notifier import BalanceNotifier
from marginledger.executor.payout_processor import PaymentSubmitter, PayoutProcessor
from marginledger.ledger.balances import BalanceManager
from marginledger.ledger.locks import MarginLockRegistry
from marginledger.storage.ledger_store import LedgerStore, MemoryLedgerStore
from marginledger.workflows.deposits import DepositVerifier, DepositWorkflow
from marginledger.workflows.withdrawals import WithdrawalWorkflow

logger = logging.getLogger(__name__)


async def ledger_error_handler(request: Request, exc: LedgerError) -> JSONResponse:
    """Render ledger errors as JSON with the status code the error carries."""
    content = {"detail": str(exc), "error": type(exc).__name__}
    if isinstance(exc, DepositVerificationFailed):
        content["reason"] = exc.reason.value
    return JSONResponse(status_code=exc.status_code, content=content)


def create_app(
    settings: Optional[Settings] = None,
    store: Optional[LedgerStore] = None,
    notifier: Optional[BalanceNotifier] = None,
    deposit_verifier: Optional[DepositVerifier] = None,
    payment_submitter: Optional[PaymentSubmitter] = None,
    run_payouts: Optional[bool] = None,
) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        settings: Settings instance (read from the environment if not provided)
        store: LedgerStore instance (in-memory store if not provided)
        notifier: BalanceNotifier instance (created if not provided)
        deposit_verifier: Deposit verifier (Stellar verifier if a protocol
            wallet is configured, otherwise deposits are disabled)
        payment_submitter: Payout submitter for the PayoutProcessor (a Stellar
            submitter if PAYOUT_SECRET_KEY is set, otherwise payouts are off)
        run_payouts: Whether to run the PayoutProcessor in background
            (defaults to settings.auto_payouts)

    Returns:
        Configured FastAPI application
    """
    settings = settings or Settings.from_env()
    store = store if store is not None else MemoryLedgerStore()
    notifier = notifier or BalanceNotifier()
    run_payouts = settings.auto_payouts if run_payouts is None else run_payouts

    logging.getLogger("marginledger").setLevel(settings.log_level)

    soroban_client: Optional[SorobanClient] = None
    if deposit_verifier is None and settings.protocol_wallet:
        soroban_client = SorobanClient(
            rpc_url=settings.soroban_rpc_url,
            network_passphrase=settings.network_passphrase,
        )
        deposit_verifier = StellarDepositVerifier(
            client=soroban_client,
            protocol_wallet=settings.protocol_wallet,
            usdc_issuer=settings.usdc_issuer,
        )
    elif deposit_verifier is None:
        logger.warning("No PROTOCOL_WALLET configured, margin deposits are disabled")

    balances = BalanceManager(
        store=store,
        notifier=notifier,
        supported_assets=settings.supported_assets,
        max_write_attempts=settings.max_write_attempts,
    )
    locks = MarginLockRegistry(store=store, balances=balances)
    withdrawal_workflow = WithdrawalWorkflow(store=store, balances=balances)
    deposit_workflow = None
    if deposit_verifier is not None:
        deposit_workflow = DepositWorkflow(
            store=store,
            balances=balances,
            verifier=deposit_verifier,
            verify_timeout=settings.verify_timeout,
        )

    payout_processor: Optional[PayoutProcessor] = None
    payout_task: Optional[asyncio.Task] = None

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        nonlocal payout_processor, payout_task

        # Initialize app state for dependencies
        app_state = get_app_state()
        app_state.settings = settings
        app_state.notifier = notifier
        app_state.balances = balances
        app_state.locks = locks
        app_state.withdrawals = withdrawal_workflow
        app_state.deposits = deposit_workflow

        submitter = payment_submitter if run_payouts else None
        if run_payouts and submitter is None:
            if settings.payout_secret_key:
                wallet_keypair = Keypair.from_secret(settings.payout_secret_key)
                submitter = StellarPaymentSubmitter(
                    client=soroban_client or SorobanClient(
                        rpc_url=settings.soroban_rpc_url,
                        network_passphrase=settings.network_passphrase,
                    ),
                    wallet_keypair=wallet_keypair,
                    usdc_issuer=settings.usdc_issuer,
                )
                logger.info(f"Using StellarPaymentSubmitter with wallet: {wallet_keypair.public_key}")
            else:
                # A payout without a wallet key would complete withdrawals that never left
                logger.warning("No PAYOUT_SECRET_KEY provided, automatic payouts are disabled")

        if submitter is not None:
            payout_processor = PayoutProcessor(
                withdrawals=withdrawal_workflow,
                payment_submitter=submitter,
                poll_interval=settings.payout_poll_interval,
            )
            payout_task = asyncio.create_task(payout_processor.start())
            logger.info("Payout processor started")

        yield

        # Cleanup
        if payout_processor:
            await payout_processor.stop()
        if payout_task:
            payout_task.cancel()
            try:
                await payout_task
            except asyncio.CancelledError:
                pass
            logger.info("Payout processor stopped")

    app = FastAPI(
        title="Margin Ledger",
        description="Custodial margin ledger for leveraged trading on Stellar",
        version="0.1.0",
        lifespan=lifespan,
    )

    app.add_exception_handler(LedgerError, ledger_error_handler)

    # Include routes
    app.include_router(margin.router)
    app.include_router(withdrawals.router)
    app.include_router(withdrawals.admin_router)
    app.include_router(events.router)

    @app.get("/health")
    async def health_check():
        """Health check endpoint."""
        return {
            "status": "healthy",
            "deposits_enabled": deposit_workflow is not None,
            "payouts_enabled": payout_processor is not None,
        }

    return app


# Default app instance for uvicorn
app = create_app()
