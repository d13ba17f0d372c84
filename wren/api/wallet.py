"""
Wallet API endpoints: airdrops, transfer building and submission.

Every route requires a session; unauthenticated requests are rejected before
any ledger traffic.
"""

from typing import Any, Dict, Optional, Union

from fastapi import APIRouter, Depends, HTTPException, Request, status
from pydantic import BaseModel, ConfigDict, Field

from wren.auth import IdentityWithWallet, require_session
from wren.core.execution import SubmissionPipeline, TransferBuilder
from wren.errors import WrenError
from wren.workers.airdrop import AirdropOrchestrator, WalletNotProvisionedError

from .errors import http_error


router = APIRouter(prefix="/api", tags=["wallet"])


def get_airdrops(request: Request) -> AirdropOrchestrator:
    return request.app.state.services.airdrops


def get_builder(request: Request) -> TransferBuilder:
    return request.app.state.services.builder


def get_pipeline(request: Request) -> SubmissionPipeline:
    return request.app.state.services.pipeline


class DropAccepted(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    status: str = "accepted"
    run_id: str = Field(alias="runId")


class TransferRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    to_address: str = Field(alias="toAddress")
    amount: Union[str, int, float]


class TransferResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    unsigned_transaction: str = Field(alias="unsignedTransaction")
    organization_id: str = Field(alias="organizationId")


class SendRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    signed_transaction: str = Field(alias="signedTransaction")


class SendResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    transaction_id: str = Field(alias="transactionId")
    status: str
    error: Optional[str] = None


@router.post("/drop", response_model=DropAccepted, status_code=status.HTTP_202_ACCEPTED)
async def request_drop(
    subject: IdentityWithWallet = Depends(require_session),
    airdrops: AirdropOrchestrator = Depends(get_airdrops),
):
    """Start a Wren airdrop to the caller's wallet. Poll GET /api/drop/{runId} for the outcome."""
    try:
        run = await airdrops.request(subject)
    except WrenError as e:
        raise http_error(e)
    return DropAccepted(run_id=run.run_id)


@router.get("/drop/{run_id}")
async def get_drop(
    run_id: str,
    subject: IdentityWithWallet = Depends(require_session),
    airdrops: AirdropOrchestrator = Depends(get_airdrops),
) -> Dict[str, Any]:
    run = await airdrops.get_run(run_id)
    if run is None or run.identity_id != subject.identity.identity_id:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Airdrop not found")
    return run.to_response()


@router.post("/transfer", response_model=TransferResponse)
async def build_transfer(
    request: TransferRequest,
    subject: IdentityWithWallet = Depends(require_session),
    builder: TransferBuilder = Depends(get_builder),
):
    """
    Build an unsigned Wren transfer from the caller's wallet.

    The returned transaction is signed by the nonce authority only; the
    client signs it with the wallet key through Turnkey and posts it to
    /api/send.
    """
    try:
        if subject.wallet is None:
            raise WalletNotProvisionedError(f"Identity {subject.identity.identity_id} has no wallet")
        unsigned = await builder.build_transfer(
            subject.wallet.sol_address,
            request.to_address,
            request.amount,
            organization_id=subject.identity.external_org_id,
        )
    except WrenError as e:
        raise http_error(e)
    return TransferResponse(
        unsigned_transaction=unsigned.unsigned_transaction,
        organization_id=unsigned.organization_id,
    )


@router.post("/send", response_model=SendResponse)
async def send_transaction(
    request: SendRequest,
    _: IdentityWithWallet = Depends(require_session),
    pipeline: SubmissionPipeline = Depends(get_pipeline),
):
    """Submit a client-signed transaction. ``status`` is ``submitted`` when confirmation was not observed."""
    try:
        receipt = await pipeline.submit(request.signed_transaction)
    except WrenError as e:
        raise http_error(e)
    return SendResponse(
        transaction_id=receipt.transaction_id,
        status=receipt.status.value,
        error=receipt.error,
    )
