"""FastAPI server exposing the escrow operations and queries."""

import logging
from typing import Any

from fastapi import FastAPI, Header, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from championship import __version__
from championship.errors import EscrowError, ErrorKind
from championship.escrow import ChampionshipEscrow
from championship.models import ChallengeMetadata

logger = logging.getLogger(__name__)

STATUS_BY_KIND: dict[ErrorKind, int] = {
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.INVALID_CONFIG: 422,
    ErrorKind.ALREADY_EXISTS: 409,
    ErrorKind.WRONG_PHASE: 409,
    ErrorKind.STATE_CONFLICT: 409,
    ErrorKind.PAYMENT_MISMATCH: 400,
    ErrorKind.UNAUTHORIZED: 403,
    ErrorKind.ARITHMETIC: 500,
    ErrorKind.NO_PAYOUT: 422,
    ErrorKind.INSUFFICIENT_FUNDS: 500,
}


# ============================================================================
# Request bodies
# ============================================================================


class CreateChallengeRequest(BaseModel):
    challenge_id: str
    entry_fee: int = Field(ge=0)
    enroll_end: int
    compete_end: int
    judge_end: int
    metadata: ChallengeMetadata | None = None


class EnrollRequest(BaseModel):
    agent_id: str
    payment: int


class BetRequest(BaseModel):
    agent_id: str
    amount: int


class AgentRequest(BaseModel):
    agent_id: str


def create_app(escrow: ChampionshipEscrow) -> FastAPI:
    """Build the API around one escrow instance.

    The caller identity comes from the X-Account header, which the hosting
    gateway is expected to authenticate.
    """
    app = FastAPI(title="Championship Escrow API", version=__version__)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["http://localhost:3000", "http://localhost:3001"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(EscrowError)
    async def escrow_error_handler(request: Request, exc: EscrowError) -> JSONResponse:
        return JSONResponse(status_code=STATUS_BY_KIND[exc.kind], content=exc.to_dict())

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    @app.post("/api/challenges", status_code=201)
    def create_challenge(
        body: CreateChallengeRequest, x_account: str = Header(..., alias="X-Account")
    ):
        """Create a challenge owned by the calling account."""
        return escrow.create(
            body.challenge_id,
            body.entry_fee,
            body.enroll_end,
            body.compete_end,
            body.judge_end,
            caller=x_account,
            metadata=body.metadata,
        )

    @app.post("/api/challenges/{challenge_id}/enroll")
    def enroll(
        challenge_id: str,
        body: EnrollRequest,
        x_account: str = Header(..., alias="X-Account"),
    ):
        return escrow.enroll(challenge_id, body.agent_id, x_account, body.payment)

    @app.post("/api/challenges/{challenge_id}/bet")
    def bet(
        challenge_id: str,
        body: BetRequest,
        x_account: str = Header(..., alias="X-Account"),
    ):
        return escrow.bet(challenge_id, body.agent_id, x_account, body.amount)

    @app.post("/api/challenges/{challenge_id}/vote")
    def vote(
        challenge_id: str,
        body: AgentRequest,
        x_account: str = Header(..., alias="X-Account"),
    ):
        return escrow.vote(challenge_id, body.agent_id, x_account)

    @app.post("/api/challenges/{challenge_id}/cancel")
    def cancel(challenge_id: str, x_account: str = Header(..., alias="X-Account")):
        return escrow.cancel(challenge_id, x_account)

    @app.post("/api/challenges/{challenge_id}/finalize")
    def finalize(challenge_id: str, x_account: str = Header(..., alias="X-Account")):
        return escrow.finalize(challenge_id, x_account)

    @app.post("/api/challenges/{challenge_id}/claim")
    def claim(challenge_id: str, x_account: str = Header(..., alias="X-Account")):
        quote = escrow.claim(challenge_id, x_account)
        return {**quote.model_dump(mode="json"), "total": quote.total}

    @app.post("/api/challenges/{challenge_id}/withdraw")
    def withdraw(
        challenge_id: str,
        body: AgentRequest,
        x_account: str = Header(..., alias="X-Account"),
    ):
        return escrow.withdraw(challenge_id, body.agent_id, x_account)

    @app.post("/api/challenges/{challenge_id}/sweep-dust")
    def sweep_dust(challenge_id: str, x_account: str = Header(..., alias="X-Account")):
        return {"challenge_id": challenge_id, "swept": escrow.sweep_dust(challenge_id, x_account)}

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @app.get("/api/challenges")
    def list_challenges():
        """List all challenges with their current phase."""
        results = []
        for challenge in escrow.list_challenges():
            results.append({
                "id": challenge.id,
                "creator": challenge.creator,
                "phase": escrow.get_phase(challenge.id).value,
                "entry_fee": challenge.entry_fee,
                "total_entry_pool": challenge.total_entry_pool,
                "total_bet_pool": challenge.total_bet_pool,
                "agents": len(challenge.agents),
                "finalized": challenge.finalized,
                "cancelled": challenge.cancelled,
            })
        return results

    @app.get("/api/challenges/{challenge_id}")
    def get_challenge(challenge_id: str) -> dict[str, Any]:
        challenge = escrow.get_challenge(challenge_id)
        return {
            **challenge.model_dump(mode="json"),
            "phase": escrow.get_phase(challenge_id).value,
        }

    @app.get("/api/challenges/{challenge_id}/agents/{agent_id}")
    def get_agent(challenge_id: str, agent_id: str):
        return escrow.get_agent(challenge_id, agent_id)

    @app.get("/api/challenges/{challenge_id}/bets/{account}/{agent_id}")
    def get_bet(challenge_id: str, account: str, agent_id: str):
        return escrow.get_bet(challenge_id, account, agent_id)

    @app.get("/api/challenges/{challenge_id}/bet-totals/{account}")
    def get_bet_total(challenge_id: str, account: str):
        return escrow.get_agent_bet_total(challenge_id, account)

    @app.get("/api/challenges/{challenge_id}/pools")
    def get_pools(challenge_id: str):
        return escrow.get_pools(challenge_id)

    @app.get("/api/challenges/{challenge_id}/payouts")
    def list_payouts(challenge_id: str):
        return escrow.list_payouts(challenge_id)

    @app.get("/api/challenges/{challenge_id}/solvency")
    def solvency(challenge_id: str):
        report = escrow.solvency(challenge_id)
        return {**report.model_dump(mode="json"), "is_solvent": report.is_solvent}

    @app.get("/api/challenges/{challenge_id}/quote/{account}")
    def quote(challenge_id: str, account: str):
        quote = escrow.quote_payout(challenge_id, account)
        return {**quote.model_dump(mode="json"), "total": quote.total}

    @app.get("/api/challenges/{challenge_id}/status/{account}")
    def account_status(challenge_id: str, account: str):
        return escrow.get_account_status(challenge_id, account)

    @app.get("/health")
    async def health():
        return {"status": "healthy", "version": __version__}

    return app
