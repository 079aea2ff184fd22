"""Backtest API routes."""

import logging
import uuid
from datetime import datetime
from enum import Enum

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field, model_validator

from signal_engine.conditions.compiler import compile_program
from signal_engine.conditions.errors import ConditionStructureError
from signal_engine.conditions.evaluator import scan_signals
from signal_engine.conditions.ir import ConditionGroup
from signal_engine.models.backtest import (
    BacktestConfig,
    BacktestResult,
    Bar,
    CapitalSettings,
    StrategyDefinition,
    Timeframe,
)
from signal_engine.models.errors import BacktestValidationError
from signal_engine.service.backtest_service import DEFAULT_TIMEFRAME, BacktestService
from signal_engine.service.data_service import DataService, SyntheticDataService
from signal_engine.service.simulator import BacktestSimulator

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/backtest", tags=["backtest"])

_data_service = SyntheticDataService()


def get_data_service() -> DataService:
    """Data source for requests without inline bars."""
    return _data_service


class BacktestRequestModel(BaseModel):
    """Request to run a backtest.

    Either supply ``bars`` inline, or a ``symbol`` to fetch bars for.
    """

    strategy: StrategyDefinition
    start_date: datetime
    end_date: datetime
    timeframe: Timeframe = DEFAULT_TIMEFRAME
    bars: list[Bar] | None = None
    symbol: str | None = None
    run_stage2: bool = Field(default=False, description="Re-run on 1m bars if stage 1 traded")
    capital: CapitalSettings | None = Field(
        default=None, description="Account for money PnL and the bankruptcy stop"
    )

    @model_validator(mode="after")
    def check_data_source(self):
        if self.bars is None and self.symbol is None:
            raise ValueError("Must provide either 'bars' or 'symbol'")
        return self


class BacktestStatus(str, Enum):
    """Status of a backtest."""

    COMPLETED = "completed"
    FAILED = "failed"


class BacktestResponseModel(BaseModel):
    """Response from a backtest run."""

    backtest_id: str
    status: BacktestStatus
    strategy_id: str
    stage: str = "stage1"
    message: str | None = None
    result: BacktestResult | None = None
    stage1_result: BacktestResult | None = None


class SignalScanRequest(BaseModel):
    """Evaluate entry conditions over a bar series."""

    entry_conditions: ConditionGroup
    bars: list[Bar]


class SignalScanResponse(BaseModel):
    signal_indices: list[int]
    signal_times: list[datetime]
    bars_evaluated: int


@router.post("", response_model=BacktestResponseModel)
async def run_backtest(
    request: BacktestRequestModel,
    data_service: DataService = Depends(get_data_service),
) -> BacktestResponseModel:
    """Run a backtest for a strategy.

    Inline bars are simulated directly; otherwise bars are fetched for the
    symbol (with warm-up history) and the two-stage flow applies.
    """
    backtest_id = str(uuid.uuid4())
    strategy_id = request.strategy.strategy_id
    logger.info(f"Backtest {backtest_id}: Starting for strategy {strategy_id}")

    if request.bars is not None:
        config = BacktestConfig.from_strategy(
            request.strategy,
            request.bars,
            request.start_date,
            request.end_date,
            request.timeframe,
            capital=request.capital,
        )
        try:
            result = BacktestSimulator().run(config)
        except BacktestValidationError as e:
            raise HTTPException(
                status_code=422,
                detail=[{"path": i.path, "message": i.message} for i in e.issues],
            )
        except ConditionStructureError as e:
            raise HTTPException(status_code=422, detail=str(e))
        return BacktestResponseModel(
            backtest_id=backtest_id,
            status=BacktestStatus.COMPLETED,
            strategy_id=strategy_id,
            message=f"{result.summary.total_trades} trades",
            result=result,
            stage1_result=result,
        )

    service = BacktestService(data_service=data_service)
    run = service.run_backtest(
        strategy=request.strategy,
        symbol=request.symbol,
        start_date=request.start_date,
        end_date=request.end_date,
        timeframe=request.timeframe,
        run_stage2=request.run_stage2,
        capital=request.capital,
    )
    match run.error_kind:
        case "validation":
            raise HTTPException(status_code=422, detail=run.error)
        case "data":
            raise HTTPException(status_code=404, detail=run.error)

    return BacktestResponseModel(
        backtest_id=backtest_id,
        status=BacktestStatus.COMPLETED if run.status == "success" else BacktestStatus.FAILED,
        strategy_id=strategy_id,
        stage=run.stage,
        message=run.message or run.error,
        result=run.result,
        stage1_result=run.stage1_result,
    )


@router.post("/signals", response_model=SignalScanResponse)
async def scan_entry_signals(request: SignalScanRequest) -> SignalScanResponse:
    """Bars at which the entry conditions hold."""
    try:
        program = compile_program(request.entry_conditions)
    except ConditionStructureError as e:
        raise HTTPException(status_code=422, detail=str(e))

    indices = scan_signals(program, request.bars)
    return SignalScanResponse(
        signal_indices=indices,
        signal_times=[request.bars[i].timestamp for i in indices],
        bars_evaluated=len(request.bars),
    )
